import logging

from django.db.models.signals import post_save
from django.dispatch import receiver

from notifications.utils import notify_safely

from .models import UserBadge, UserReferral

logger = logging.getLogger(__name__)


@receiver(post_save, sender=UserBadge)
def handle_badge_earned(sender, instance, created, **kwargs):
    """Tell the user about a newly earned badge"""
    if not created:
        return
    badge = instance.badge
    notify_safely(
        instance.user_id,
        'badge_earned',
        title=f"Badge unlocked: {badge.name}",
        message=f"You earned {instance.xp_awarded} XP and {instance.points_awarded} points",
        data={
            'badge_id': badge.pk,
            'badge_slug': badge.slug,
            'rarity': badge.rarity,
        },
    )


@receiver(post_save, sender=UserReferral)
def handle_referral_created(sender, instance, created, **kwargs):
    """Let the referrer know someone joined with their code"""
    if not created:
        return
    notify_safely(
        instance.referrer_id,
        'referral_joined',
        title='New referral',
        message='Someone joined with your referral code',
        data={'referral_id': instance.pk, 'referred_id': instance.referred_id},
    )
