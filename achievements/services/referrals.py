"""
Referral service: creation, progress tracking, activation payout and expiry.

The state machine itself lives on ``UserReferral``; this module decides
when to drive it. Progress is always recomputed from the referred user's
verified shares since the referral was created, so calling
``sync_referral_progress`` repeatedly is harmless.
"""
import logging
from datetime import timedelta

from django.db import IntegrityError, transaction
from django.db.models import Count, F, Sum
from django.db.models.functions import TruncDate
from django.utils import timezone

from notifications.utils import notify_safely
from security.services.fraud import analyze_fraud
from shares.models import ShareEvent
from users.engine_settings import engine_setting
from users.exceptions import NotEligible, NotFound, RewardsError, ValidationError
from users.models import User

from ..models import UserReferral

logger = logging.getLogger(__name__)


def create_referral(referrer_id, referred_id, referral_code=None, source='direct_link', channel='',
                    metadata=None, now=None):
    if referrer_id == referred_id:
        raise ValidationError("Users cannot refer themselves", code='self_referral', user_id=referrer_id)

    referrer = User.objects.filter(pk=referrer_id).first()
    if referrer is None:
        raise NotFound(f"Referrer {referrer_id} not found", entity='user', entity_id=referrer_id)
    if not User.objects.filter(pk=referred_id).exists():
        raise NotFound(f"Referred user {referred_id} not found", entity='user', entity_id=referred_id)
    if UserReferral.all_objects.filter(referred_id=referred_id).exists():
        raise NotEligible(f"User {referred_id} was already referred", code='already_referred')

    now = now or timezone.now()
    try:
        with transaction.atomic():
            referral = UserReferral.objects.create(
                referrer_id=referrer_id,
                referred_id=referred_id,
                referral_code=referral_code or referrer.referral_code,
                source=source,
                channel=channel,
                metadata=metadata or {},
                signup_date=now,
                created_at=now,
                expires_at=now + timedelta(days=engine_setting('REFERRAL_EXPIRY_DAYS')),
            )
            User.objects.filter(pk=referrer_id).update(referral_count=F('referral_count') + 1)
    except IntegrityError:
        raise NotEligible(f"User {referred_id} was already referred", code='already_referred')

    logger.info("Referral %s created: %s referred %s via %s", referral.pk, referrer_id, referred_id, source)
    return referral


def create_referral_from_code(referral_code, referred_id, **kwargs):
    code = (referral_code or '').strip().upper()
    referrer = User.objects.filter(referral_code=code).first() if code else None
    if referrer is None:
        raise NotFound(f"Unknown referral code {referral_code}", code='invalid_referral_code')
    return create_referral(referrer.pk, referred_id, referral_code=code, **kwargs)


def referral_progress_for(referral):
    """Activation progress derived from the referred user's verified shares."""
    shares = ShareEvent.objects.filter(
        user_id=referral.referred_id,
        validation_status=ShareEvent.STATUS_VERIFIED,
        verified_at__gte=referral.created_at,
    )
    totals = shares.aggregate(count=Count('id'), xp=Sum('xp_awarded'), points=Sum('points_awarded'))
    days = set(shares.annotate(day=TruncDate('verified_at')).values_list('day', flat=True))
    return {
        'shares_completed': totals['count'],
        'xp_earned': totals['xp'] or 0,
        'points_earned': totals['points'] or 0,
        'days_active': len(days),
    }


def sync_referral_progress(user_id, now=None):
    """Refresh the referral of ``user_id`` (as the referred user) and act on activation.

    Returns the referral, or ``None`` when the user was not referred.
    """
    referral = UserReferral.objects.filter(referred_id=user_id).first()
    if referral is None:
        return None

    if referral.status == UserReferral.PENDING:
        referral.update_progress(**referral_progress_for(referral))
        if referral.status == UserReferral.ACTIVE:
            logger.info("Referral %s activated", referral.pk)
            return handle_activation(referral)
        return referral

    # Retry a payout that stopped halfway
    if referral.status == UserReferral.ACTIVE and not referral.is_suspicious \
            and engine_setting('REFERRAL_AUTO_DISBURSE'):
        return disburse(referral)
    return referral


def handle_activation(referral):
    """Fraud-score the referred user and pay out when clean."""
    analysis = analyze_fraud('user', referral.referred_id, {'referral_id': referral.pk})
    if analysis.automatic_action == 'block':
        referral.mark_as_fraudulent(analysis.fraud_score, analysis.fraud_flags)
        logger.warning("Referral %s marked fraudulent (score %s)", referral.pk, analysis.fraud_score)
        return referral
    if analysis.requires_review:
        referral.flag_for_review(analysis.fraud_score, analysis.fraud_flags)
        logger.warning("Referral %s held for manual review (score %s)", referral.pk, analysis.fraud_score)
        return referral

    referral.record_fraud_score(analysis.fraud_score, analysis.fraud_flags)
    if engine_setting('REFERRAL_AUTO_DISBURSE'):
        return disburse(referral)
    return referral


def disburse(referral):
    try:
        referral.process_both_rewards()
    except RewardsError:
        logger.warning("Referral %s payout did not complete", referral.pk, exc_info=True)
        return referral

    notify_safely(
        referral.referrer_id,
        'referral_completed',
        title='Referral completed',
        message=f"You earned {referral.referrer_bonus_xp} XP and {referral.referrer_bonus_points} points",
        data={'referral_id': referral.pk},
    )
    notify_safely(
        referral.referred_id,
        'referral_completed',
        title='Welcome bonus unlocked',
        message=f"You earned {referral.referred_bonus_xp} XP and {referral.referred_bonus_points} points",
        data={'referral_id': referral.pk},
    )
    logger.info("Referral %s completed and paid out", referral.pk)
    return referral


def expire_referrals(now=None, dry_run=False):
    """Move pending referrals past ``expires_at`` to expired. Returns the number affected."""
    now = now or timezone.now()
    stale = UserReferral.objects.expired(now)
    if dry_run:
        return stale.count()
    expired = stale.update(
        status=UserReferral.EXPIRED,
        version=F('version') + 1,
        updated_at=now,
    )
    if expired:
        logger.info("Expired %s pending referrals", expired)
    return expired


def get_referral_statistics(referrer_id=None):
    return UserReferral.objects.statistics(referrer_id)
