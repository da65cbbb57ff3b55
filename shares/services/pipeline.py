"""
Share processing pipeline.

record_share:  limit gate -> share type -> pending ShareEvent
verify_share:  fraud gate -> reward calculation -> guarded issuance
               (share flip + app budget debit + ledger credit in one
               transaction) -> streak, tournament score, badges, referral
               progress -> notification

Once the issuance transaction commits the reward stands. Follow-up steps
that fail are logged and can be replayed on their own; none of them can
credit the share a second time because the share flip is guarded on
``validation_status='pending'``.
"""
import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import List, Optional

from django.db import transaction
from django.db.models import F
from django.utils import timezone

from catalog.models import App, record_share_allocation
from notifications.utils import notify_safely
from security.services.fraud import FraudAnalysis, analyze_fraud
from security.utils import calculate_device_fingerprint, record_device_usage
from users.exceptions import (
    AlreadyAwarded,
    EngineSystemError,
    LimitExceeded,
    NotEligible,
    NotFound,
)
from users.ledger import credit_user
from users.models import User
from users.streaks import update_sharing_streak
from users.utils import touch_user_activity

from ..models import ShareEvent
from .limits import validate_share_limits
from .rewards import RewardResult, calculate_share_rewards, determine_share_type

logger = logging.getLogger(__name__)

LIMIT_ERRORS = {
    'user_not_found': NotFound,
    'app_not_found': NotFound,
    'app_inactive': NotEligible,
    'level_too_low': NotEligible,
    'system_error': EngineSystemError,
}

VERIFICATION_FIELDS = ('click_count', 'conversion_count', 'ip_address', 'user_agent', 'country', 'device_info')
SHARE_LINK_TTL = timedelta(hours=24)


@dataclass
class ShareOutcome:
    share: ShareEvent
    status: str
    reason: Optional[str] = None
    reward: Optional[RewardResult] = None
    fraud: Optional[FraudAnalysis] = None
    badges_awarded: List[int] = field(default_factory=list)
    streak: Optional[dict] = None

    @property
    def rewarded(self):
        return self.status == ShareEvent.STATUS_VERIFIED


def record_share(user_id, app_id, channel='other', tournament_id=None, share_url='',
                 device_info=None, ip_address=None, user_agent='', country='', now=None):
    """Validate the attempt and create a pending share for its tracking link."""
    now = now or timezone.now()
    limits = validate_share_limits(user_id, app_id, now=now)
    if not limits.valid:
        error_class = LIMIT_ERRORS.get(limits.reason, LimitExceeded)
        raise error_class(f"Share rejected: {limits.reason}", code=limits.reason, user_id=user_id, app_id=app_id)

    user = User.objects.get(pk=user_id)
    app = App.objects.get(pk=app_id)
    decision = determine_share_type(user, app, tournament_id, now=now)

    device_info = device_info or {}
    fingerprint = calculate_device_fingerprint(device_info) if device_info else ''
    share = ShareEvent.objects.create(
        user=user,
        app=app,
        tournament=decision.tournament,
        share_type=decision.share_type,
        channel=channel,
        share_url=share_url,
        device_info=device_info,
        device_fingerprint=fingerprint,
        ip_address=ip_address,
        user_agent=user_agent or device_info.get('user_agent', ''),
        country=country,
        created_at=now,
        expires_at=now + SHARE_LINK_TTL,
    )
    if fingerprint or ip_address:
        record_device_usage(user, fingerprint, device_info, ip_address, country=country, now=now)
    touch_user_activity(user_id, now)

    logger.info(
        "Recorded %s share %s for user %s app %s (reason=%s)",
        share.share_type, share.pk, user_id, app_id, decision.reason,
    )
    return share


def _reject(share, reason, fraud=None):
    ShareEvent.objects.filter(pk=share.pk, validation_status=ShareEvent.STATUS_PENDING).update(
        validation_status=ShareEvent.STATUS_REJECTED,
        rejection_reason=reason,
        updated_at=timezone.now(),
    )
    share.refresh_from_db()
    logger.warning("Rejected share %s: %s", share.pk, reason)
    return ShareOutcome(share=share, status=ShareEvent.STATUS_REJECTED, reason=reason, fraud=fraud)


def _apply_verification_metadata(share, verification):
    changed = []
    for name in VERIFICATION_FIELDS:
        if name in verification:
            setattr(share, name, verification[name])
            changed.append(name)
    if changed:
        share.save(update_fields=changed + ['updated_at'])


def _issue_reward(share, reward, now):
    tournament_id = reward.tournament_id if reward.share_type == 'tournament' else None
    with transaction.atomic():
        flipped = ShareEvent.objects.filter(
            pk=share.pk,
            validation_status=ShareEvent.STATUS_PENDING,
        ).update(
            validation_status=ShareEvent.STATUS_VERIFIED,
            verified_at=now,
            share_type=reward.share_type,
            tournament_id=tournament_id,
            base_xp=reward.breakdown.get('base_xp', 0),
            base_points=reward.breakdown.get('base_points', 0),
            xp_awarded=reward.total_xp,
            points_awarded=reward.total_points,
            reward_breakdown=reward.breakdown,
            updated_at=now,
        )
        if not flipped:
            raise AlreadyAwarded(f"Share {share.pk} was already processed", share_id=share.pk)

        record_share_allocation(share.app_id, reward.total_xp, reward.total_points)
        credit_user(share.user_id, reward.total_xp, reward.total_points, source=f"share:{share.pk}")
        User.objects.filter(pk=share.user_id).update(total_apps_shared=F('total_apps_shared') + 1)


def _follow_up(step, func, *args, **kwargs):
    try:
        with transaction.atomic():
            return func(*args, **kwargs)
    except Exception:
        logger.error("Post-reward step %s failed", step, exc_info=True)
        return None


def verify_share(share_id, verification=None, now=None):
    """Verify a pending share and pay out its reward if it clears the fraud gate.

    Raises ``NotFound`` for an unknown share and ``AlreadyAwarded`` /
    ``NotEligible`` for a share that already left ``pending``. Fraud and
    budget outcomes are reported on the returned ``ShareOutcome``.
    """
    now = now or timezone.now()
    verification = verification or {}

    share = ShareEvent.objects.filter(pk=share_id).first()
    if share is None:
        raise NotFound(f"Share {share_id} not found", entity='share', entity_id=share_id)
    if share.validation_status == ShareEvent.STATUS_VERIFIED:
        raise AlreadyAwarded(f"Share {share_id} already verified", share_id=share_id)
    if share.validation_status == ShareEvent.STATUS_REJECTED:
        raise NotEligible(f"Share {share_id} was rejected", code='share_rejected', share_id=share_id)

    if share.expires_at and share.expires_at < now:
        return _reject(share, 'share_expired')

    _apply_verification_metadata(share, verification)

    fraud = analyze_fraud('share', share.pk, verification)
    ShareEvent.objects.filter(pk=share.pk).update(
        fraud_score=fraud.fraud_score,
        fraud_flags=list(fraud.fraud_flags),
    )
    share.fraud_score = fraud.fraud_score
    share.fraud_flags = list(fraud.fraud_flags)

    if fraud.automatic_action == 'block':
        return _reject(share, 'fraud_blocked', fraud=fraud)
    if fraud.automatic_action == 'limit':
        logger.warning("Share %s held for review (fraud score %s)", share.pk, fraud.fraud_score)
        return ShareOutcome(share=share, status=ShareEvent.STATUS_PENDING, reason='held_for_review', fraud=fraud)

    reward = calculate_share_rewards(
        share.user_id,
        share.app_id,
        share.tournament_id,
        verification,
        now=now,
        exclude_share_id=share.pk,
    )
    if not reward.success:
        if reward.reason in ('app_not_found', 'user_not_found'):
            raise NotFound(f"Cannot reward share {share.pk}: {reward.reason}", code=reward.reason)
        raise EngineSystemError(f"Cannot reward share {share.pk}: {reward.reason}", code=reward.reason)

    try:
        _issue_reward(share, reward, now)
    except LimitExceeded as e:
        return _reject(share, e.code, fraud=fraud)

    share.refresh_from_db()
    logger.info(
        "Verified share %s: %s XP / %s points to user %s",
        share.pk, reward.total_xp, reward.total_points, share.user_id,
    )
    outcome = ShareOutcome(share=share, status=ShareEvent.STATUS_VERIFIED, reward=reward, fraud=fraud)
    _after_reward(share, reward, outcome, now)
    return outcome


def _after_reward(share, reward, outcome, now):
    from achievements.services.badges import evaluate_user_badges
    from achievements.services.referrals import sync_referral_progress
    from tournaments.services import record_tournament_share, update_participant_score

    outcome.streak = _follow_up('streak', update_sharing_streak, share.user_id, now.date())

    if share.tournament_id:
        _follow_up('tournament_totals', record_tournament_share,
                   share.tournament_id, reward.total_xp, reward.total_points)
        _follow_up('tournament_score', update_participant_score, share.tournament_id, share.user_id)

    awarded = _follow_up('badges', evaluate_user_badges, share.user_id, trigger='share')
    outcome.badges_awarded = [badge.pk for badge in awarded or []]

    _follow_up('referral_progress', sync_referral_progress, share.user_id, now=now)

    notify_safely(
        share.user_id,
        'share_rewarded',
        title='Share verified',
        message=f"You earned {reward.total_xp} XP and {reward.total_points} points",
        data={
            'share_id': share.pk,
            'xp': reward.total_xp,
            'points': reward.total_points,
            'share_type': reward.share_type,
        },
    )
