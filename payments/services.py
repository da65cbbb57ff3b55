"""
Payout requests: Points -> cash.

The engine validates the request, runs the payment fraud gate and debits
the points with a guarded update. Handing the payout to a PSP and reporting
back (``complete_payout`` / ``fail_payout``) happens outside.
"""
import logging
from datetime import datetime, time, timedelta
from decimal import Decimal

from django.db import transaction
from django.db.models import F, Sum
from django.utils import timezone

from notifications.utils import notify_safely
from security.services.fraud import analyze_fraud
from users.engine_settings import engine_setting
from users.exceptions import LimitExceeded, NotEligible, NotFound, ValidationError
from users.ledger import adjust_balance, debit_points
from users.models import User

from .models import Payout

logger = logging.getLogger(__name__)

# (percentage of the points, fixed part in cents)
METHOD_FEES = {
    'stripe': (Decimal('2.9'), 30),
    'paypal': (Decimal('2.9'), 30),
    'bank_transfer': (Decimal('0.5'), 25),
    'crypto': (Decimal('1.5'), 50),
}

REQUIRED_DETAILS = {
    'stripe': ('card_token',),
    'paypal': ('email',),
    'bank_transfer': ('account_number', 'routing_number'),
    'crypto': ('wallet_address',),
}


def minimum_payout(method):
    by_method = engine_setting('PAYOUT_MIN_POINTS_BY_METHOD').get(method, 0)
    return max(engine_setting('PAYOUT_MIN_POINTS'), by_method)


def calculate_payout_fee(points, method, monthly_volume=0):
    """Fee in points for paying out ``points`` through ``method``."""
    rate = Decimal(engine_setting('POINTS_PER_DOLLAR'))
    percentage, fixed_cents = METHOD_FEES.get(method, METHOD_FEES['bank_transfer'])
    percentage_fee = Decimal(points) * percentage / 100
    fixed_fee = Decimal(fixed_cents) / 100 * rate
    fee = percentage_fee + fixed_fee
    if monthly_volume > 10000:
        fee *= Decimal('0.8')
    elif monthly_volume > 5000:
        fee *= Decimal('0.9')
    return max(fee, Decimal('1')).quantize(Decimal('0.01'))


def validate_payment_details(method, details):
    if method not in REQUIRED_DETAILS:
        raise ValidationError(f"Invalid payment method {method}", code='invalid_payment_method')
    missing = [key for key in REQUIRED_DETAILS[method] if not (details or {}).get(key)]
    if missing:
        raise ValidationError(
            f"Missing payment details: {', '.join(missing)}",
            code='invalid_payment_details',
            missing=missing,
        )


def _period_total(user_id, since):
    return Payout.objects.filter(
        user_id=user_id,
        created_at__gte=since,
        status__in=('completed',) + Payout.IN_FLIGHT_STATUSES,
    ).aggregate(total=Sum('points'))['total'] or 0


def _check_limits(user, points, method, details, now):
    if not user.is_active:
        raise NotEligible("Account is deactivated", code='account_inactive')
    validate_payment_details(method, details)
    minimum = minimum_payout(method)
    if points < minimum:
        raise LimitExceeded(f"Minimum payout is {minimum} points", code='below_minimum', minimum=minimum)
    if user.current_points < points:
        raise LimitExceeded("Insufficient points balance", code='insufficient_balance')

    in_flight = Payout.objects.filter(user_id=user.pk, status__in=Payout.IN_FLIGHT_STATUSES).count()
    if in_flight >= engine_setting('PAYOUT_MAX_PENDING'):
        raise LimitExceeded("Too many pending payouts", code='too_many_pending')

    day_start = datetime.combine(now.date(), time.min, tzinfo=now.tzinfo)
    if _period_total(user.pk, day_start) + points > engine_setting('PAYOUT_DAILY_LIMIT'):
        raise LimitExceeded("Daily payout limit exceeded", code='daily_limit_exceeded')
    if _period_total(user.pk, day_start - timedelta(days=7)) + points > engine_setting('PAYOUT_WEEKLY_LIMIT'):
        raise LimitExceeded("Weekly payout limit exceeded", code='weekly_limit_exceeded')


def request_payout(user_id, points, method, details=None, country='', ip_address=None, now=None):
    """Validate, fraud-check and debit a payout request.

    Returns the ``Payout``. A blocked payout is returned with status
    ``blocked`` and no points debited.
    """
    now = now or timezone.now()
    points = int(points)
    details = details or {}

    user = User.objects.filter(pk=user_id).first()
    if user is None:
        raise NotFound(f"User {user_id} not found", entity='user', entity_id=user_id)
    _check_limits(user, points, method, details, now)

    monthly_volume = Payout.objects.filter(
        user_id=user_id, status='completed', created_at__gte=now - timedelta(days=30)
    ).aggregate(total=Sum('points'))['total'] or 0
    fee = calculate_payout_fee(points, method, monthly_volume)
    payout = Payout.objects.create(
        user=user,
        points=points,
        fee_points=fee,
        amount=((Decimal(points) - fee) / Decimal(engine_setting('POINTS_PER_DOLLAR'))).quantize(Decimal('0.01')),
        method=method,
        details=details,
        country=country,
        ip_address=ip_address,
        created_at=now,
    )

    fraud = analyze_fraud('payment', payout.pk, {'points': points, 'method': method})
    if fraud.automatic_action == 'block':
        Payout.objects.filter(pk=payout.pk).update(
            status='blocked',
            fraud_score=fraud.fraud_score,
            fraud_flags=list(fraud.fraud_flags),
            failure_reason='fraud_blocked',
        )
        payout.refresh_from_db()
        logger.warning("Blocked payout %s for user %s (fraud score %s)", payout.pk, user_id, fraud.fraud_score)
        return payout

    status = 'pending_review' if fraud.automatic_action == 'limit' else 'pending'
    try:
        with transaction.atomic():
            debit_points(user_id, points, reason=f"payout:{payout.reference}")
            Payout.objects.filter(pk=payout.pk).update(
                status=status,
                fraud_score=fraud.fraud_score,
                fraud_flags=list(fraud.fraud_flags),
            )
    except LimitExceeded:
        Payout.objects.filter(pk=payout.pk).update(status='failed', failure_reason='insufficient_balance')
        logger.warning("Payout %s failed: balance changed before debit", payout.pk)
        raise

    payout.refresh_from_db()
    logger.info("Payout %s requested by user %s: %s points via %s (%s)", payout.pk, user_id, points, method, status)
    notify_safely(
        user_id,
        'payout_requested',
        title='Payout requested',
        message=f"Your payout of {payout.amount} is being processed",
        data={'payout_id': payout.pk, 'status': payout.status},
    )
    return payout


def _finish(payout_id, status, **changes):
    with transaction.atomic():
        updated = Payout.objects.filter(pk=payout_id, status__in=Payout.IN_FLIGHT_STATUSES).update(
            status=status,
            processed_at=timezone.now(),
            updated_at=timezone.now(),
            **changes,
        )
        if not updated:
            payout = Payout.objects.filter(pk=payout_id).first()
            if payout is None:
                raise NotFound(f"Payout {payout_id} not found", entity='payout', entity_id=payout_id)
            raise NotEligible(f"Payout {payout_id} is already {payout.status}", code='payout_final')
        return Payout.objects.get(pk=payout_id)


def complete_payout(payout_id, external_transaction_id=''):
    with transaction.atomic():
        payout = _finish(payout_id, 'completed', external_transaction_id=external_transaction_id)
        User.objects.filter(pk=payout.user_id).update(
            total_payouts_received=F('total_payouts_received') + payout.amount
        )
    logger.info("Payout %s completed", payout_id)
    return payout


def fail_payout(payout_id, reason):
    """Mark a payout failed and refund its points."""
    with transaction.atomic():
        payout = _finish(payout_id, 'failed', failure_reason=reason)
        adjust_balance(payout.user_id, 0, payout.points, reason=f"payout_refund:{payout.reference}")
    logger.warning("Payout %s failed and refunded: %s", payout_id, reason)
    return payout
