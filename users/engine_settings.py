"""
Defaults for the rewards engine tunables.

Deployments override individual keys through ``settings.REWARDS_ENGINE``;
anything not overridden falls back to the values below.
"""
from decimal import Decimal
from typing import Any, Dict

from django.conf import settings

DEFAULT_ENGINE_CONFIG: Dict[str, Any] = {
    # Regular share bonuses
    'VETERAN_MIN_LEVEL': 10,
    'VETERAN_MULTIPLIER': Decimal('1.10'),
    'STREAK_MIN_DAYS': 7,
    'STREAK_XP_RATE': Decimal('0.20'),
    'STREAK_POINTS_RATE': Decimal('0.10'),
    'FIRST_SHARE_XP_RATE': Decimal('0.50'),
    'FIRST_SHARE_POINTS_RATE': Decimal('0.25'),
    'DIVERSITY_MIN_CATEGORIES': 5,
    'DIVERSITY_BONUS_XP': 25,
    'DIVERSITY_BONUS_POINTS': 5,
    # Tournament share bonuses
    'TOURNAMENT_DEFAULT_MULTIPLIER': Decimal('1.5'),
    'TOURNAMENT_TOP_TIER_FRACTION': Decimal('0.10'),
    'TOURNAMENT_TOP_TIER_XP_RATE': Decimal('0.30'),
    'TOURNAMENT_TOP_TIER_POINTS_RATE': Decimal('0.15'),
    'TOURNAMENT_SECOND_TIER_FRACTION': Decimal('0.25'),
    'TOURNAMENT_SECOND_TIER_XP_RATE': Decimal('0.20'),
    'TOURNAMENT_SECOND_TIER_POINTS_RATE': Decimal('0.10'),
    'TOURNAMENT_STREAK_MIN_DAYS': 3,
    'TOURNAMENT_STREAK_XP_PER_DAY': 20,
    'TOURNAMENT_STREAK_POINTS_PER_DAY': 5,
    # Referrals
    'REFERRAL_MIN_SHARES': 5,
    'REFERRAL_MIN_XP': 100,
    'REFERRAL_MIN_POINTS': 10,
    'REFERRAL_MIN_DAYS_ACTIVE': 7,
    'REFERRER_BONUS_XP': 500,
    'REFERRER_BONUS_POINTS': 50,
    'REFERRED_BONUS_XP': 200,
    'REFERRED_BONUS_POINTS': 20,
    'REFERRAL_EXPIRY_DAYS': 30,
    'REFERRAL_AUTO_DISBURSE': True,
    # Fraud
    'FRAUD_REPORT_THRESHOLD': 70,
    'FRAUD_REVIEW_THRESHOLD': 60,
    'FRAUD_REPORT_WINDOW_HOURS': 24,
    'KNOWN_PROXY_PREFIXES': [],
    # Payouts
    'PAYOUT_MIN_POINTS': 100,
    'PAYOUT_MIN_POINTS_BY_METHOD': {
        'stripe': 100,
        'paypal': 100,
        'bank_transfer': 500,
        'crypto': 200,
    },
    'PAYOUT_DAILY_LIMIT': 10000,
    'PAYOUT_WEEKLY_LIMIT': 50000,
    'PAYOUT_MAX_PENDING': 3,
    'POINTS_PER_DOLLAR': 10,
}


def engine_setting(key: str) -> Any:
    """Return the configured value for ``key``, falling back to the default."""
    overrides = getattr(settings, 'REWARDS_ENGINE', None) or {}
    if key in overrides:
        return overrides[key]
    try:
        return DEFAULT_ENGINE_CONFIG[key]
    except KeyError:
        raise KeyError(f"Unknown rewards engine setting: {key}")
