"""
Fraud scoring for shares, payouts, users and devices.

Every entity type has a list of independent probes. A probe looks at one
signal and returns a non-negative sub-score plus zero or more flags. The
aggregate is the sum of sub-scores clamped to 0..100, which then maps onto a
risk level and an automatic action:

    score   level      action
    >= 90   critical   block
    >= 80   high       limit
    >= 60   medium     flag
    >= 40   low        allow
    else    minimal    allow

Scores above the report threshold open (or refresh) a FraudReport. When the
analysis itself fails the caller gets the worst case (100 / critical /
block) and the failure is escalated for manual review.
"""
import logging
import statistics
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Callable, Dict, List, Optional, Tuple

from django.db import transaction
from django.db.models import Count, F, Q, Sum
from django.utils import timezone

from users.engine_settings import engine_setting
from users.exceptions import NotFound, ValidationError

from ..models import DeviceFingerprint, FraudReport, UserDevice, UserIPAddress
from ..utils import check_ip_reputation, device_user_count, ip_user_count

logger = logging.getLogger(__name__)

ANALYSIS_ERROR = 'ANALYSIS_ERROR'

# Flag vocabulary
MULTIPLE_ACCOUNTS = 'multiple_accounts'
SUSPICIOUS_IP = 'suspicious_ip'
BOT_BEHAVIOR = 'bot_behavior'
UNUSUAL_PATTERNS = 'unusual_patterns'
GEOGRAPHIC_INCONSISTENCY = 'geographic_inconsistency'
DEVICE_MISMATCH = 'device_fingerprint_mismatch'
RAPID_ACTIVITY = 'rapid_activity'
LOW_QUALITY_SHARES = 'low_quality_shares'
FAKE_CONVERSIONS = 'fake_conversions'
PAYMENT_ANOMALIES = 'payment_anomalies'
REFERRAL_ABUSE = 'referral_abuse'
SUSPICIOUS_TIMING = 'suspicious_timing'

AUTOMATION_MARKERS = (
    'headless', 'selenium', 'webdriver', 'phantomjs', 'puppeteer', 'playwright',
    'python-requests', 'curl/', 'wget/', 'httpclient', 'bot', 'spider', 'crawler',
)

NIGHT_HOURS = range(0, 6)

RECOMMENDATIONS = {
    'critical': (
        'Immediate account suspension required',
        'Manual investigation mandatory',
        'Block all transactions',
    ),
    'high': (
        'Enhanced verification required',
        'Temporary transaction limits',
        'Monitor closely for 24 hours',
    ),
    'medium': (
        'Additional verification recommended',
        'Consider transaction limits',
        'Monitor for suspicious activity',
    ),
    'low': (
        'Standard processing',
        'Monitor for pattern changes',
    ),
    'minimal': (),
}

REPORT_TYPES = {
    'share': 'share_fraud',
    'payment': 'payment_fraud',
    'user': 'user_fraud',
    'device': 'device_fraud',
}


@dataclass(frozen=True)
class ProbeResult:
    score: int = 0
    flags: Tuple[str, ...] = ()
    details: Dict = field(default_factory=dict)


@dataclass(frozen=True)
class FraudAnalysis:
    fraud_score: int
    fraud_level: str
    fraud_flags: Tuple[str, ...]
    recommendations: Tuple[str, ...]
    requires_review: bool
    automatic_action: str
    risk_factors: Dict = field(default_factory=dict)
    report_id: Optional[int] = None

    @property
    def risk_level(self):
        return self.fraud_level

    def as_dict(self):
        return {
            'fraud_score': self.fraud_score,
            'fraud_level': self.fraud_level,
            'fraud_flags': list(self.fraud_flags),
            'recommendations': list(self.recommendations),
            'requires_review': self.requires_review,
            'automatic_action': self.automatic_action,
            'risk_factors': self.risk_factors,
            'report_id': self.report_id,
        }


Probe = Callable[[object, Dict], ProbeResult]
PROBES: Dict[str, List[Tuple[str, Probe]]] = {name: [] for name in REPORT_TYPES}


def probe(entity_type, name):
    """Register a probe for ``entity_type`` under ``name``."""
    def decorator(func):
        PROBES[entity_type].append((name, func))
        return func
    return decorator


# ---------------------------------------------------------------------------
# Thresholds
# ---------------------------------------------------------------------------

def clamp_score(score) -> int:
    return int(max(0, min(100, score)))


def determine_fraud_level(score) -> str:
    if score >= 90:
        return 'critical'
    if score >= 80:
        return 'high'
    if score >= 60:
        return 'medium'
    if score >= 40:
        return 'low'
    return 'minimal'


def determine_automatic_action(score) -> str:
    if score >= 90:
        return 'block'
    if score >= 80:
        return 'limit'
    if score >= 60:
        return 'flag'
    return 'allow'


def generate_recommendations(level) -> Tuple[str, ...]:
    return RECOMMENDATIONS.get(level, ())


# ---------------------------------------------------------------------------
# Entity loading
# ---------------------------------------------------------------------------

def _load_share(entity_id):
    from shares.models import ShareEvent
    return ShareEvent.objects.select_related('user', 'app').get(pk=entity_id)


def _load_payment(entity_id):
    from payments.models import Payout
    return Payout.objects.select_related('user').get(pk=entity_id)


def _load_user(entity_id):
    from users.models import User
    return User.objects.get(pk=entity_id)


def _load_device(entity_id):
    lookup = Q(fingerprint=str(entity_id))
    if str(entity_id).isdigit():
        lookup |= Q(pk=int(entity_id))
    return DeviceFingerprint.objects.get(lookup)


LOADERS = {
    'share': _load_share,
    'payment': _load_payment,
    'user': _load_user,
    'device': _load_device,
}


def _reported_user_id(entity_type, entity):
    if entity_type in ('share', 'payment'):
        return entity.user_id
    if entity_type == 'user':
        return entity.pk
    return None


# ---------------------------------------------------------------------------
# Share probes
# ---------------------------------------------------------------------------

def _recent_user_shares(user_id, since):
    from shares.models import ShareEvent
    return ShareEvent.objects.filter(user_id=user_id, created_at__gte=since)


@probe('share', 'device')
def share_device_probe(share, context):
    if not share.device_fingerprint:
        return ProbeResult(5, details={'reason': 'no_device_data'})
    accounts = device_user_count(share.device_fingerprint)
    blocked = DeviceFingerprint.objects.filter(fingerprint=share.device_fingerprint, is_blocked=True).exists()
    score, flags = 0, []
    if accounts > 5:
        score, flags = 30, [MULTIPLE_ACCOUNTS]
    elif accounts > 2:
        score, flags = 15, [MULTIPLE_ACCOUNTS]
    if blocked:
        score += 40
        flags.append(DEVICE_MISMATCH)
    return ProbeResult(score, tuple(flags), {'accounts_on_device': accounts, 'blocked': blocked})


@probe('share', 'ip')
def share_ip_probe(share, context):
    if not share.ip_address:
        return ProbeResult(5, details={'reason': 'no_ip'})
    reputation = check_ip_reputation(share.ip_address)
    score, flags = 0, []
    if reputation['is_tor']:
        score += 30
    elif reputation['is_vpn'] or reputation['is_proxy']:
        score += 20
    elif reputation['is_datacenter']:
        score += 15
    if score:
        flags.append(SUSPICIOUS_IP)
    users_on_ip = ip_user_count(share.ip_address)
    if users_on_ip > 10:
        score += 25
        flags.append(MULTIPLE_ACCOUNTS)
    elif users_on_ip > 3:
        score += 10
        flags.append(MULTIPLE_ACCOUNTS)
    return ProbeResult(score, tuple(dict.fromkeys(flags)), {'reputation': reputation, 'users_on_ip': users_on_ip})


@probe('share', 'sharing_pattern')
def share_pattern_probe(share, context):
    since = share.created_at - timedelta(hours=24)
    stamps = list(
        _recent_user_shares(share.user_id, since)
        .filter(created_at__lte=share.created_at)
        .order_by('created_at')
        .values_list('created_at', flat=True)
    )
    score, flags = 0, []
    burst_window = share.created_at - timedelta(minutes=10)
    burst = sum(1 for stamp in stamps if stamp >= burst_window)
    if burst >= 10:
        score += 25
        flags.append(RAPID_ACTIVITY)

    regularity = None
    if len(stamps) >= 5:
        gaps = [(later - earlier).total_seconds() for earlier, later in zip(stamps, stamps[1:])]
        mean_gap = statistics.mean(gaps)
        if mean_gap > 0:
            regularity = statistics.pstdev(gaps) / mean_gap
            # Humans are irregular; near-constant spacing points at a script
            if regularity < 0.1:
                score += 20
                flags.append(BOT_BEHAVIOR)
    return ProbeResult(score, tuple(flags), {'shares_24h': len(stamps), 'burst_10m': burst,
                                             'interval_variation': regularity})


@probe('share', 'time_of_day')
def share_time_probe(share, context):
    since = share.created_at - timedelta(days=7)
    hours = list(
        _recent_user_shares(share.user_id, since)
        .filter(created_at__lte=share.created_at)
        .values_list('created_at__hour', flat=True)
    )
    night = sum(1 for hour in hours if hour in NIGHT_HOURS)
    ratio = night / len(hours) if hours else 0
    if len(hours) >= 5 and ratio >= 0.8:
        return ProbeResult(15, (SUSPICIOUS_TIMING,), {'night_ratio': ratio})
    if share.created_at.hour in NIGHT_HOURS:
        return ProbeResult(3, details={'night_ratio': ratio})
    return ProbeResult(0, details={'night_ratio': ratio})


@probe('share', 'geography')
def share_geography_probe(share, context):
    score, flags = 0, []
    region = share.user.region
    if share.country and region and region != 'GLOBAL' and share.country.upper() != region.upper():
        score += 15
        flags.append(GEOGRAPHIC_INCONSISTENCY)
    since = share.created_at - timedelta(hours=24)
    countries = set(
        _recent_user_shares(share.user_id, since)
        .exclude(country='')
        .values_list('country', flat=True)
    )
    if len(countries) >= 3:
        score += 20
        flags.append(GEOGRAPHIC_INCONSISTENCY)
    return ProbeResult(score, tuple(dict.fromkeys(flags)), {'countries_24h': sorted(countries)})


@probe('share', 'user_agent')
def share_user_agent_probe(share, context):
    return _user_agent_result(share.user_agent, share.device_info or {})


@probe('share', 'conversion')
def share_conversion_probe(share, context):
    clicks = share.click_count
    conversions = share.conversion_count
    if not clicks and not conversions:
        return ProbeResult(0)
    if conversions > clicks:
        return ProbeResult(30, (FAKE_CONVERSIONS,), {'clicks': clicks, 'conversions': conversions})
    if clicks >= 20 and conversions / clicks > 0.5:
        return ProbeResult(20, (FAKE_CONVERSIONS,), {'clicks': clicks, 'conversions': conversions})
    return ProbeResult(0, details={'clicks': clicks, 'conversions': conversions})


def _user_agent_result(user_agent, device_info):
    ua = (user_agent or device_info.get('user_agent') or '').lower()
    if not ua:
        return ProbeResult(10, (UNUSUAL_PATTERNS,), {'reason': 'missing_user_agent'})
    if any(marker in ua for marker in AUTOMATION_MARKERS):
        return ProbeResult(30, (BOT_BEHAVIOR,), {'reason': 'automation_user_agent'})
    platform = str(device_info.get('platform', '')).lower()
    if (platform == 'ios' and 'android' in ua) or (platform == 'android' and ('iphone' in ua or 'ipad' in ua)):
        return ProbeResult(15, (DEVICE_MISMATCH,), {'reason': 'platform_mismatch'})
    return ProbeResult(0)


# ---------------------------------------------------------------------------
# Payment probes
# ---------------------------------------------------------------------------

def _other_payouts(payout):
    from payments.models import Payout
    return Payout.objects.filter(user_id=payout.user_id).exclude(pk=payout.pk)


@probe('payment', 'method')
def payment_method_probe(payout, context):
    from payments.models import Payout

    score, flags = 0, []
    if payout.method not in dict(Payout.METHOD_CHOICES):
        score += 10
        flags.append(PAYMENT_ANOMALIES)
    since = payout.created_at - timedelta(days=30)
    accounts = {
        other.account_key
        for other in _other_payouts(payout).filter(created_at__gte=since).only('method', 'details')
        if other.account_key
    }
    if payout.account_key:
        accounts.add(payout.account_key)
    if len(accounts) >= 3:
        score += 20
        flags.append(PAYMENT_ANOMALIES)
    return ProbeResult(score, tuple(dict.fromkeys(flags)), {'payout_accounts_30d': len(accounts)})


@probe('payment', 'amount_pattern')
def payment_amount_probe(payout, context):
    previous = list(_other_payouts(payout).filter(status='completed').values_list('points', flat=True))
    score, flags = 0, []
    if len(previous) >= 2:
        average = sum(previous) / len(previous)
        if average and payout.points > average * 3:
            score += 25
            flags.append(PAYMENT_ANOMALIES)
    account_age = payout.created_at - payout.user.date_joined
    if account_age < timedelta(days=7) and payout.points >= payout.user.current_points:
        score += 15
        flags.append(PAYMENT_ANOMALIES)
    return ProbeResult(score, tuple(dict.fromkeys(flags)), {'previous_completed': len(previous)})


@probe('payment', 'history')
def payment_history_probe(payout, context):
    others = _other_payouts(payout)
    if not others.exists():
        return ProbeResult(10, details={'first_payout': True})
    failures = others.filter(status__in=('blocked', 'failed')).count()
    if failures >= 2:
        return ProbeResult(20, (PAYMENT_ANOMALIES,), {'failed_or_blocked': failures})
    return ProbeResult(0, details={'failed_or_blocked': failures})


@probe('payment', 'geography')
def payment_geography_probe(payout, context):
    from shares.models import ShareEvent

    score, flags = 0, []
    region = payout.user.region
    if payout.country and region and region != 'GLOBAL' and payout.country.upper() != region.upper():
        score += 15
        flags.append(GEOGRAPHIC_INCONSISTENCY)
    share_countries = set(
        ShareEvent.objects.filter(user_id=payout.user_id).exclude(country='').values_list('country', flat=True)
    )
    if payout.country and share_countries and payout.country.upper() not in {c.upper() for c in share_countries}:
        score += 10
        flags.append(GEOGRAPHIC_INCONSISTENCY)
    return ProbeResult(score, tuple(dict.fromkeys(flags)), {'share_countries': sorted(share_countries)})


@probe('payment', 'timing')
def payment_timing_probe(payout, context):
    score, flags = 0, []
    recent = _other_payouts(payout).filter(created_at__gte=payout.created_at - timedelta(hours=24)).count()
    if recent >= 3:
        score += 20
        flags.append(RAPID_ACTIVITY)
    if payout.created_at - payout.user.date_joined < timedelta(days=1):
        score += 20
        flags.append(SUSPICIOUS_TIMING)
    return ProbeResult(score, tuple(flags), {'payouts_24h': recent})


# ---------------------------------------------------------------------------
# User probes
# ---------------------------------------------------------------------------

@probe('user', 'account_creation')
def user_creation_probe(user, context):
    age = timezone.now() - user.date_joined
    if age < timedelta(days=1):
        return ProbeResult(20, (SUSPICIOUS_TIMING,), {'account_age_hours': age.total_seconds() // 3600})
    if age < timedelta(days=7):
        return ProbeResult(10, details={'account_age_days': age.days})
    return ProbeResult(0, details={'account_age_days': age.days})


@probe('user', 'activity')
def user_activity_probe(user, context):
    shares_24h = _recent_user_shares(user.pk, timezone.now() - timedelta(hours=24)).count()
    if shares_24h > 50:
        return ProbeResult(25, (RAPID_ACTIVITY,), {'shares_24h': shares_24h})
    if shares_24h > 20:
        return ProbeResult(10, details={'shares_24h': shares_24h})
    return ProbeResult(0, details={'shares_24h': shares_24h})


@probe('user', 'referrals')
def user_referral_probe(user, context):
    from achievements.models import UserReferral

    referrals = UserReferral.objects.filter(referrer_id=user.pk)
    recent = referrals.filter(created_at__gte=timezone.now() - timedelta(hours=1)).count()
    stats = referrals.aggregate(total=Count('id'), fraudulent=Count('id', filter=Q(status='fraudulent')))
    score, flags = 0, []
    if recent >= 3:
        score += 25
        flags.append(REFERRAL_ABUSE)
    if stats['total'] >= 3 and stats['fraudulent'] / stats['total'] >= 0.3:
        score += 30
        flags.append(REFERRAL_ABUSE)
    return ProbeResult(score, tuple(dict.fromkeys(flags)), {'referrals_last_hour': recent, **stats})


@probe('user', 'rewards')
def user_reward_probe(user, context):
    from shares.models import ShareEvent

    week = _recent_user_shares(user.pk, timezone.now() - timedelta(days=7))
    counts = week.aggregate(
        total=Count('id'),
        rejected=Count('id', filter=Q(validation_status=ShareEvent.STATUS_REJECTED)),
    )
    xp_24h = ShareEvent.objects.filter(
        user_id=user.pk,
        validation_status=ShareEvent.STATUS_VERIFIED,
        verified_at__gte=timezone.now() - timedelta(hours=24),
    ).aggregate(xp=Sum('xp_awarded'))['xp'] or 0
    score, flags = 0, []
    if xp_24h > 5000:
        score += 20
        flags.append(UNUSUAL_PATTERNS)
    if counts['total'] >= 4 and counts['rejected'] / counts['total'] >= 0.5:
        score += 15
        flags.append(LOW_QUALITY_SHARES)
    return ProbeResult(score, tuple(flags), {'xp_24h': xp_24h, **counts})


@probe('user', 'consistency')
def user_consistency_probe(user, context):
    devices = UserDevice.objects.filter(user_id=user.pk)
    device_count = devices.count()
    shared_devices = DeviceFingerprint.objects.filter(userdevice__user_id=user.pk, total_users__gt=1).count()
    ip_count = UserIPAddress.objects.filter(
        user_id=user.pk, last_seen__gte=timezone.now() - timedelta(days=7)
    ).count()
    score, flags = 0, []
    if device_count >= 4:
        score += 15
        flags.append(DEVICE_MISMATCH)
    if ip_count >= 10:
        score += 15
        flags.append(SUSPICIOUS_IP)
    if shared_devices:
        score += 20
        flags.append(MULTIPLE_ACCOUNTS)
    return ProbeResult(score, tuple(flags), {'devices': device_count, 'shared_devices': shared_devices,
                                             'ips_7d': ip_count})


# ---------------------------------------------------------------------------
# Device probes
# ---------------------------------------------------------------------------

@probe('device', 'accounts')
def device_accounts_probe(device, context):
    accounts = device.total_users
    if accounts > 5:
        return ProbeResult(40, (MULTIPLE_ACCOUNTS,), {'accounts': accounts})
    if accounts > 2:
        return ProbeResult(20, (MULTIPLE_ACCOUNTS,), {'accounts': accounts})
    return ProbeResult(0, details={'accounts': accounts})


@probe('device', 'spoofing')
def device_spoofing_probe(device, context):
    details = {**(device.device_details or {}), **(context or {})}
    score, flags = 0, []
    if details.get('is_emulator') or details.get('is_rooted') or details.get('is_jailbroken'):
        score += 35
        flags.append(DEVICE_MISMATCH)
    if details.get('mock_location'):
        score += 20
        flags.append(GEOGRAPHIC_INCONSISTENCY)
    return ProbeResult(score, tuple(flags))


@probe('device', 'browser')
def device_browser_probe(device, context):
    details = {**(device.device_details or {}), **(context or {})}
    if details.get('webdriver'):
        return ProbeResult(30, (BOT_BEHAVIOR,), {'reason': 'webdriver'})
    ua = str(details.get('user_agent', '')).lower()
    if ua and any(marker in ua for marker in AUTOMATION_MARKERS):
        return ProbeResult(30, (BOT_BEHAVIOR,), {'reason': 'automation_user_agent'})
    return ProbeResult(0)


@probe('device', 'mobile')
def device_mobile_probe(device, context):
    details = device.device_details or {}
    platform = str(details.get('platform', '')).lower()
    if platform not in ('ios', 'android'):
        return ProbeResult(0)
    model = str(details.get('model', '')).lower()
    if not model or not details.get('os_version'):
        return ProbeResult(15, (DEVICE_MISMATCH,), {'reason': 'incomplete_mobile_profile'})
    if (platform == 'android' and ('iphone' in model or 'ipad' in model)) or \
            (platform == 'ios' and not model.startswith(('iphone', 'ipad', 'ipod'))):
        return ProbeResult(20, (DEVICE_MISMATCH,), {'reason': 'model_platform_mismatch'})
    return ProbeResult(0)


# ---------------------------------------------------------------------------
# Aggregation
# ---------------------------------------------------------------------------

def score_probes(entity, context, probes) -> Tuple[int, Tuple[str, ...], Dict]:
    """Run ``probes`` and return (clamped score, ordered unique flags, risk factors)."""
    total = 0
    flags = []
    risk_factors = {}
    for name, run in probes:
        result = run(entity, context)
        if result.score < 0:
            raise ValidationError(f"Probe {name} returned a negative score", probe=name)
        total += result.score
        flags.extend(result.flags)
        risk_factors[name] = {'score': result.score, 'flags': list(result.flags), **result.details}
    return clamp_score(total), tuple(dict.fromkeys(flags)), risk_factors


def open_fraud_report(entity_type, entity_id, score, level, flags, risk_factors, recommendations,
                      reported_user_id=None, now=None):
    """Open a report, or refresh the open one for this entity inside the dedupe window."""
    now = now or timezone.now()
    window_start = now - timedelta(hours=engine_setting('FRAUD_REPORT_WINDOW_HOURS'))
    with transaction.atomic():
        existing = (
            FraudReport.objects.select_for_update()
            .filter(
                entity_type=entity_type,
                entity_id=str(entity_id),
                status__in=FraudReport.OPEN_STATUSES,
                created_at__gte=window_start,
            )
            .order_by('-created_at')
            .first()
        )
        if existing:
            new_score = max(existing.fraud_score, score)
            existing.fraud_score = new_score
            existing.risk_level = determine_fraud_level(new_score)
            existing.fraud_flags = list(dict.fromkeys(list(existing.fraud_flags) + list(flags)))
            existing.risk_factors = risk_factors
            existing.recommendations = list(generate_recommendations(existing.risk_level))
            existing.last_detected_at = now
            existing.save(update_fields=[
                'fraud_score', 'risk_level', 'fraud_flags', 'risk_factors',
                'recommendations', 'last_detected_at', 'updated_at',
            ])
            FraudReport.objects.filter(pk=existing.pk).update(detection_count=F('detection_count') + 1)
            logger.info("Refreshed fraud report %s for %s %s (score %s)", existing.pk, entity_type, entity_id, new_score)
            return existing

        report = FraudReport.objects.create(
            report_type=REPORT_TYPES.get(entity_type, 'other'),
            entity_type=entity_type,
            entity_id=str(entity_id),
            reported_user_id=reported_user_id,
            fraud_score=score,
            risk_level=level,
            fraud_flags=list(flags),
            risk_factors=risk_factors,
            recommendations=list(recommendations),
            last_detected_at=now,
        )
    logger.info("Opened fraud report %s for %s %s (score %s)", report.pk, entity_type, entity_id, score)
    return report


def fail_safe_analysis(error) -> FraudAnalysis:
    return FraudAnalysis(
        fraud_score=100,
        fraud_level='critical',
        fraud_flags=(ANALYSIS_ERROR,),
        recommendations=('Manual review required due to analysis error',),
        requires_review=True,
        automatic_action='block',
        risk_factors={'error': str(error)},
    )


def analyze_fraud(entity_type, entity_id, context=None, probes=None) -> FraudAnalysis:
    """Score one entity and open a report when it crosses the threshold.

    Never raises: any failure yields the fail-safe analysis.
    """
    context = context or {}
    try:
        if entity_type not in LOADERS:
            raise ValidationError(f"Unsupported entity type: {entity_type}", entity_type=entity_type)
        try:
            entity = LOADERS[entity_type](entity_id)
        except Exception as e:
            raise NotFound(f"{entity_type} {entity_id} not found", entity=entity_type, entity_id=entity_id) from e

        score, flags, risk_factors = score_probes(
            entity, context, PROBES[entity_type] if probes is None else probes
        )
        level = determine_fraud_level(score)
        recommendations = generate_recommendations(level)

        report_id = None
        if score > engine_setting('FRAUD_REPORT_THRESHOLD'):
            report = open_fraud_report(
                entity_type, entity_id, score, level, flags, risk_factors, recommendations,
                reported_user_id=_reported_user_id(entity_type, entity),
            )
            report_id = report.pk

        return FraudAnalysis(
            fraud_score=score,
            fraud_level=level,
            fraud_flags=flags,
            recommendations=recommendations,
            requires_review=score > engine_setting('FRAUD_REVIEW_THRESHOLD'),
            automatic_action=determine_automatic_action(score),
            risk_factors=risk_factors,
            report_id=report_id,
        )
    except Exception as e:
        logger.error("Fraud analysis failed for %s %s", entity_type, entity_id, exc_info=True)
        analysis = fail_safe_analysis(e)
        try:
            report = open_fraud_report(
                entity_type, entity_id, analysis.fraud_score, analysis.fraud_level,
                analysis.fraud_flags, analysis.risk_factors, analysis.recommendations,
            )
        except Exception:
            logger.error("Could not escalate failed fraud analysis for %s %s", entity_type, entity_id, exc_info=True)
            return analysis
        return FraudAnalysis(**{**analysis.__dict__, 'report_id': report.pk})
