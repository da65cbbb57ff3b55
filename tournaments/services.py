"""
Tournament registration, eligibility and leaderboard scoring.
"""
import logging
from decimal import Decimal

from django.db import IntegrityError, transaction
from django.db.models import Count, F, Sum
from django.utils import timezone

from users.exceptions import NotEligible, NotFound
from users.models import User
from users.utils import round_half_up

from .models import Tournament, TournamentParticipant

logger = logging.getLogger(__name__)

WEIGHTED_XP = Decimal('0.6')
WEIGHTED_POINTS = Decimal('0.4')


def check_tournament_eligibility(tournament, user):
    """Return ``{'eligible': bool, 'reason': str | None}`` for ``user``."""
    if user.user_level < tournament.min_user_level:
        return {'eligible': False, 'reason': 'level_too_low'}
    if not tournament.is_region_eligible(user.region):
        return {'eligible': False, 'reason': 'region_not_eligible'}
    if not user.is_active:
        return {'eligible': False, 'reason': 'account_inactive'}
    return {'eligible': True, 'reason': None}


def is_user_registered(tournament_id, user_id):
    return TournamentParticipant.objects.filter(
        tournament_id=tournament_id,
        user_id=user_id,
        status__in=TournamentParticipant.COMPETING_STATUSES,
    ).exists()


def register_for_tournament(tournament_id, user_id, now=None):
    now = now or timezone.now()
    tournament = Tournament.objects.filter(pk=tournament_id).first()
    if tournament is None:
        raise NotFound(f"Tournament {tournament_id} not found", entity='tournament', entity_id=tournament_id)
    user = User.objects.filter(pk=user_id).first()
    if user is None:
        raise NotFound(f"User {user_id} not found", entity='user', entity_id=user_id)

    if not tournament.registration_open(now):
        raise NotEligible("Tournament is not accepting registrations", code='registration_closed')

    eligibility = check_tournament_eligibility(tournament, user)
    if not eligibility['eligible']:
        raise NotEligible(f"User {user_id} cannot join tournament {tournament_id}", code=eligibility['reason'])

    try:
        with transaction.atomic():
            participant = TournamentParticipant.objects.create(
                tournament=tournament,
                user=user,
                registered_at=now,
            )
            seated = Tournament.objects.filter(
                pk=tournament.pk,
                total_participants__lt=F('max_participants'),
            ).update(total_participants=F('total_participants') + 1)
            if not seated:
                raise NotEligible("Tournament is full", code='tournament_full')
            User.objects.filter(pk=user_id).update(
                total_tournaments_participated=F('total_tournaments_participated') + 1
            )
    except IntegrityError:
        raise NotEligible("Already registered for this tournament", code='already_registered')

    logger.info("User %s registered for tournament %s", user_id, tournament_id)
    return participant


def compute_participant_score(tournament, shares_count, xp_earned, points_earned):
    method = tournament.scoring_method
    if method == 'xp_earned':
        raw = Decimal(xp_earned)
    elif method == 'points_earned':
        raw = Decimal(points_earned)
    elif method == 'weighted_score':
        raw = Decimal(xp_earned) * WEIGHTED_XP + Decimal(points_earned) * WEIGHTED_POINTS
    else:
        raw = Decimal(shares_count)
    return round_half_up(raw * (tournament.score_multiplier or Decimal('1')))


def get_participant_rank(tournament_id, user_id):
    """1 + number of participants with a strictly higher score, or None."""
    participant = TournamentParticipant.objects.filter(
        tournament_id=tournament_id, user_id=user_id
    ).only('total_score').first()
    if participant is None:
        return None
    higher = TournamentParticipant.objects.filter(
        tournament_id=tournament_id,
        total_score__gt=participant.total_score,
        status__in=TournamentParticipant.COMPETING_STATUSES,
    ).count()
    return higher + 1


def update_participant_score(tournament_id, user_id):
    """Recompute a participant's score from their verified tournament shares."""
    # Local import: shares depends on tournaments
    from shares.models import ShareEvent

    tournament = Tournament.objects.get(pk=tournament_id)
    totals = ShareEvent.objects.filter(
        tournament_id=tournament_id,
        user_id=user_id,
        validation_status=ShareEvent.STATUS_VERIFIED,
    ).aggregate(
        shares=Count('id'),
        xp=Sum('xp_awarded'),
        points=Sum('points_awarded'),
    )
    shares_count = totals['shares'] or 0
    xp_earned = totals['xp'] or 0
    points_earned = totals['points'] or 0
    score = compute_participant_score(tournament, shares_count, xp_earned, points_earned)

    updated = TournamentParticipant.objects.filter(
        tournament_id=tournament_id,
        user_id=user_id,
    ).update(
        shares_count=shares_count,
        xp_earned=xp_earned,
        points_earned=points_earned,
        total_score=score,
        status='active',
        last_scored_at=timezone.now(),
    )
    if not updated:
        logger.warning("User %s scored in tournament %s without being registered", user_id, tournament_id)
        return {'user_score': score, 'user_rank': None}

    return {'user_score': score, 'user_rank': get_participant_rank(tournament_id, user_id)}


def record_tournament_share(tournament_id, xp_awarded, points_awarded):
    Tournament.objects.filter(pk=tournament_id).update(
        total_shares=F('total_shares') + 1,
        total_xp_allocated=F('total_xp_allocated') + int(xp_awarded),
        total_points_allocated=F('total_points_allocated') + int(points_awarded),
    )


def get_leaderboard(tournament_id, limit=100):
    participants = (
        TournamentParticipant.objects
        .filter(tournament_id=tournament_id, status__in=TournamentParticipant.COMPETING_STATUSES)
        .select_related('user')
        .order_by('-total_score', 'registered_at')[:limit]
    )
    leaderboard = []
    previous_score = None
    rank = 0
    for position, participant in enumerate(participants, start=1):
        if participant.total_score != previous_score:
            rank = position
            previous_score = participant.total_score
        leaderboard.append({
            'user_id': participant.user_id,
            'username': participant.user.username,
            'score': participant.total_score,
            'rank': rank,
        })
    return leaderboard


def refresh_tournament_statuses(now=None):
    """Advance every scheduled/live tournament whose window has moved on."""
    now = now or timezone.now()
    moved = 0
    for tournament in Tournament.objects.filter(status__in=('scheduled', 'live')):
        if tournament.update_status(now):
            moved += 1
    if moved:
        logger.info("Advanced %s tournament statuses", moved)
    return moved
