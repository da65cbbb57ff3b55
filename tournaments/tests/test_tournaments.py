from datetime import timedelta
from decimal import Decimal
from unittest.mock import patch

from django.contrib.auth import get_user_model
from django.test import TestCase
from django.utils import timezone

from catalog.models import App
from shares.models import ShareEvent
from tournaments.models import Tournament, TournamentParticipant
from tournaments.services import (
    compute_participant_score,
    get_leaderboard,
    get_participant_rank,
    refresh_tournament_statuses,
    register_for_tournament,
    update_participant_score,
)
from users.exceptions import NotEligible

User = get_user_model()


class TournamentTestMixin:
    def make_tournament(self, **kwargs):
        now = timezone.now()
        values = {
            'name': "Weekly Sprint",
            'status': 'live',
            'start_date': now - timedelta(days=1),
            'end_date': now + timedelta(days=6),
        }
        values.update(kwargs)
        tournament = Tournament.objects.create(**values)
        tournament.apps.add(self.app)
        return tournament


class RegistrationTests(TournamentTestMixin, TestCase):
    def setUp(self):
        self.app = App.objects.create(name="Tournament App", app_xp=50, app_points=10)
        self.user = User.objects.create_user(username='player', password='testpass123')

    def test_register(self):
        tournament = self.make_tournament()

        participant = register_for_tournament(tournament.pk, self.user.pk)

        tournament.refresh_from_db()
        self.user.refresh_from_db()
        self.assertEqual(participant.status, 'registered')
        self.assertEqual(tournament.total_participants, 1)
        self.assertEqual(self.user.total_tournaments_participated, 1)

    def test_register_twice(self):
        tournament = self.make_tournament()
        register_for_tournament(tournament.pk, self.user.pk)

        with self.assertRaises(NotEligible) as ctx:
            register_for_tournament(tournament.pk, self.user.pk)

        self.assertEqual(ctx.exception.code, 'already_registered')

    def test_full_tournament(self):
        tournament = self.make_tournament(max_participants=1)
        register_for_tournament(tournament.pk, self.user.pk)
        other = User.objects.create_user(username='late', password='testpass123')

        with self.assertRaises(NotEligible) as ctx:
            register_for_tournament(tournament.pk, other.pk)

        self.assertEqual(ctx.exception.code, 'tournament_full')
        self.assertFalse(TournamentParticipant.objects.filter(user=other).exists())

    def test_level_and_region_rules(self):
        high_level = self.make_tournament(min_user_level=5)
        regional = self.make_tournament(eligible_regions=['BR'])

        with self.assertRaises(NotEligible) as level_ctx:
            register_for_tournament(high_level.pk, self.user.pk)
        with self.assertRaises(NotEligible) as region_ctx:
            register_for_tournament(regional.pk, self.user.pk)

        self.assertEqual(level_ctx.exception.code, 'level_too_low')
        self.assertEqual(region_ctx.exception.code, 'region_not_eligible')

    def test_registration_closed(self):
        tournament = self.make_tournament(status='completed')

        with self.assertRaises(NotEligible) as ctx:
            register_for_tournament(tournament.pk, self.user.pk)

        self.assertEqual(ctx.exception.code, 'registration_closed')


class ScoringTests(TournamentTestMixin, TestCase):
    def setUp(self):
        self.app = App.objects.create(name="Scoring App", app_xp=50, app_points=10)

    def test_scoring_methods(self):
        tournament = self.make_tournament(scoring_method='weighted_score', score_multiplier=Decimal('1.5'))
        self.assertEqual(compute_participant_score(tournament, 3, 100, 50), 120)

        tournament.scoring_method = 'xp_earned'
        self.assertEqual(compute_participant_score(tournament, 3, 100, 50), 150)

        tournament.scoring_method = 'shares_count'
        tournament.score_multiplier = Decimal('1')
        self.assertEqual(compute_participant_score(tournament, 3, 100, 50), 3)

    def test_update_score_from_verified_shares(self):
        tournament = self.make_tournament(scoring_method='xp_earned')
        user = User.objects.create_user(username='scorer', password='testpass123')
        register_for_tournament(tournament.pk, user.pk)
        for xp in (40, 60):
            ShareEvent.objects.create(
                user=user, app=self.app, tournament=tournament, share_type='tournament',
                validation_status='verified', verified_at=timezone.now(), xp_awarded=xp, points_awarded=5,
            )
        ShareEvent.objects.create(user=user, app=self.app, tournament=tournament, xp_awarded=999)

        result = update_participant_score(tournament.pk, user.pk)

        self.assertEqual(result, {'user_score': 100, 'user_rank': 1})
        participant = TournamentParticipant.objects.get(tournament=tournament, user=user)
        self.assertEqual(participant.shares_count, 2)
        self.assertEqual(participant.status, 'active')

    def test_rank_and_leaderboard_ties(self):
        tournament = self.make_tournament()
        scores = {'alpha': 30, 'bravo': 30, 'charlie': 10}
        users = {}
        for name, score in scores.items():
            users[name] = User.objects.create_user(username=name, password='testpass123')
            participant = register_for_tournament(tournament.pk, users[name].pk)
            TournamentParticipant.objects.filter(pk=participant.pk).update(total_score=score)

        self.assertEqual(get_participant_rank(tournament.pk, users['alpha'].pk), 1)
        self.assertEqual(get_participant_rank(tournament.pk, users['bravo'].pk), 1)
        self.assertEqual(get_participant_rank(tournament.pk, users['charlie'].pk), 3)
        self.assertIsNone(get_participant_rank(tournament.pk, 999999))

        board = get_leaderboard(tournament.pk)
        self.assertEqual([row['rank'] for row in board], [1, 1, 3])

    def test_rank_ignores_withdrawn_and_disqualified(self):
        tournament = self.make_tournament()
        scores = {'leader': 50, 'quitter': 80, 'cheater': 90, 'runner': 20}
        users = {}
        for name, score in scores.items():
            users[name] = User.objects.create_user(username=name, password='testpass123')
            participant = register_for_tournament(tournament.pk, users[name].pk)
            TournamentParticipant.objects.filter(pk=participant.pk).update(total_score=score)
        TournamentParticipant.objects.filter(user=users['quitter']).update(status='withdrawn')
        TournamentParticipant.objects.filter(user=users['cheater']).update(status='disqualified')

        self.assertEqual(get_participant_rank(tournament.pk, users['leader'].pk), 1)
        self.assertEqual(get_participant_rank(tournament.pk, users['runner'].pk), 2)
        self.assertEqual(len(get_leaderboard(tournament.pk)), 2)


class StatusRefreshTests(TournamentTestMixin, TestCase):
    def setUp(self):
        self.app = App.objects.create(name="Status App")

    def test_refresh_moves_statuses(self):
        now = timezone.now()
        starting = self.make_tournament(status='scheduled', start_date=now - timedelta(hours=1))
        finished = self.make_tournament(status='live', end_date=now - timedelta(minutes=1))
        future = self.make_tournament(status='scheduled', start_date=now + timedelta(days=1))

        self.assertEqual(refresh_tournament_statuses(now), 2)

        starting.refresh_from_db()
        finished.refresh_from_db()
        future.refresh_from_db()
        self.assertEqual(starting.status, 'live')
        self.assertEqual(finished.status, 'completed')
        self.assertEqual(future.status, 'scheduled')

    @patch('users.tasks.connection')
    def test_refresh_task(self, mock_connection):
        from tournaments.tasks import refresh_tournament_statuses as refresh_task

        self.make_tournament(status='live', end_date=timezone.now() - timedelta(minutes=1))

        self.assertEqual(refresh_task(), 1)
        mock_connection.close.assert_called_once()
