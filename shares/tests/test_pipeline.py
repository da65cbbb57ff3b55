from datetime import timedelta
from decimal import Decimal
from unittest.mock import patch

from django.contrib.auth import get_user_model
from django.test import TestCase
from django.utils import timezone

from catalog.models import App
from notifications.models import Notification
from security.services.fraud import FraudAnalysis
from shares.models import ShareEvent
from shares.services.pipeline import record_share, verify_share
from tournaments.models import Tournament, TournamentParticipant
from tournaments.services import register_for_tournament
from users.exceptions import AlreadyAwarded, LimitExceeded, NotEligible, NotFound, ValidationError

User = get_user_model()


def fraud_result(score=5, action='allow'):
    return FraudAnalysis(
        fraud_score=score,
        fraud_level='minimal' if score < 40 else 'critical',
        fraud_flags=() if score < 40 else ('bot_behavior',),
        recommendations=(),
        requires_review=score > 60,
        automatic_action=action,
    )


@patch('shares.services.pipeline.analyze_fraud')
class SharePipelineTests(TestCase):
    def setUp(self):
        self.app = App.objects.create(name="Pipeline App", app_xp=50, app_points=10)
        self.user = User.objects.create_user(username='pipeline', password='testpass123')

    def test_record_and_verify(self, mock_fraud):
        mock_fraud.return_value = fraud_result()
        share = record_share(self.user.pk, self.app.pk, channel='whatsapp')
        self.assertEqual(share.validation_status, ShareEvent.STATUS_PENDING)
        self.assertEqual(share.share_type, 'regular')

        outcome = verify_share(share.pk, {'click_count': 3})

        self.assertTrue(outcome.rewarded)
        self.assertEqual((outcome.reward.total_xp, outcome.reward.total_points), (75, 13))
        share.refresh_from_db()
        self.assertEqual(share.xp_awarded, 75)
        self.assertEqual(share.points_awarded, 13)
        self.assertEqual(share.click_count, 3)
        self.assertEqual(share.fraud_score, 5)

        self.user.refresh_from_db()
        self.assertEqual(self.user.current_xp, 75)
        self.assertEqual(self.user.current_points, 13)
        self.assertEqual(self.user.total_apps_shared, 1)
        self.assertEqual(self.user.sharing_streak_days, 1)

        self.app.refresh_from_db()
        self.assertEqual(self.app.total_shared, 1)
        self.assertEqual(self.app.total_points_spent, 13)
        self.assertTrue(
            Notification.objects.filter(user=self.user, notification_type='share_rewarded').exists()
        )

    def test_verify_twice_pays_once(self, mock_fraud):
        mock_fraud.return_value = fraud_result()
        share = record_share(self.user.pk, self.app.pk)
        verify_share(share.pk)

        with self.assertRaises(AlreadyAwarded):
            verify_share(share.pk)

        self.user.refresh_from_db()
        self.assertEqual(self.user.current_xp, 75)

    def test_cooldown_blocks_second_share(self, mock_fraud):
        record_share(self.user.pk, self.app.pk)

        with self.assertRaises(LimitExceeded) as ctx:
            record_share(self.user.pk, self.app.pk)

        self.assertEqual(ctx.exception.code, 'cooldown_active')

    def test_daily_limit_stops_before_rewards(self, mock_fraud):
        App.objects.filter(pk=self.app.pk).update(daily_user_limit=10, cooldown_minutes=0)
        now = timezone.now()
        for _ in range(10):
            ShareEvent.objects.create(
                user=self.user, app=self.app, created_at=now,
                validation_status=ShareEvent.STATUS_VERIFIED, verified_at=now,
            )

        with patch('shares.services.pipeline.calculate_share_rewards') as mock_rewards:
            with self.assertRaises(LimitExceeded) as ctx:
                record_share(self.user.pk, self.app.pk, now=now)

        self.assertEqual(ctx.exception.code, 'user_daily_limit_exceeded')
        mock_rewards.assert_not_called()
        self.assertEqual(ShareEvent.objects.filter(user=self.user).count(), 10)

    def test_unknown_user(self, mock_fraud):
        with self.assertRaises(NotFound):
            record_share(999999, self.app.pk)

    def test_fraud_block_rejects(self, mock_fraud):
        mock_fraud.return_value = fraud_result(95, 'block')
        share = record_share(self.user.pk, self.app.pk)

        outcome = verify_share(share.pk)

        self.assertEqual(outcome.status, ShareEvent.STATUS_REJECTED)
        self.assertEqual(outcome.reason, 'fraud_blocked')
        self.user.refresh_from_db()
        self.assertEqual(self.user.current_xp, 0)
        with self.assertRaises(NotEligible):
            verify_share(share.pk)

    def test_fraud_limit_holds_share(self, mock_fraud):
        mock_fraud.return_value = fraud_result(85, 'limit')
        share = record_share(self.user.pk, self.app.pk)

        outcome = verify_share(share.pk)

        self.assertEqual(outcome.status, ShareEvent.STATUS_PENDING)
        self.assertEqual(outcome.reason, 'held_for_review')
        share.refresh_from_db()
        self.assertEqual(share.fraud_score, 85)

    def test_expired_share(self, mock_fraud):
        share = record_share(self.user.pk, self.app.pk)

        outcome = verify_share(share.pk, now=share.expires_at + timedelta(minutes=1))

        self.assertEqual(outcome.reason, 'share_expired')
        mock_fraud.assert_not_called()

    def test_budget_exhausted_at_issue(self, mock_fraud):
        mock_fraud.return_value = fraud_result()
        App.objects.filter(pk=self.app.pk).update(budget_total=Decimal('5'))
        share = record_share(self.user.pk, self.app.pk)

        outcome = verify_share(share.pk)

        self.assertEqual(outcome.status, ShareEvent.STATUS_REJECTED)
        self.assertEqual(outcome.reason, 'app_budget_exhausted')
        self.user.refresh_from_db()
        self.app.refresh_from_db()
        self.assertEqual(self.user.current_points, 0)
        self.assertEqual(self.app.total_points_spent, 0)

    def test_follow_up_failure_keeps_reward(self, mock_fraud):
        mock_fraud.return_value = fraud_result()
        share = record_share(self.user.pk, self.app.pk)

        with patch('shares.services.pipeline.update_sharing_streak', side_effect=RuntimeError("boom")):
            outcome = verify_share(share.pk)

        self.assertTrue(outcome.rewarded)
        self.assertIsNone(outcome.streak)
        self.user.refresh_from_db()
        self.assertEqual(self.user.current_xp, 75)

    def test_tournament_share(self, mock_fraud):
        mock_fraud.return_value = fraud_result()
        now = timezone.now()
        tournament = Tournament.objects.create(
            name="Sprint", status='live',
            start_date=now - timedelta(days=1), end_date=now + timedelta(days=1),
        )
        tournament.apps.add(self.app)
        register_for_tournament(tournament.pk, self.user.pk)

        share = record_share(self.user.pk, self.app.pk)
        outcome = verify_share(share.pk)

        self.assertEqual(share.share_type, 'tournament')
        self.assertEqual((outcome.reward.total_xp, outcome.reward.total_points), (113, 20))
        tournament.refresh_from_db()
        self.assertEqual(tournament.total_shares, 1)
        participant = TournamentParticipant.objects.get(tournament=tournament, user=self.user)
        self.assertEqual(participant.shares_count, 1)
        self.assertEqual(participant.total_score, 1)

    def test_tournament_joined_after_recording_is_attributed(self, mock_fraud):
        mock_fraud.return_value = fraud_result()
        share = record_share(self.user.pk, self.app.pk)
        self.assertIsNone(share.tournament_id)

        now = timezone.now()
        tournament = Tournament.objects.create(
            name="Late Sprint", status='live',
            start_date=now - timedelta(days=1), end_date=now + timedelta(days=1),
        )
        tournament.apps.add(self.app)
        register_for_tournament(tournament.pk, self.user.pk)

        outcome = verify_share(share.pk)

        self.assertEqual(outcome.reward.share_type, 'tournament')
        self.assertEqual(outcome.reward.tournament_id, tournament.pk)
        share.refresh_from_db()
        self.assertEqual(share.share_type, 'tournament')
        self.assertEqual(share.tournament_id, tournament.pk)
        tournament.refresh_from_db()
        self.assertEqual(tournament.total_shares, 1)
        participant = TournamentParticipant.objects.get(tournament=tournament, user=self.user)
        self.assertEqual(participant.shares_count, 1)


class VerifiedShareImmutabilityTests(TestCase):
    def setUp(self):
        app = App.objects.create(name="Audit App")
        user = User.objects.create_user(username='audited', password='testpass123')
        self.share = ShareEvent.objects.create(
            user=user, app=app, validation_status=ShareEvent.STATUS_VERIFIED,
            verified_at=timezone.now(), xp_awarded=50, points_awarded=10,
        )

    def test_reward_fields_rejected(self):
        self.share.xp_awarded = 500

        with self.assertRaises(ValidationError):
            self.share.save(update_fields=['xp_awarded'])

    def test_plain_save_only_writes_fraud_fields(self):
        self.share.xp_awarded = 500
        self.share.fraud_score = 42
        self.share.save()

        self.share.refresh_from_db()
        self.assertEqual(self.share.xp_awarded, 50)
        self.assertEqual(self.share.fraud_score, 42)
