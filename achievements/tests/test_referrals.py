from datetime import timedelta
from io import StringIO
from unittest.mock import patch

from django.contrib.auth import get_user_model
from django.core.management import call_command
from django.test import TestCase
from django.utils import timezone

from achievements.models import UserReferral
from achievements.services.referrals import (
    create_referral,
    create_referral_from_code,
    expire_referrals,
    get_referral_statistics,
    sync_referral_progress,
)
from catalog.models import App
from notifications.models import Notification
from security.services.fraud import FraudAnalysis
from shares.models import ShareEvent
from users.exceptions import AlreadyAwarded, NotEligible, NotFound, ValidationError

User = get_user_model()

CRITERIA = {'min_shares': 5, 'min_xp_earned': 100, 'min_points_earned': 10, 'min_days_active': 7}


def fraud_result(score, action, requires_review=False):
    return FraudAnalysis(
        fraud_score=score,
        fraud_level='minimal',
        fraud_flags=(),
        recommendations=(),
        requires_review=requires_review,
        automatic_action=action,
    )


class ReferralTestMixin:
    def make_referral(self, **kwargs):
        values = dict(CRITERIA, referrer=self.referrer, referred=self.referred, referral_code='REFCODE1')
        values.update(kwargs)
        return UserReferral.objects.create(**values)

    def setUp(self):
        self.referrer = User.objects.create_user(username='referrer', password='testpass123')
        self.referred = User.objects.create_user(username='referred', password='testpass123')


class ReferralLifecycleTests(ReferralTestMixin, TestCase):
    def test_activation_on_save_when_criteria_met(self):
        referral = self.make_referral()
        self.assertEqual(referral.status, UserReferral.PENDING)

        referral.shares_completed = 5
        referral.xp_earned = 100
        referral.points_earned = 10
        referral.days_active = 7
        self.assertEqual(referral.activation_percentage, 100)
        self.assertTrue(referral.can_be_activated)
        referral.save()

        referral.refresh_from_db()
        self.assertEqual(referral.status, UserReferral.ACTIVE)
        self.assertIsNotNone(referral.activation_date)
        self.assertEqual(referral.version, 1)

    def test_created_ready_referral_starts_active(self):
        referral = self.make_referral(shares_completed=5, xp_earned=100, points_earned=10, days_active=7)

        self.assertEqual(referral.status, UserReferral.ACTIVE)

    def test_activation_percentage_caps_each_metric(self):
        referral = self.make_referral(shares_completed=50)

        self.assertEqual(referral.activation_percentage, 25)
        self.assertFalse(referral.can_be_activated)

    def test_zero_target_counts_as_complete(self):
        referral = self.make_referral(min_days_active=0)

        self.assertEqual(referral.activation_percentage, 25)

    def test_update_progress_rejects_negative(self):
        referral = self.make_referral()

        with self.assertRaises(ValidationError):
            referral.update_progress(shares_completed=-1)

    def test_plain_save_cannot_change_status(self):
        referral = self.make_referral()
        referral.status = UserReferral.COMPLETED
        referral.referrer_rewarded = True
        referral.save()

        referral.refresh_from_db()
        self.assertEqual(referral.status, UserReferral.PENDING)
        self.assertFalse(referral.referrer_rewarded)

    def test_expired_referral_does_not_activate(self):
        referral = self.make_referral(expires_at=timezone.now() - timedelta(days=1))

        referral.update_progress(shares_completed=5, xp_earned=100, points_earned=10, days_active=7)

        referral.refresh_from_db()
        self.assertEqual(referral.status, UserReferral.PENDING)
        self.assertEqual(referral.validate_eligibility().errors, ('expired',))


class ReferralRewardTests(ReferralTestMixin, TestCase):
    def setUp(self):
        super().setUp()
        self.referral = self.make_referral(shares_completed=5, xp_earned=100, points_earned=10, days_active=7)

    def test_double_award_with_stale_instance(self):
        first = UserReferral.objects.get(pk=self.referral.pk)
        second = UserReferral.objects.get(pk=self.referral.pk)

        first.award_referrer_bonus()
        with self.assertRaises(AlreadyAwarded):
            second.award_referrer_bonus()

        self.referrer.refresh_from_db()
        self.assertEqual(self.referrer.current_xp, 500)
        self.assertEqual(self.referrer.current_points, 50)
        self.assertEqual(self.referrer.total_referrals_completed, 1)

    def test_pending_referral_cannot_pay(self):
        pending = UserReferral.objects.create(
            referrer=self.referrer,
            referred=User.objects.create_user(username='newcomer', password='testpass123'),
            referral_code='REFCODE1',
            **CRITERIA
        )

        with self.assertRaises(NotEligible) as ctx:
            pending.award_referred_bonus()

        self.assertEqual(ctx.exception.code, 'referral_not_active')

    def test_process_both_rewards_completes(self):
        result = self.referral.process_both_rewards()

        self.assertEqual(result['referrer_bonus'], {'xp': 500, 'points': 50})
        self.referral.refresh_from_db()
        self.assertEqual(self.referral.status, UserReferral.COMPLETED)
        self.assertTrue(self.referral.referrer_rewarded)
        self.assertTrue(self.referral.referred_rewarded)
        self.referred.refresh_from_db()
        self.assertEqual(self.referred.current_xp, 200)
        self.assertEqual(self.referred.current_points, 20)

    def test_retry_after_partial_payout(self):
        self.referral.award_referrer_bonus()

        UserReferral.objects.get(pk=self.referral.pk).process_both_rewards()

        self.referrer.refresh_from_db()
        self.referred.refresh_from_db()
        self.assertEqual(self.referrer.current_xp, 500)
        self.assertEqual(self.referred.current_xp, 200)

    def test_terminal_states_reject_transitions(self):
        self.referral.process_both_rewards()

        with self.assertRaises(NotEligible) as ctx:
            self.referral.mark_as_fraudulent(95, ['referral_abuse'])

        self.assertEqual(ctx.exception.code, 'referral_terminal')

    def test_mark_as_fraudulent(self):
        reviewer = User.objects.create_user(username='reviewer', password='testpass123')

        self.referral.mark_as_fraudulent(120, ['referral_abuse'], reviewed_by=reviewer)

        self.referral.refresh_from_db()
        self.assertEqual(self.referral.status, UserReferral.FRAUDULENT)
        self.assertEqual(self.referral.fraud_score, 100)
        self.assertTrue(self.referral.is_suspicious)
        self.assertEqual(self.referral.reviewed_by, reviewer)
        with self.assertRaises(NotEligible):
            self.referral.award_referrer_bonus()

    def test_summary(self):
        summary = self.referral.get_summary()

        self.assertEqual(summary['status'], UserReferral.ACTIVE)
        self.assertEqual(summary['activation_percentage'], 100)
        self.assertFalse(summary['rewards']['referrer_rewarded'])


class CreateReferralTests(ReferralTestMixin, TestCase):
    def test_create_referral(self):
        referral = create_referral(self.referrer.pk, self.referred.pk, source='whatsapp')

        self.assertEqual(referral.status, UserReferral.PENDING)
        self.assertEqual(referral.referral_code, self.referrer.referral_code)
        self.assertEqual(referral.min_shares, 5)
        self.assertEqual(referral.days_until_expiration, 30)
        self.referrer.refresh_from_db()
        self.assertEqual(self.referrer.referral_count, 1)
        self.assertTrue(
            Notification.objects.filter(user=self.referrer, notification_type='referral_joined').exists()
        )

    def test_self_referral(self):
        with self.assertRaises(ValidationError) as ctx:
            create_referral(self.referrer.pk, self.referrer.pk)

        self.assertEqual(ctx.exception.code, 'self_referral')

    def test_already_referred(self):
        create_referral(self.referrer.pk, self.referred.pk)
        other = User.objects.create_user(username='other', password='testpass123')

        with self.assertRaises(NotEligible) as ctx:
            create_referral(other.pk, self.referred.pk)

        self.assertEqual(ctx.exception.code, 'already_referred')

    def test_from_code(self):
        referral = create_referral_from_code(self.referrer.referral_code.lower(), self.referred.pk)

        self.assertEqual(referral.referrer, self.referrer)
        with self.assertRaises(NotFound) as ctx:
            create_referral_from_code('NOPE00000', self.referred.pk)
        self.assertEqual(ctx.exception.code, 'invalid_referral_code')

    def test_statistics(self):
        create_referral(self.referrer.pk, self.referred.pk)

        stats = get_referral_statistics(self.referrer.pk)

        self.assertEqual(stats['pending']['count'], 1)
        self.assertEqual(stats['pending']['total_rewards'], 550)


@patch('achievements.services.referrals.analyze_fraud')
class SyncReferralProgressTests(ReferralTestMixin, TestCase):
    def setUp(self):
        super().setUp()
        self.app = App.objects.create(name="Referral App")
        self.referral = create_referral(self.referrer.pk, self.referred.pk)
        UserReferral.objects.filter(pk=self.referral.pk).update(
            min_shares=2, min_xp_earned=50, min_points_earned=5, min_days_active=1,
        )

    def add_verified_shares(self, count=2):
        for _ in range(count):
            ShareEvent.objects.create(
                user=self.referred, app=self.app, validation_status=ShareEvent.STATUS_VERIFIED,
                verified_at=timezone.now(), xp_awarded=30, points_awarded=5,
            )

    def test_progress_without_activation(self, mock_fraud):
        self.add_verified_shares(1)

        referral = sync_referral_progress(self.referred.pk)

        self.assertEqual(referral.status, UserReferral.PENDING)
        self.assertEqual(referral.shares_completed, 1)
        self.assertEqual(referral.xp_earned, 30)
        mock_fraud.assert_not_called()

    def test_clean_activation_pays_both(self, mock_fraud):
        mock_fraud.return_value = fraud_result(10, 'allow')
        self.add_verified_shares()

        referral = sync_referral_progress(self.referred.pk)

        self.assertEqual(referral.status, UserReferral.COMPLETED)
        self.assertEqual(referral.fraud_score, 10)
        self.referrer.refresh_from_db()
        self.referred.refresh_from_db()
        self.assertEqual(self.referrer.total_referral_earnings_xp, 500)
        self.assertEqual(self.referred.current_points, 20)
        self.assertTrue(
            Notification.objects.filter(user=self.referrer, notification_type='referral_completed').exists()
        )

    def test_blocked_activation_is_fraudulent(self, mock_fraud):
        mock_fraud.return_value = fraud_result(95, 'block', requires_review=True)
        self.add_verified_shares()

        referral = sync_referral_progress(self.referred.pk)

        self.assertEqual(referral.status, UserReferral.FRAUDULENT)
        self.referrer.refresh_from_db()
        self.assertEqual(self.referrer.current_xp, 0)

    def test_review_holds_payout(self, mock_fraud):
        mock_fraud.return_value = fraud_result(65, 'flag', requires_review=True)
        self.add_verified_shares()

        referral = sync_referral_progress(self.referred.pk)
        again = sync_referral_progress(self.referred.pk)

        self.assertEqual(referral.status, UserReferral.ACTIVE)
        self.assertTrue(referral.is_suspicious)
        self.assertEqual(again.status, UserReferral.ACTIVE)
        self.referrer.refresh_from_db()
        self.assertEqual(self.referrer.current_xp, 0)

    def test_user_without_referral(self, mock_fraud):
        self.assertIsNone(sync_referral_progress(self.referrer.pk))


class ExpireReferralsTests(ReferralTestMixin, TestCase):
    def test_sweep_only_touches_stale_pending(self):
        stale = self.make_referral(expires_at=timezone.now() - timedelta(hours=1))
        fresh = self.make_referral(
            referred=User.objects.create_user(username='fresh', password='testpass123'),
        )
        active = self.make_referral(
            referred=User.objects.create_user(username='active', password='testpass123'),
            shares_completed=5, xp_earned=100, points_earned=10, days_active=7,
        )
        UserReferral.objects.filter(pk=active.pk).update(expires_at=timezone.now() - timedelta(hours=1))

        self.assertEqual(expire_referrals(dry_run=True), 1)
        self.assertEqual(expire_referrals(), 1)
        self.assertEqual(expire_referrals(), 0)

        stale.refresh_from_db()
        fresh.refresh_from_db()
        active.refresh_from_db()
        self.assertEqual(stale.status, UserReferral.EXPIRED)
        self.assertEqual(stale.version, 1)
        self.assertEqual(fresh.status, UserReferral.PENDING)
        self.assertEqual(active.status, UserReferral.ACTIVE)

    def test_command_dry_run(self):
        stale = self.make_referral(expires_at=timezone.now() - timedelta(hours=1))
        out = StringIO()

        call_command('expire_referrals', '--dry-run', stdout=out)

        self.assertIn('1 referral(s) would be expired', out.getvalue())
        stale.refresh_from_db()
        self.assertEqual(stale.status, UserReferral.PENDING)

    @patch('users.tasks.connection')
    def test_task(self, mock_connection):
        from achievements.tasks import expire_referrals as expire_task

        self.make_referral(expires_at=timezone.now() - timedelta(hours=1))

        self.assertEqual(expire_task(), 1)
