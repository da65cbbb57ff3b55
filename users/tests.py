from datetime import date
from unittest.mock import patch

from django.contrib.auth import get_user_model
from django.test import TestCase

from users.exceptions import LimitExceeded, NotFound, ValidationError
from users.ledger import adjust_balance, calculate_user_level, credit_user, debit_points
from users.streaks import next_streak_value, reset_stale_streaks, update_sharing_streak
from users.utils import round_half_up

User = get_user_model()


class LevelCurveTestCase(TestCase):
    def test_level_boundaries(self):
        self.assertEqual(calculate_user_level(0), 1)
        self.assertEqual(calculate_user_level(99), 1)
        self.assertEqual(calculate_user_level(100), 2)
        self.assertEqual(calculate_user_level(399), 2)
        self.assertEqual(calculate_user_level(400), 3)
        self.assertEqual(calculate_user_level(10000), 11)

    def test_negative_xp_is_level_one(self):
        self.assertEqual(calculate_user_level(-50), 1)

    def test_round_half_up(self):
        self.assertEqual(round_half_up(2.5), 3)
        self.assertEqual(round_half_up(27.5), 28)
        self.assertEqual(round_half_up(2.4), 2)


class LedgerTestCase(TestCase):
    def setUp(self):
        self.user = User.objects.create_user(username='ledger', password='testpass123')

    def test_credit_updates_balances_and_level(self):
        entry = credit_user(self.user.pk, 450, 30, source='test')

        self.user.refresh_from_db()
        self.assertEqual(self.user.current_xp, 450)
        self.assertEqual(self.user.current_points, 30)
        self.assertEqual(self.user.total_xp_earned, 450)
        self.assertEqual(self.user.total_points_earned, 30)
        self.assertEqual(self.user.user_level, 3)
        self.assertTrue(entry.level_changed)
        self.assertEqual(entry.user_level, 3)

    def test_credits_accumulate(self):
        credit_user(self.user.pk, 50, 5, source='a')
        entry = credit_user(self.user.pk, 60, 6, source='b')

        self.assertEqual(entry.current_xp, 110)
        self.assertEqual(entry.current_points, 11)
        self.assertEqual(entry.user_level, 2)

    def test_negative_credit_rejected(self):
        with self.assertRaises(ValidationError):
            credit_user(self.user.pk, -1, 0, source='test')

    def test_unknown_user(self):
        with self.assertRaises(NotFound):
            credit_user(999999, 10, 1, source='test')

    def test_referral_and_badge_counters(self):
        credit_user(self.user.pk, 500, 50, source='referral', referral_earnings=True, referral_completed=True)
        credit_user(self.user.pk, 10, 1, source='badge', badge_earned=True)

        self.user.refresh_from_db()
        self.assertEqual(self.user.total_referral_earnings_xp, 500)
        self.assertEqual(self.user.total_referral_earnings_points, 50)
        self.assertEqual(self.user.total_referrals_completed, 1)
        self.assertEqual(self.user.total_badges_earned, 1)

    def test_debit_cannot_overdraw(self):
        credit_user(self.user.pk, 0, 100, source='test')

        with self.assertRaises(LimitExceeded):
            debit_points(self.user.pk, 101, reason='payout')

        self.user.refresh_from_db()
        self.assertEqual(self.user.current_points, 100)

    def test_debit_keeps_lifetime_totals(self):
        credit_user(self.user.pk, 0, 100, source='test')

        entry = debit_points(self.user.pk, 40, reason='payout')

        self.user.refresh_from_db()
        self.assertEqual(entry.current_points, 60)
        self.assertEqual(self.user.total_points_earned, 100)

    def test_adjustment_requires_reason(self):
        with self.assertRaises(ValidationError):
            adjust_balance(self.user.pk, 10, 0, reason='')

    def test_stale_instance_save_keeps_balances(self):
        stale = User.objects.get(pk=self.user.pk)
        credit_user(self.user.pk, 200, 20, source='test')

        stale.first_name = 'Renamed'
        stale.save()

        fresh = User.objects.get(pk=self.user.pk)
        self.assertEqual(fresh.first_name, 'Renamed')
        self.assertEqual(fresh.current_xp, 200)
        self.assertEqual(fresh.current_points, 20)

    def test_referral_code_generated(self):
        self.assertTrue(self.user.referral_code.startswith('LED'))
        self.assertEqual(len(self.user.referral_code), 9)


class SharingStreakTestCase(TestCase):
    def setUp(self):
        self.user = User.objects.create_user(username='streaker', password='testpass123')

    def test_next_streak_value(self):
        today = date(2024, 3, 10)
        self.assertEqual(next_streak_value(0, None, today), 1)
        self.assertEqual(next_streak_value(4, date(2024, 3, 9), today), 5)
        self.assertEqual(next_streak_value(4, today, today), 4)
        self.assertEqual(next_streak_value(4, date(2024, 3, 7), today), 1)
        self.assertEqual(next_streak_value(4, date(2024, 3, 11), today), 4)

    def test_consecutive_days_extend_streak(self):
        update_sharing_streak(self.user.pk, date(2024, 3, 8))
        update_sharing_streak(self.user.pk, date(2024, 3, 9))
        state = update_sharing_streak(self.user.pk, date(2024, 3, 10))

        self.assertEqual(state['current_streak'], 3)
        self.assertEqual(state['longest_streak'], 3)

    def test_gap_restarts_but_keeps_longest(self):
        update_sharing_streak(self.user.pk, date(2024, 3, 8))
        update_sharing_streak(self.user.pk, date(2024, 3, 9))
        state = update_sharing_streak(self.user.pk, date(2024, 3, 12))

        self.user.refresh_from_db()
        self.assertEqual(state['current_streak'], 1)
        self.assertEqual(self.user.longest_sharing_streak, 2)
        self.assertEqual(self.user.last_share_date, date(2024, 3, 12))

    def test_reset_stale_streaks(self):
        update_sharing_streak(self.user.pk, date(2024, 3, 8))
        active = User.objects.create_user(username='active', password='testpass123')
        update_sharing_streak(active.pk, date(2024, 3, 9))

        reset = reset_stale_streaks(date(2024, 3, 10))

        self.assertEqual(reset, 1)
        self.user.refresh_from_db()
        active.refresh_from_db()
        self.assertEqual(self.user.sharing_streak_days, 0)
        self.assertEqual(active.sharing_streak_days, 1)

    @patch('users.tasks.connection')
    def test_reset_task(self, mock_connection):
        from users.tasks import reset_stale_sharing_streaks

        User.objects.filter(pk=self.user.pk).update(sharing_streak_days=3, last_share_date=date(2000, 1, 1))

        self.assertEqual(reset_stale_sharing_streaks(), 1)
        mock_connection.close.assert_called_once()
