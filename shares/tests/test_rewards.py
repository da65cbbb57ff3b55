from datetime import timedelta
from decimal import Decimal

from django.contrib.auth import get_user_model
from django.test import SimpleTestCase, TestCase
from django.utils import timezone

from catalog.models import App
from shares.models import ShareEvent
from shares.services.limits import validate_share_limits
from shares.services.rewards import (
    AppSnapshot,
    TournamentSnapshot,
    UserSnapshot,
    calculate_regular_rewards,
    calculate_share_rewards,
    calculate_tournament_rewards,
    determine_share_type,
)
from tournaments.models import Tournament
from tournaments.services import register_for_tournament

User = get_user_model()


class RegularRewardTests(SimpleTestCase):
    def test_veteran_streak_first_share(self):
        user = UserSnapshot(user_id=1, user_level=12, sharing_streak_days=8)
        app = AppSnapshot(app_id=1, app_xp=50, app_points=10)

        result = calculate_regular_rewards(user, app)

        self.assertEqual((result.total_xp, result.total_points), (94, 15))
        self.assertEqual(result.breakdown['base_xp'], 55)
        self.assertEqual(result.breakdown['base_points'], 11)
        self.assertEqual(result.breakdown['streak_bonus_xp'], 11)
        self.assertEqual(result.breakdown['streak_bonus_points'], 1)
        self.assertEqual(result.breakdown['first_time_bonus_xp'], 28)
        self.assertEqual(result.breakdown['first_time_bonus_points'], 3)
        self.assertEqual(result.breakdown['diversity_bonus_xp'], 0)

    def test_repeat_share_without_bonuses(self):
        user = UserSnapshot(user_id=1, user_level=3, sharing_streak_days=6, prior_verified_app_shares=2)
        app = AppSnapshot(app_id=1, app_xp=50, app_points=10)

        result = calculate_regular_rewards(user, app)

        self.assertEqual((result.total_xp, result.total_points), (50, 10))

    def test_diversity_bonus_needs_a_new_category(self):
        user = UserSnapshot(
            user_id=1, user_level=1, sharing_streak_days=0, prior_verified_app_shares=1,
            shared_category_ids=frozenset({1, 2, 3, 4, 5}),
        )
        new_category = AppSnapshot(app_id=1, app_xp=50, app_points=10, category_ids=frozenset({6}))
        known_category = AppSnapshot(app_id=2, app_xp=50, app_points=10, category_ids=frozenset({2}))

        self.assertEqual(calculate_regular_rewards(user, new_category).total_xp, 75)
        self.assertEqual(calculate_regular_rewards(user, new_category).total_points, 15)
        self.assertEqual(calculate_regular_rewards(user, known_category).total_xp, 50)

    def test_same_snapshot_same_result(self):
        user = UserSnapshot(user_id=1, user_level=15, sharing_streak_days=9)
        app = AppSnapshot(app_id=1, app_xp=33, app_points=7)

        self.assertEqual(calculate_regular_rewards(user, app), calculate_regular_rewards(user, app))


class TournamentRewardTests(SimpleTestCase):
    def setUp(self):
        self.user = UserSnapshot(user_id=1, user_level=1, sharing_streak_days=0, prior_verified_app_shares=1)
        self.app = AppSnapshot(app_id=1, app_xp=50, app_points=10)

    def test_top_tier_with_streak(self):
        tournament = TournamentSnapshot(
            tournament_id=1, reward_multiplier=Decimal('1.5'), participant_rank=1,
            total_participants=10, unique_active_days=3,
        )

        result = calculate_tournament_rewards(self.user, self.app, tournament)

        self.assertEqual(result.share_type, 'tournament')
        self.assertEqual(result.tournament_id, 1)
        self.assertEqual(result.breakdown['tournament_xp_bonus'], 25)
        self.assertEqual(result.breakdown['performance_bonus_xp'], 15)
        self.assertEqual(result.breakdown['performance_bonus_points'], 2)
        self.assertEqual(result.breakdown['tournament_streak_xp'], 60)
        self.assertEqual((result.total_xp, result.total_points), (150, 32))

    def test_second_tier(self):
        tournament = TournamentSnapshot(
            tournament_id=1, reward_multiplier=Decimal('1.0'), participant_rank=2,
            total_participants=10, unique_active_days=0,
        )

        result = calculate_tournament_rewards(self.user, self.app, tournament)

        self.assertEqual(result.breakdown['performance_bonus_xp'], 10)
        self.assertEqual(result.breakdown['performance_bonus_points'], 1)
        self.assertEqual((result.total_xp, result.total_points), (60, 11))

    def test_unranked_user_gets_no_performance_bonus(self):
        tournament = TournamentSnapshot(
            tournament_id=1, reward_multiplier=Decimal('2'), participant_rank=None,
            total_participants=10, unique_active_days=2,
        )

        result = calculate_tournament_rewards(self.user, self.app, tournament)

        self.assertEqual(result.breakdown['performance_bonus_xp'], 0)
        self.assertEqual(result.breakdown['tournament_streak_xp'], 0)
        self.assertEqual((result.total_xp, result.total_points), (100, 20))


class ShareTypeTests(TestCase):
    def setUp(self):
        now = timezone.now()
        self.app = App.objects.create(name="Routed App", app_xp=50, app_points=10)
        self.user = User.objects.create_user(username='router', password='testpass123')
        self.tournament = Tournament.objects.create(
            name="Live Cup", status='live',
            start_date=now - timedelta(days=1), end_date=now + timedelta(days=1),
        )
        self.tournament.apps.add(self.app)

    def test_unregistered_user_shares_regular(self):
        decision = determine_share_type(self.user, self.app, self.tournament.pk)

        self.assertEqual(decision.share_type, 'regular')
        self.assertEqual(decision.reason, 'user_not_registered')

    def test_registered_user_is_auto_detected(self):
        register_for_tournament(self.tournament.pk, self.user.pk)

        decision = determine_share_type(self.user, self.app)

        self.assertEqual(decision.share_type, 'tournament')
        self.assertTrue(decision.auto_detected)
        self.assertEqual(decision.tournament, self.tournament)

    def test_app_outside_tournament(self):
        other_app = App.objects.create(name="Other App")
        register_for_tournament(self.tournament.pk, self.user.pk)

        decision = determine_share_type(self.user, other_app, self.tournament.pk)

        self.assertEqual(decision.reason, 'app_not_in_tournament')

    def test_default_multiplier_applies(self):
        register_for_tournament(self.tournament.pk, self.user.pk)

        result = calculate_share_rewards(self.user.pk, self.app.pk)

        self.assertEqual(result.share_type, 'tournament')
        # 75/13 regular (first share), x1.5 default multiplier
        self.assertEqual((result.total_xp, result.total_points), (113, 20))

    def test_unknown_app(self):
        result = calculate_share_rewards(self.user.pk, 999999)

        self.assertFalse(result.success)
        self.assertEqual(result.reason, 'app_not_found')


class ShareLimitTests(TestCase):
    def setUp(self):
        self.app = App.objects.create(name="Limited App", app_xp=50, app_points=10, daily_user_limit=10)
        self.user = User.objects.create_user(username='limited', password='testpass123')
        self.now = timezone.now()

    def test_daily_user_limit(self):
        for _ in range(10):
            ShareEvent.objects.create(
                user=self.user, app=self.app, created_at=self.now,
                validation_status=ShareEvent.STATUS_VERIFIED, verified_at=self.now,
            )

        result = validate_share_limits(self.user.pk, self.app.pk, now=self.now)

        self.assertFalse(result.valid)
        self.assertEqual(result.reason, 'user_daily_limit_exceeded')

    def test_cooldown(self):
        ShareEvent.objects.create(user=self.user, app=self.app, created_at=self.now - timedelta(minutes=10))

        result = validate_share_limits(self.user.pk, self.app.pk, now=self.now)

        self.assertEqual(result.reason, 'cooldown_active')

    def test_rejected_shares_do_not_count(self):
        for _ in range(10):
            ShareEvent.objects.create(
                user=self.user, app=self.app, created_at=self.now - timedelta(hours=1),
                validation_status=ShareEvent.STATUS_REJECTED,
            )

        self.assertTrue(validate_share_limits(self.user.pk, self.app.pk, now=self.now).valid)

    def test_level_and_budget(self):
        App.objects.filter(pk=self.app.pk).update(min_user_level=3)
        self.assertEqual(validate_share_limits(self.user.pk, self.app.pk, now=self.now).reason, 'level_too_low')

        App.objects.filter(pk=self.app.pk).update(min_user_level=1, budget_total=Decimal('1'))
        self.assertEqual(
            validate_share_limits(self.user.pk, self.app.pk, now=self.now).reason,
            'app_budget_exhausted',
        )

    def test_inactive_app(self):
        App.objects.filter(pk=self.app.pk).update(is_active=False)

        self.assertEqual(validate_share_limits(self.user.pk, self.app.pk, now=self.now).reason, 'app_inactive')
