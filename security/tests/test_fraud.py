from datetime import timedelta
from unittest.mock import patch

from django.contrib.auth import get_user_model
from django.core.cache import cache
from django.test import TestCase
from django.utils import timezone

from catalog.models import App
from security.models import DeviceFingerprint, FraudReport, IPAddress
from security.services.fraud import (
    ANALYSIS_ERROR,
    ProbeResult,
    analyze_fraud,
    determine_automatic_action,
    determine_fraud_level,
    generate_recommendations,
    share_ip_probe,
    share_user_agent_probe,
)
from security.utils import record_device_usage
from shares.models import ShareEvent


def fixed_probe(score, *flags):
    return lambda entity, context: ProbeResult(score, tuple(flags))


class FraudThresholdTests(TestCase):
    def test_levels(self):
        self.assertEqual(determine_fraud_level(100), 'critical')
        self.assertEqual(determine_fraud_level(90), 'critical')
        self.assertEqual(determine_fraud_level(89), 'high')
        self.assertEqual(determine_fraud_level(80), 'high')
        self.assertEqual(determine_fraud_level(60), 'medium')
        self.assertEqual(determine_fraud_level(40), 'low')
        self.assertEqual(determine_fraud_level(39), 'minimal')

    def test_actions(self):
        self.assertEqual(determine_automatic_action(95), 'block')
        self.assertEqual(determine_automatic_action(85), 'limit')
        self.assertEqual(determine_automatic_action(65), 'flag')
        self.assertEqual(determine_automatic_action(59), 'allow')

    def test_recommendations(self):
        self.assertIn('Block all transactions', generate_recommendations('critical'))
        self.assertEqual(generate_recommendations('minimal'), ())


class AnalyzeFraudTests(TestCase):
    def setUp(self):
        cache.clear()
        self.user = get_user_model().objects.create_user(username="sharer", password="password")

    def test_scores_are_summed_and_clamped(self):
        probes = [(f"p{i}", fixed_probe(30, 'multiple_accounts')) for i in range(5)]

        analysis = analyze_fraud('user', self.user.pk, probes=probes)

        self.assertEqual(analysis.fraud_score, 100)
        self.assertEqual(analysis.fraud_level, 'critical')
        self.assertEqual(analysis.automatic_action, 'block')
        self.assertTrue(analysis.requires_review)
        self.assertEqual(analysis.fraud_flags, ('multiple_accounts',))
        report = FraudReport.objects.get(pk=analysis.report_id)
        self.assertEqual(report.reported_user_id, self.user.pk)
        self.assertEqual(report.priority, 'urgent')

    def test_low_score_opens_no_report(self):
        analysis = analyze_fraud('user', self.user.pk, probes=[('quiet', fixed_probe(20))])

        self.assertEqual(analysis.fraud_level, 'minimal')
        self.assertEqual(analysis.automatic_action, 'allow')
        self.assertFalse(analysis.requires_review)
        self.assertIsNone(analysis.report_id)
        self.assertFalse(FraudReport.objects.exists())

    def test_score_at_report_threshold_is_not_reported(self):
        analysis = analyze_fraud('user', self.user.pk, probes=[('edge', fixed_probe(70))])

        self.assertEqual(analysis.automatic_action, 'flag')
        self.assertTrue(analysis.requires_review)
        self.assertIsNone(analysis.report_id)

    def test_repeat_detection_refreshes_open_report(self):
        first = analyze_fraud('user', self.user.pk, probes=[('a', fixed_probe(75, 'rapid_activity'))])
        second = analyze_fraud('user', self.user.pk, probes=[('b', fixed_probe(85, 'bot_behavior'))])

        self.assertEqual(first.report_id, second.report_id)
        report = FraudReport.objects.get(pk=first.report_id)
        self.assertEqual(report.fraud_score, 85)
        self.assertEqual(report.risk_level, 'high')
        self.assertEqual(report.detection_count, 2)
        self.assertEqual(report.fraud_flags, ['rapid_activity', 'bot_behavior'])

    def test_lower_repeat_score_keeps_the_maximum(self):
        analyze_fraud('user', self.user.pk, probes=[('a', fixed_probe(95))])
        analyze_fraud('user', self.user.pk, probes=[('b', fixed_probe(72))])

        report = FraudReport.objects.get()
        self.assertEqual(report.fraud_score, 95)
        self.assertEqual(report.detection_count, 2)

    def test_closed_report_is_not_reused(self):
        first = analyze_fraud('user', self.user.pk, probes=[('a', fixed_probe(75))])
        FraudReport.objects.filter(pk=first.report_id).update(status='closed')

        second = analyze_fraud('user', self.user.pk, probes=[('a', fixed_probe(75))])

        self.assertNotEqual(first.report_id, second.report_id)
        self.assertEqual(FraudReport.objects.count(), 2)

    def test_report_outside_window_is_not_reused(self):
        first = analyze_fraud('user', self.user.pk, probes=[('a', fixed_probe(75))])
        FraudReport.objects.filter(pk=first.report_id).update(created_at=timezone.now() - timedelta(hours=25))

        second = analyze_fraud('user', self.user.pk, probes=[('a', fixed_probe(75))])

        self.assertNotEqual(first.report_id, second.report_id)

    def test_failing_probe_yields_fail_safe_block(self):
        def broken(entity, context):
            raise RuntimeError("probe exploded")

        analysis = analyze_fraud('user', self.user.pk, probes=[('broken', broken)])

        self.assertEqual(analysis.fraud_score, 100)
        self.assertEqual(analysis.fraud_level, 'critical')
        self.assertEqual(analysis.automatic_action, 'block')
        self.assertEqual(analysis.fraud_flags, (ANALYSIS_ERROR,))
        self.assertEqual(analysis.recommendations, ('Manual review required due to analysis error',))
        self.assertTrue(analysis.requires_review)
        self.assertIsNotNone(analysis.report_id)

    def test_unknown_entity_yields_fail_safe(self):
        analysis = analyze_fraud('share', 987654)

        self.assertEqual(analysis.automatic_action, 'block')
        self.assertEqual(analysis.fraud_flags, (ANALYSIS_ERROR,))

    def test_escalation_failure_still_returns_fail_safe(self):
        with patch('security.services.fraud.open_fraud_report', side_effect=RuntimeError("db down")):
            analysis = analyze_fraud('user', 987654)

        self.assertEqual(analysis.fraud_score, 100)
        self.assertIsNone(analysis.report_id)


class ShareProbeTests(TestCase):
    def setUp(self):
        cache.clear()
        self.user = get_user_model().objects.create_user(username="sharer", password="password")
        self.app = App.objects.create(name="Notes", app_xp=50, app_points=10)

    def make_share(self, **kwargs):
        return ShareEvent.objects.create(user=self.user, app=self.app, **kwargs)

    def test_automation_user_agent_flags_bot(self):
        share = self.make_share(user_agent='Mozilla/5.0 HeadlessChrome/120.0')

        result = share_user_agent_probe(share, {})

        self.assertEqual(result.score, 30)
        self.assertIn('bot_behavior', result.flags)

    def test_platform_mismatch(self):
        share = self.make_share(
            user_agent='Mozilla/5.0 (Linux; Android 14)',
            device_info={'platform': 'ios'},
        )

        result = share_user_agent_probe(share, {})

        self.assertIn('device_fingerprint_mismatch', result.flags)

    def test_tor_exit_node(self):
        IPAddress.objects.create(ip_address='203.0.113.9', is_tor=True)
        share = self.make_share(ip_address='203.0.113.9')

        result = share_ip_probe(share, {})

        self.assertEqual(result.score, 30)
        self.assertIn('suspicious_ip', result.flags)

    def test_crowded_ip_adds_multiple_accounts(self):
        user_model = get_user_model()
        for i in range(4):
            other = user_model.objects.create_user(username=f"other{i}", password="password")
            record_device_usage(other, '', {}, '81.2.69.160')
        share = self.make_share(ip_address='81.2.69.160')

        result = share_ip_probe(share, {})

        self.assertEqual(result.score, 10)
        self.assertIn('multiple_accounts', result.flags)

    def test_clean_share_scores_low(self):
        record_device_usage(self.user, 'fp-clean', {'platform': 'android'}, '8.8.4.4')
        share = self.make_share(
            device_fingerprint='fp-clean',
            ip_address='8.8.4.4',
            user_agent='Mozilla/5.0 (Linux; Android 14)',
            device_info={'platform': 'android'},
        )

        analysis = analyze_fraud('share', share.pk)

        self.assertEqual(analysis.automatic_action, 'allow')
        self.assertIsNone(analysis.report_id)

    def test_blocked_device_raises_score(self):
        record_device_usage(self.user, 'fp-bad', {}, None)
        DeviceFingerprint.objects.filter(fingerprint='fp-bad').update(is_blocked=True)
        share = self.make_share(device_fingerprint='fp-bad', user_agent='python-requests/2.31')

        analysis = analyze_fraud('share', share.pk)

        self.assertGreaterEqual(analysis.fraud_score, 70)
        self.assertIn('bot_behavior', analysis.fraud_flags)
        self.assertIn('device_fingerprint_mismatch', analysis.fraud_flags)


class DeviceProbeTests(TestCase):
    def setUp(self):
        cache.clear()

    def test_emulator_with_webdriver(self):
        device = DeviceFingerprint.objects.create(
            fingerprint='fp-emu',
            device_details={'is_emulator': True, 'webdriver': True},
            total_users=6,
        )

        analysis = analyze_fraud('device', device.fingerprint)

        self.assertEqual(analysis.fraud_score, 100)
        self.assertEqual(analysis.automatic_action, 'block')
        self.assertIn('multiple_accounts', analysis.fraud_flags)
        report = FraudReport.objects.get(pk=analysis.report_id)
        self.assertEqual(report.report_type, 'device_fraud')
        self.assertIsNone(report.reported_user_id)
