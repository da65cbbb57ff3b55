from decimal import Decimal
from unittest.mock import patch

from django.contrib.auth import get_user_model
from django.test import TestCase

from notifications.models import Notification
from payments.models import Payout
from payments.services import (
    calculate_payout_fee,
    complete_payout,
    fail_payout,
    minimum_payout,
    request_payout,
)
from security.services.fraud import FraudAnalysis
from users.exceptions import LimitExceeded, NotEligible, NotFound, ValidationError
from users.ledger import credit_user

User = get_user_model()

PAYPAL = {'email': 'payee@example.com'}


def fraud_result(score=10, action='allow'):
    return FraudAnalysis(
        fraud_score=score,
        fraud_level='minimal' if score < 40 else 'high',
        fraud_flags=() if score < 40 else ('payment_anomalies',),
        recommendations=(),
        requires_review=score > 60,
        automatic_action=action,
    )


class PayoutFeeTests(TestCase):
    def test_fee_per_method(self):
        self.assertEqual(calculate_payout_fee(500, 'paypal'), Decimal('17.50'))
        self.assertEqual(calculate_payout_fee(1000, 'bank_transfer'), Decimal('7.50'))

    def test_volume_discounts(self):
        self.assertEqual(calculate_payout_fee(1000, 'bank_transfer', monthly_volume=6000), Decimal('6.75'))
        self.assertEqual(calculate_payout_fee(1000, 'bank_transfer', monthly_volume=20000), Decimal('6.00'))

    def test_minimum_per_method(self):
        self.assertEqual(minimum_payout('paypal'), 100)
        self.assertEqual(minimum_payout('bank_transfer'), 500)


@patch('payments.services.analyze_fraud')
class RequestPayoutTests(TestCase):
    def setUp(self):
        self.user = User.objects.create_user(username='cashout', password='testpass123')
        credit_user(self.user.pk, 0, 1000, source='test')

    def test_request_debits_points(self, mock_fraud):
        mock_fraud.return_value = fraud_result()

        payout = request_payout(self.user.pk, 500, 'paypal', PAYPAL)

        self.assertEqual(payout.status, 'pending')
        self.assertEqual(payout.fee_points, Decimal('17.50'))
        self.assertEqual(payout.amount, Decimal('48.25'))
        self.user.refresh_from_db()
        self.assertEqual(self.user.current_points, 500)
        self.assertEqual(self.user.total_points_earned, 1000)
        self.assertTrue(
            Notification.objects.filter(user=self.user, notification_type='payout_requested').exists()
        )

    def test_below_minimum(self, mock_fraud):
        with self.assertRaises(LimitExceeded) as ctx:
            request_payout(self.user.pk, 50, 'paypal', PAYPAL)

        self.assertEqual(ctx.exception.code, 'below_minimum')
        self.assertFalse(Payout.objects.exists())
        mock_fraud.assert_not_called()

    def test_insufficient_balance(self, mock_fraud):
        with self.assertRaises(LimitExceeded) as ctx:
            request_payout(self.user.pk, 1500, 'paypal', PAYPAL)

        self.assertEqual(ctx.exception.code, 'insufficient_balance')

    def test_missing_details(self, mock_fraud):
        with self.assertRaises(ValidationError) as ctx:
            request_payout(self.user.pk, 200, 'paypal', {})

        self.assertEqual(ctx.exception.code, 'invalid_payment_details')

    def test_unknown_user(self, mock_fraud):
        with self.assertRaises(NotFound):
            request_payout(999999, 200, 'paypal', PAYPAL)

    def test_blocked_payout_keeps_points(self, mock_fraud):
        mock_fraud.return_value = fraud_result(95, 'block')

        payout = request_payout(self.user.pk, 500, 'paypal', PAYPAL)

        self.assertEqual(payout.status, 'blocked')
        self.assertEqual(payout.failure_reason, 'fraud_blocked')
        self.user.refresh_from_db()
        self.assertEqual(self.user.current_points, 1000)

    def test_limited_payout_waits_for_review(self, mock_fraud):
        mock_fraud.return_value = fraud_result(85, 'limit')

        payout = request_payout(self.user.pk, 500, 'paypal', PAYPAL)

        self.assertEqual(payout.status, 'pending_review')
        self.assertEqual(payout.fraud_score, 85)
        self.user.refresh_from_db()
        self.assertEqual(self.user.current_points, 500)

    def test_too_many_pending(self, mock_fraud):
        mock_fraud.return_value = fraud_result()
        for _ in range(3):
            request_payout(self.user.pk, 100, 'paypal', PAYPAL)

        with self.assertRaises(LimitExceeded) as ctx:
            request_payout(self.user.pk, 100, 'paypal', PAYPAL)

        self.assertEqual(ctx.exception.code, 'too_many_pending')

    def test_complete_payout(self, mock_fraud):
        mock_fraud.return_value = fraud_result()
        payout = request_payout(self.user.pk, 500, 'paypal', PAYPAL)

        completed = complete_payout(payout.pk, external_transaction_id='PSP-1')

        self.assertEqual(completed.status, 'completed')
        self.assertEqual(completed.external_transaction_id, 'PSP-1')
        self.user.refresh_from_db()
        self.assertEqual(self.user.total_payouts_received, Decimal('48.25'))
        with self.assertRaises(NotEligible) as ctx:
            complete_payout(payout.pk)
        self.assertEqual(ctx.exception.code, 'payout_final')

    def test_failed_payout_refunds(self, mock_fraud):
        mock_fraud.return_value = fraud_result()
        payout = request_payout(self.user.pk, 500, 'paypal', PAYPAL)

        failed = fail_payout(payout.pk, 'card_declined')

        self.assertEqual(failed.status, 'failed')
        self.user.refresh_from_db()
        self.assertEqual(self.user.current_points, 1000)
        self.assertEqual(self.user.total_points_earned, 1000)
        with self.assertRaises(NotEligible):
            fail_payout(payout.pk, 'again')
