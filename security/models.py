from django.conf import settings
from django.db import models
from django.utils import timezone

from users.exceptions import NotEligible, ValidationError
from users.models import SoftDeleteModel


class FraudReport(SoftDeleteModel):
    """Escalation record opened when an entity scores above the report threshold"""

    REPORT_TYPE_CHOICES = [
        ('share_fraud', 'Share Fraud'),
        ('payment_fraud', 'Payment Fraud'),
        ('user_fraud', 'User Fraud'),
        ('device_fraud', 'Device Fraud'),
        ('referral_fraud', 'Referral Fraud'),
        ('system_fraud', 'System Fraud'),
        ('other', 'Other'),
    ]

    ENTITY_TYPE_CHOICES = [
        ('share', 'Share'),
        ('payment', 'Payment'),
        ('user', 'User'),
        ('device', 'Device'),
        ('referral', 'Referral'),
    ]

    RISK_LEVEL_CHOICES = [
        ('minimal', 'Minimal'),
        ('low', 'Low'),
        ('medium', 'Medium'),
        ('high', 'High'),
        ('critical', 'Critical'),
    ]

    STATUS_CHOICES = [
        ('open', 'Open'),
        ('investigating', 'Investigating'),
        ('pending_review', 'Pending Review'),
        ('resolved', 'Resolved'),
        ('closed', 'Closed'),
        ('false_positive', 'False Positive'),
    ]

    PRIORITY_CHOICES = [
        ('low', 'Low'),
        ('normal', 'Normal'),
        ('high', 'High'),
        ('urgent', 'Urgent'),
    ]

    ACTION_CHOICES = [
        ('none', 'None'),
        ('warning_sent', 'Warning Sent'),
        ('account_suspended', 'Account Suspended'),
        ('account_banned', 'Account Banned'),
        ('payment_blocked', 'Payment Blocked'),
        ('tournament_disqualification', 'Tournament Disqualification'),
        ('referral_removal', 'Referral Removal'),
        ('reward_reversed', 'Reward Reversed'),
        ('system_improvement', 'System Improvement'),
        ('other', 'Other'),
    ]

    OPEN_STATUSES = ('open', 'investigating', 'pending_review')

    # Investigation lifecycle; resolved, closed and false_positive are terminal
    STATUS_TRANSITIONS = {
        'open': {'investigating'},
        'investigating': {'pending_review', 'resolved', 'closed', 'false_positive'},
        'pending_review': {'investigating', 'resolved', 'closed', 'false_positive'},
        'resolved': set(),
        'closed': set(),
        'false_positive': set(),
    }

    report_type = models.CharField(max_length=30, choices=REPORT_TYPE_CHOICES)
    entity_type = models.CharField(max_length=20, choices=ENTITY_TYPE_CHOICES)
    entity_id = models.CharField(max_length=64)
    reported_user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='fraud_reports'
    )

    fraud_score = models.PositiveSmallIntegerField()
    risk_level = models.CharField(max_length=10, choices=RISK_LEVEL_CHOICES)
    fraud_flags = models.JSONField(default=list, blank=True)
    risk_factors = models.JSONField(default=dict, blank=True)
    recommendations = models.JSONField(default=list, blank=True)
    detection_method = models.CharField(max_length=30, default='automated')
    detection_count = models.PositiveIntegerField(default=1)
    last_detected_at = models.DateTimeField(default=timezone.now)

    # Investigation
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default='open', db_index=True)
    priority = models.CharField(max_length=10, choices=PRIORITY_CHOICES, default='normal')
    assigned_to = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='assigned_fraud_reports'
    )
    assigned_at = models.DateTimeField(null=True, blank=True)
    started_at = models.DateTimeField(null=True, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)
    investigation_notes = models.JSONField(default=list, blank=True)

    # Resolution
    action_taken = models.CharField(max_length=30, choices=ACTION_CHOICES, default='none')
    action_details = models.TextField(blank=True, default='')
    action_taken_at = models.DateTimeField(null=True, blank=True)
    action_taken_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='resolved_fraud_reports'
    )
    resolution_notes = models.TextField(blank=True, default='')

    class Meta:
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['entity_type', 'entity_id', 'status'], name='fraud_entity_status_idx'),
            models.Index(fields=['status', 'priority'], name='fraud_status_priority_idx'),
            models.Index(fields=['fraud_score', 'created_at'], name='fraud_score_created_idx'),
        ]

    def __str__(self):
        return f"{self.entity_type}:{self.entity_id} score={self.fraud_score} ({self.status})"

    @staticmethod
    def priority_for(fraud_score, risk_level):
        if risk_level == 'critical' or fraud_score >= 90:
            return 'urgent'
        if risk_level == 'high' or fraud_score >= 70:
            return 'high'
        if risk_level == 'medium' or fraud_score >= 50:
            return 'normal'
        return 'low'

    def save(self, *args, **kwargs):
        self.priority = self.priority_for(self.fraud_score, self.risk_level)
        if kwargs.get('update_fields') is not None and 'fraud_score' in kwargs['update_fields']:
            kwargs['update_fields'] = list(set(kwargs['update_fields']) | {'priority'})
        super().save(*args, **kwargs)

    @property
    def age_hours(self):
        return int((timezone.now() - self.created_at).total_seconds() // 3600)

    @property
    def is_open(self):
        return self.status in self.OPEN_STATUSES

    @property
    def requires_immediate_attention(self):
        return self.risk_level == 'critical' or self.fraud_score >= 90 or self.priority == 'urgent'

    def can_transition_to(self, status):
        return status in self.STATUS_TRANSITIONS.get(self.status, set())

    def _transition(self, status, **extra):
        if status not in dict(self.STATUS_CHOICES):
            raise ValidationError(f"Unknown report status {status}", status=status)
        if not self.can_transition_to(status):
            raise NotEligible(
                f"Report {self.pk} cannot move from {self.status} to {status}",
                code='invalid_transition',
            )
        now = timezone.now()
        extra.setdefault('updated_at', now)
        moved = FraudReport.objects.filter(pk=self.pk, status=self.status).update(status=status, **extra)
        if not moved:
            raise NotEligible(f"Report {self.pk} changed concurrently", code='stale_report')
        self.refresh_from_db()
        return self

    def add_investigation_note(self, note, admin=None, is_internal=False):
        if not note:
            raise ValidationError("Investigation note cannot be empty")
        self.investigation_notes = list(self.investigation_notes) + [{
            'note': note,
            'added_by': getattr(admin, 'pk', None),
            'is_internal': is_internal,
            'added_at': timezone.now().isoformat(),
        }]
        self.save(update_fields=['investigation_notes', 'updated_at'])
        return self

    def assign_investigator(self, admin):
        now = timezone.now()
        FraudReport.objects.filter(pk=self.pk).update(assigned_to=admin, assigned_at=now)
        self.refresh_from_db()
        if self.status == 'open':
            self._transition('investigating', started_at=now)
        return self

    def update_status(self, status, admin=None, notes=''):
        extra = {}
        now = timezone.now()
        if status == 'investigating' and not self.started_at:
            extra['started_at'] = now
        if status in ('resolved', 'closed', 'false_positive'):
            extra['completed_at'] = now
        self._transition(status, **extra)
        if notes:
            self.add_investigation_note(notes, admin)
        return self

    def resolve_report(self, action_taken, action_details='', admin=None, resolution_notes=''):
        if action_taken not in dict(self.ACTION_CHOICES):
            raise ValidationError(f"Unknown resolution action {action_taken}", action=action_taken)
        now = timezone.now()
        return self._transition(
            'resolved',
            completed_at=now,
            action_taken=action_taken,
            action_details=action_details,
            action_taken_at=now,
            action_taken_by=admin,
            resolution_notes=resolution_notes,
        )

    def get_summary(self):
        return {
            'id': self.pk,
            'type': self.report_type,
            'entity': f"{self.entity_type}:{self.entity_id}",
            'fraud_score': self.fraud_score,
            'risk_level': self.risk_level,
            'status': self.status,
            'priority': self.priority,
            'assigned_to': self.assigned_to_id,
            'age_hours': self.age_hours,
            'requires_attention': self.requires_immediate_attention,
            'action_taken': self.action_taken,
            'detection_count': self.detection_count,
            'created_at': self.created_at,
        }


class IPAddress(models.Model):
    """Track IP addresses for security and fraud detection"""

    ip_address = models.GenericIPAddressField(unique=True)
    country_code = models.CharField(max_length=10, blank=True, help_text="ISO country code")

    # Risk indicators
    is_vpn = models.BooleanField(default=False, help_text="Detected as VPN/Proxy")
    is_tor = models.BooleanField(default=False, help_text="Detected as Tor exit node")
    is_datacenter = models.BooleanField(default=False, help_text="Detected as datacenter IP")
    risk_score = models.IntegerField(default=0, help_text="Risk score 0-100")

    # Tracking
    first_seen = models.DateTimeField(default=timezone.now)
    last_seen = models.DateTimeField(default=timezone.now)
    total_users = models.IntegerField(default=0, help_text="Total unique users from this IP")

    # Blocking
    is_blocked = models.BooleanField(default=False)
    blocked_reason = models.TextField(blank=True)

    class Meta:
        verbose_name = "IP Address"
        verbose_name_plural = "IP Addresses"
        indexes = [
            models.Index(fields=['country_code'], name='ip_country_idx'),
            models.Index(fields=['is_vpn', 'is_tor', 'is_datacenter'], name='ip_risk_flags_idx'),
        ]

    def __str__(self):
        return f"{self.ip_address} ({self.country_code or '??'})"


class DeviceFingerprint(models.Model):
    """Track unique device fingerprints for fraud detection"""

    fingerprint = models.CharField(max_length=255, unique=True, help_text="Unique device fingerprint hash")
    device_details = models.JSONField(default=dict, help_text="Detailed device information")
    users = models.ManyToManyField(
        settings.AUTH_USER_MODEL,
        through='UserDevice',
        related_name='device_fingerprints'
    )

    risk_score = models.IntegerField(default=0, help_text="Risk score 0-100")
    total_users = models.IntegerField(default=0, help_text="Total unique users on this device")
    first_seen = models.DateTimeField(default=timezone.now)
    last_seen = models.DateTimeField(default=timezone.now)
    is_blocked = models.BooleanField(default=False)
    blocked_reason = models.TextField(blank=True)

    class Meta:
        verbose_name = "Device Fingerprint"
        verbose_name_plural = "Device Fingerprints"
        indexes = [
            models.Index(fields=['total_users'], name='device_total_users_idx'),
        ]

    def __str__(self):
        return f"{self.fingerprint[:20]}... ({self.total_users} users)"


class UserDevice(models.Model):
    """Link users to their devices"""

    user = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.CASCADE)
    device = models.ForeignKey(DeviceFingerprint, on_delete=models.CASCADE)
    first_used = models.DateTimeField(default=timezone.now)
    last_used = models.DateTimeField(default=timezone.now)
    total_sessions = models.IntegerField(default=1)

    class Meta:
        unique_together = [['user', 'device']]

    def __str__(self):
        return f"{self.user_id} - Device {self.device.fingerprint[:20]}..."


class UserIPAddress(models.Model):
    """Link users to the IP addresses they shared or cashed out from"""

    user = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name='ip_links')
    ip_address = models.ForeignKey(IPAddress, on_delete=models.CASCADE, related_name='user_links')
    country_code = models.CharField(max_length=10, blank=True)
    first_seen = models.DateTimeField(default=timezone.now)
    last_seen = models.DateTimeField(default=timezone.now)
    total_sessions = models.IntegerField(default=1)

    class Meta:
        unique_together = [['user', 'ip_address']]

    def __str__(self):
        return f"{self.user_id} @ {self.ip_address_id}"
