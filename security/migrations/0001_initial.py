import django.db.models.deletion
import django.utils.timezone
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name='FraudReport',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('created_at', models.DateTimeField(db_index=True, default=django.utils.timezone.now)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('deleted_at', models.DateTimeField(blank=True, help_text='Soft delete timestamp', null=True)),
                ('report_type', models.CharField(choices=[('share_fraud', 'Share Fraud'), ('payment_fraud', 'Payment Fraud'), ('user_fraud', 'User Fraud'), ('device_fraud', 'Device Fraud'), ('referral_fraud', 'Referral Fraud'), ('system_fraud', 'System Fraud'), ('other', 'Other')], max_length=30)),
                ('entity_type', models.CharField(choices=[('share', 'Share'), ('payment', 'Payment'), ('user', 'User'), ('device', 'Device'), ('referral', 'Referral')], max_length=20)),
                ('entity_id', models.CharField(max_length=64)),
                ('fraud_score', models.PositiveSmallIntegerField()),
                ('risk_level', models.CharField(choices=[('minimal', 'Minimal'), ('low', 'Low'), ('medium', 'Medium'), ('high', 'High'), ('critical', 'Critical')], max_length=10)),
                ('fraud_flags', models.JSONField(blank=True, default=list)),
                ('risk_factors', models.JSONField(blank=True, default=dict)),
                ('recommendations', models.JSONField(blank=True, default=list)),
                ('detection_method', models.CharField(default='automated', max_length=30)),
                ('detection_count', models.PositiveIntegerField(default=1)),
                ('last_detected_at', models.DateTimeField(default=django.utils.timezone.now)),
                ('status', models.CharField(choices=[('open', 'Open'), ('investigating', 'Investigating'), ('pending_review', 'Pending Review'), ('resolved', 'Resolved'), ('closed', 'Closed'), ('false_positive', 'False Positive')], db_index=True, default='open', max_length=20)),
                ('priority', models.CharField(choices=[('low', 'Low'), ('normal', 'Normal'), ('high', 'High'), ('urgent', 'Urgent')], default='normal', max_length=10)),
                ('assigned_at', models.DateTimeField(blank=True, null=True)),
                ('started_at', models.DateTimeField(blank=True, null=True)),
                ('completed_at', models.DateTimeField(blank=True, null=True)),
                ('investigation_notes', models.JSONField(blank=True, default=list)),
                ('action_taken', models.CharField(choices=[('none', 'None'), ('warning_sent', 'Warning Sent'), ('account_suspended', 'Account Suspended'), ('account_banned', 'Account Banned'), ('payment_blocked', 'Payment Blocked'), ('tournament_disqualification', 'Tournament Disqualification'), ('referral_removal', 'Referral Removal'), ('reward_reversed', 'Reward Reversed'), ('system_improvement', 'System Improvement'), ('other', 'Other')], default='none', max_length=30)),
                ('action_details', models.TextField(blank=True, default='')),
                ('action_taken_at', models.DateTimeField(blank=True, null=True)),
                ('resolution_notes', models.TextField(blank=True, default='')),
                ('action_taken_by', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='resolved_fraud_reports', to=settings.AUTH_USER_MODEL)),
                ('assigned_to', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='assigned_fraud_reports', to=settings.AUTH_USER_MODEL)),
                ('reported_user', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='fraud_reports', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'ordering': ['-created_at'],
                'indexes': [
                    models.Index(fields=['entity_type', 'entity_id', 'status'], name='fraud_entity_status_idx'),
                    models.Index(fields=['status', 'priority'], name='fraud_status_priority_idx'),
                    models.Index(fields=['fraud_score', 'created_at'], name='fraud_score_created_idx'),
                ],
            },
        ),
        migrations.CreateModel(
            name='IPAddress',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('ip_address', models.GenericIPAddressField(unique=True)),
                ('country_code', models.CharField(blank=True, help_text='ISO country code', max_length=10)),
                ('is_vpn', models.BooleanField(default=False, help_text='Detected as VPN/Proxy')),
                ('is_tor', models.BooleanField(default=False, help_text='Detected as Tor exit node')),
                ('is_datacenter', models.BooleanField(default=False, help_text='Detected as datacenter IP')),
                ('risk_score', models.IntegerField(default=0, help_text='Risk score 0-100')),
                ('first_seen', models.DateTimeField(default=django.utils.timezone.now)),
                ('last_seen', models.DateTimeField(default=django.utils.timezone.now)),
                ('total_users', models.IntegerField(default=0, help_text='Total unique users from this IP')),
                ('is_blocked', models.BooleanField(default=False)),
                ('blocked_reason', models.TextField(blank=True)),
            ],
            options={
                'verbose_name': 'IP Address',
                'verbose_name_plural': 'IP Addresses',
                'indexes': [
                    models.Index(fields=['country_code'], name='ip_country_idx'),
                    models.Index(fields=['is_vpn', 'is_tor', 'is_datacenter'], name='ip_risk_flags_idx'),
                ],
            },
        ),
        migrations.CreateModel(
            name='DeviceFingerprint',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('fingerprint', models.CharField(help_text='Unique device fingerprint hash', max_length=255, unique=True)),
                ('device_details', models.JSONField(default=dict, help_text='Detailed device information')),
                ('risk_score', models.IntegerField(default=0, help_text='Risk score 0-100')),
                ('total_users', models.IntegerField(default=0, help_text='Total unique users on this device')),
                ('first_seen', models.DateTimeField(default=django.utils.timezone.now)),
                ('last_seen', models.DateTimeField(default=django.utils.timezone.now)),
                ('is_blocked', models.BooleanField(default=False)),
                ('blocked_reason', models.TextField(blank=True)),
            ],
            options={
                'verbose_name': 'Device Fingerprint',
                'verbose_name_plural': 'Device Fingerprints',
                'indexes': [models.Index(fields=['total_users'], name='device_total_users_idx')],
            },
        ),
        migrations.CreateModel(
            name='UserDevice',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('first_used', models.DateTimeField(default=django.utils.timezone.now)),
                ('last_used', models.DateTimeField(default=django.utils.timezone.now)),
                ('total_sessions', models.IntegerField(default=1)),
                ('device', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, to='security.devicefingerprint')),
                ('user', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'unique_together': {('user', 'device')},
            },
        ),
        migrations.AddField(
            model_name='devicefingerprint',
            name='users',
            field=models.ManyToManyField(related_name='device_fingerprints', through='security.UserDevice', to=settings.AUTH_USER_MODEL),
        ),
        migrations.CreateModel(
            name='UserIPAddress',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('country_code', models.CharField(blank=True, max_length=10)),
                ('first_seen', models.DateTimeField(default=django.utils.timezone.now)),
                ('last_seen', models.DateTimeField(default=django.utils.timezone.now)),
                ('total_sessions', models.IntegerField(default=1)),
                ('ip_address', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='user_links', to='security.ipaddress')),
                ('user', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='ip_links', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'unique_together': {('user', 'ip_address')},
            },
        ),
    ]
