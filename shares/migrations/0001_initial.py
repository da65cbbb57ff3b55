import uuid

import django.db.models.deletion
import django.utils.timezone
from django.conf import settings
from django.db import migrations, models

import shares.models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
        ('catalog', '0001_initial'),
        ('tournaments', '0001_initial'),
    ]

    operations = [
        migrations.CreateModel(
            name='ShareEvent',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('created_at', models.DateTimeField(db_index=True, default=django.utils.timezone.now)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('deleted_at', models.DateTimeField(blank=True, help_text='Soft delete timestamp', null=True)),
                ('tracking_id', models.UUIDField(default=uuid.uuid4, editable=False, unique=True)),
                ('share_type', models.CharField(choices=[('regular', 'Regular'), ('tournament', 'Tournament')], default='regular', max_length=20)),
                ('channel', models.CharField(choices=[('whatsapp', 'WhatsApp'), ('telegram', 'Telegram'), ('sms', 'SMS'), ('email', 'Email'), ('facebook', 'Facebook'), ('twitter', 'Twitter'), ('instagram', 'Instagram'), ('linkedin', 'LinkedIn'), ('discord', 'Discord'), ('other', 'Other')], default='other', max_length=20)),
                ('share_url', models.URLField(blank=True, default='', max_length=500)),
                ('device_info', models.JSONField(blank=True, default=dict)),
                ('device_fingerprint', models.CharField(blank=True, db_index=True, default='', max_length=64)),
                ('ip_address', models.GenericIPAddressField(blank=True, null=True)),
                ('country', models.CharField(blank=True, default='', max_length=10)),
                ('user_agent', models.TextField(blank=True, default='')),
                ('click_count', models.PositiveIntegerField(default=0)),
                ('conversion_count', models.PositiveIntegerField(default=0)),
                ('validation_status', models.CharField(choices=[('pending', 'Pending'), ('verified', 'Verified'), ('rejected', 'Rejected')], db_index=True, default='pending', max_length=20)),
                ('rejection_reason', models.CharField(blank=True, default='', max_length=50)),
                ('verified_at', models.DateTimeField(blank=True, db_index=True, null=True)),
                ('expires_at', models.DateTimeField(default=shares.models.default_share_expiry)),
                ('base_xp', models.PositiveIntegerField(default=0)),
                ('base_points', models.PositiveIntegerField(default=0)),
                ('xp_awarded', models.PositiveIntegerField(default=0)),
                ('points_awarded', models.PositiveIntegerField(default=0)),
                ('reward_breakdown', models.JSONField(blank=True, default=dict)),
                ('fraud_score', models.PositiveSmallIntegerField(default=0)),
                ('fraud_flags', models.JSONField(blank=True, default=list)),
                ('app', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='share_events', to='catalog.app')),
                ('tournament', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='share_events', to='tournaments.tournament')),
                ('user', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='share_events', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'ordering': ['-created_at'],
                'indexes': [
                    models.Index(fields=['user', 'app', 'created_at'], name='share_user_app_idx'),
                    models.Index(fields=['app', 'created_at'], name='share_app_created_idx'),
                    models.Index(fields=['user', 'validation_status', 'verified_at'], name='share_user_verified_idx'),
                ],
            },
        ),
    ]
