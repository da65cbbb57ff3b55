import django.db.models.deletion
import django.utils.timezone
from django.conf import settings
from django.db import migrations, models

import achievements.models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name='Badge',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('created_at', models.DateTimeField(db_index=True, default=django.utils.timezone.now)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('deleted_at', models.DateTimeField(blank=True, help_text='Soft delete timestamp', null=True)),
                ('name', models.CharField(max_length=255)),
                ('slug', models.SlugField(max_length=255, unique=True)),
                ('classification', models.CharField(choices=[('achievement', 'Achievement'), ('milestone', 'Milestone'), ('special_event', 'Special Event'), ('seasonal', 'Seasonal'), ('referral', 'Referral'), ('tournament', 'Tournament')], default='achievement', max_length=20)),
                ('description', models.TextField(blank=True, default='')),
                ('icon_url', models.URLField(blank=True, default='')),
                ('criteria_type', models.CharField(choices=[('xp_threshold', 'XP Threshold'), ('points_earned', 'Points Earned'), ('shares_count', 'Shares Count'), ('tournaments_won', 'Tournaments Won'), ('streak_days', 'Streak Days'), ('referrals_count', 'Referrals Count'), ('level_reached', 'Level Reached'), ('consecutive_days', 'Consecutive Days'), ('category_diversity', 'Category Diversity'), ('app_diversity', 'App Diversity'), ('total_payouts', 'Total Payouts'), ('badge_count', 'Badge Count')], max_length=30)),
                ('threshold_value', models.PositiveIntegerField()),
                ('threshold_operator', models.CharField(choices=[('>=', '>='), ('==', '=='), ('<=', '<='), ('>', '>'), ('<', '<'), ('!=', '!=')], default='>=', max_length=2)),
                ('rarity', models.CharField(choices=[('common', 'Common'), ('rare', 'Rare'), ('epic', 'Epic'), ('legendary', 'Legendary'), ('mythic', 'Mythic')], default='common', max_length=10)),
                ('xp_reward', models.PositiveIntegerField(default=0)),
                ('points_reward', models.PositiveIntegerField(default=0)),
                ('users_achieved_count', models.PositiveIntegerField(default=0)),
                ('is_active', models.BooleanField(default=True)),
                ('is_hidden', models.BooleanField(default=False)),
                ('seasonal_start', models.DateTimeField(blank=True, null=True)),
                ('seasonal_end', models.DateTimeField(blank=True, null=True)),
                ('exclusive_with', models.ManyToManyField(blank=True, to='achievements.badge')),
                ('prerequisite_badges', models.ManyToManyField(blank=True, related_name='unlocks', to='achievements.badge')),
            ],
            options={
                'ordering': ['threshold_value', 'id'],
                'indexes': [
                    models.Index(fields=['is_active', 'criteria_type'], name='badge_active_criteria_idx'),
                    models.Index(fields=['is_active', 'rarity'], name='badge_active_rarity_idx'),
                ],
            },
        ),
        migrations.CreateModel(
            name='UserBadge',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('earned_at', models.DateTimeField(default=django.utils.timezone.now)),
                ('xp_awarded', models.PositiveIntegerField(default=0)),
                ('points_awarded', models.PositiveIntegerField(default=0)),
                ('achievement_value', models.BigIntegerField(default=0)),
                ('trigger', models.CharField(blank=True, default='', max_length=50)),
                ('achievement_context', models.JSONField(blank=True, default=dict)),
                ('badge', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='holders', to='achievements.badge')),
                ('user', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='user_badges', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'ordering': ['-earned_at'],
                'constraints': [models.UniqueConstraint(fields=('user', 'badge'), name='unique_user_badge')],
            },
        ),
        migrations.CreateModel(
            name='BadgeProgress',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('current_value', models.BigIntegerField(default=0)),
                ('percentage_complete', models.DecimalField(decimal_places=2, default=0, max_digits=5)),
                ('last_updated', models.DateTimeField(default=django.utils.timezone.now)),
                ('milestone_notifications_sent', models.JSONField(blank=True, default=list)),
                ('badge', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='progress_records', to='achievements.badge')),
                ('user', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='badge_progress', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'indexes': [models.Index(fields=['user', '-percentage_complete'], name='badge_progress_user_idx')],
                'constraints': [models.UniqueConstraint(fields=('user', 'badge'), name='unique_badge_progress')],
            },
        ),
        migrations.CreateModel(
            name='UserReferral',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('created_at', models.DateTimeField(db_index=True, default=django.utils.timezone.now)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('deleted_at', models.DateTimeField(blank=True, help_text='Soft delete timestamp', null=True)),
                ('referral_code', models.CharField(max_length=20)),
                ('source', models.CharField(choices=[('email', 'Email'), ('whatsapp', 'WhatsApp'), ('telegram', 'Telegram'), ('social_media', 'Social Media'), ('direct_link', 'Direct Link'), ('qr_code', 'QR Code'), ('other', 'Other')], default='direct_link', max_length=20)),
                ('channel', models.CharField(blank=True, default='', max_length=100)),
                ('status', models.CharField(choices=[('pending', 'Pending'), ('active', 'Active'), ('completed', 'Completed'), ('expired', 'Expired'), ('fraudulent', 'Fraudulent')], db_index=True, default='pending', max_length=20)),
                ('signup_date', models.DateTimeField(default=django.utils.timezone.now)),
                ('activation_date', models.DateTimeField(blank=True, null=True)),
                ('completion_date', models.DateTimeField(blank=True, null=True)),
                ('min_shares', models.PositiveIntegerField(default=achievements.models.default_min_shares)),
                ('min_xp_earned', models.PositiveIntegerField(default=achievements.models.default_min_xp_earned)),
                ('min_points_earned', models.PositiveIntegerField(default=achievements.models.default_min_points_earned)),
                ('min_days_active', models.PositiveIntegerField(default=achievements.models.default_min_days_active)),
                ('shares_completed', models.PositiveIntegerField(default=0)),
                ('xp_earned', models.PositiveIntegerField(default=0)),
                ('points_earned', models.PositiveIntegerField(default=0)),
                ('days_active', models.PositiveIntegerField(default=0)),
                ('last_activity_date', models.DateTimeField(blank=True, null=True)),
                ('referrer_bonus_xp', models.PositiveIntegerField(default=achievements.models.default_referrer_bonus_xp)),
                ('referrer_bonus_points', models.PositiveIntegerField(default=achievements.models.default_referrer_bonus_points)),
                ('referred_bonus_xp', models.PositiveIntegerField(default=achievements.models.default_referred_bonus_xp)),
                ('referred_bonus_points', models.PositiveIntegerField(default=achievements.models.default_referred_bonus_points)),
                ('referrer_rewarded', models.BooleanField(default=False)),
                ('referrer_rewarded_at', models.DateTimeField(blank=True, null=True)),
                ('referred_rewarded', models.BooleanField(default=False)),
                ('referred_rewarded_at', models.DateTimeField(blank=True, null=True)),
                ('fraud_score', models.PositiveSmallIntegerField(default=0)),
                ('fraud_flags', models.JSONField(blank=True, default=list)),
                ('is_suspicious', models.BooleanField(db_index=True, default=False)),
                ('reviewed_at', models.DateTimeField(blank=True, null=True)),
                ('metadata', models.JSONField(blank=True, default=dict)),
                ('expires_at', models.DateTimeField(db_index=True, default=achievements.models.default_referral_expiry)),
                ('version', models.PositiveIntegerField(default=0)),
                ('referred', models.OneToOneField(on_delete=django.db.models.deletion.CASCADE, related_name='referred_by', to=settings.AUTH_USER_MODEL)),
                ('referrer', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='referrals_made', to=settings.AUTH_USER_MODEL)),
                ('reviewed_by', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='reviewed_referrals', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'ordering': ['-created_at'],
                'indexes': [
                    models.Index(fields=['referrer', '-created_at'], name='referral_referrer_idx'),
                    models.Index(fields=['status', '-created_at'], name='referral_status_idx'),
                ],
            },
        ),
    ]
