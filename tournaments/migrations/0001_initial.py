from decimal import Decimal

import django.db.models.deletion
import django.utils.timezone
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
        ('catalog', '0001_initial'),
    ]

    operations = [
        migrations.CreateModel(
            name='Tournament',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('created_at', models.DateTimeField(db_index=True, default=django.utils.timezone.now)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('deleted_at', models.DateTimeField(blank=True, help_text='Soft delete timestamp', null=True)),
                ('name', models.CharField(max_length=255)),
                ('description', models.TextField(blank=True, default='')),
                ('category', models.CharField(choices=[('weekly_challenge', 'Weekly Challenge'), ('seasonal', 'Seasonal'), ('app_launch', 'App Launch'), ('special_event', 'Special Event'), ('regional', 'Regional')], default='weekly_challenge', max_length=30)),
                ('status', models.CharField(choices=[('draft', 'Draft'), ('scheduled', 'Scheduled'), ('live', 'Live'), ('completed', 'Completed'), ('cancelled', 'Cancelled')], db_index=True, default='draft', max_length=20)),
                ('start_date', models.DateTimeField()),
                ('end_date', models.DateTimeField()),
                ('registration_deadline', models.DateTimeField(blank=True, null=True)),
                ('eligible_regions', models.JSONField(blank=True, default=list)),
                ('max_participants', models.PositiveIntegerField(default=1000)),
                ('min_user_level', models.PositiveIntegerField(default=1)),
                ('scoring_method', models.CharField(choices=[('shares_count', 'Shares Count'), ('xp_earned', 'XP Earned'), ('points_earned', 'Points Earned'), ('weighted_score', 'Weighted Score')], default='shares_count', max_length=20)),
                ('score_multiplier', models.DecimalField(decimal_places=2, default=Decimal('1.00'), help_text='Multiplier applied to the raw leaderboard score', max_digits=4)),
                ('reward_multiplier', models.DecimalField(blank=True, decimal_places=2, help_text='Share reward multiplier; empty uses the engine default', max_digits=4, null=True)),
                ('total_participants', models.PositiveIntegerField(default=0)),
                ('total_shares', models.PositiveIntegerField(default=0)),
                ('total_xp_allocated', models.PositiveBigIntegerField(default=0)),
                ('total_points_allocated', models.PositiveBigIntegerField(default=0)),
                ('apps', models.ManyToManyField(related_name='tournaments', to='catalog.app')),
            ],
            options={
                'ordering': ['-start_date'],
                'indexes': [models.Index(fields=['status', 'start_date', 'end_date'], name='tourn_status_window_idx')],
            },
        ),
        migrations.CreateModel(
            name='TournamentParticipant',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('created_at', models.DateTimeField(db_index=True, default=django.utils.timezone.now)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('deleted_at', models.DateTimeField(blank=True, help_text='Soft delete timestamp', null=True)),
                ('status', models.CharField(choices=[('registered', 'Registered'), ('active', 'Active'), ('disqualified', 'Disqualified'), ('withdrawn', 'Withdrawn')], default='registered', max_length=20)),
                ('registered_at', models.DateTimeField(default=django.utils.timezone.now)),
                ('shares_count', models.PositiveIntegerField(default=0)),
                ('xp_earned', models.PositiveBigIntegerField(default=0)),
                ('points_earned', models.PositiveBigIntegerField(default=0)),
                ('total_score', models.PositiveBigIntegerField(db_index=True, default=0)),
                ('last_scored_at', models.DateTimeField(blank=True, null=True)),
                ('tournament', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='participants', to='tournaments.tournament')),
                ('user', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='tournament_entries', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'ordering': ['-total_score', 'registered_at'],
                'constraints': [models.UniqueConstraint(fields=('tournament', 'user'), name='unique_tournament_participant')],
            },
        ),
    ]
