import django.contrib.auth.validators
import django.utils.timezone
from django.db import migrations, models

import users.models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ('auth', '0012_alter_user_first_name_max_length'),
    ]

    operations = [
        migrations.CreateModel(
            name='User',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('password', models.CharField(max_length=128, verbose_name='password')),
                ('last_login', models.DateTimeField(blank=True, null=True, verbose_name='last login')),
                ('is_superuser', models.BooleanField(default=False, help_text='Designates that this user has all permissions without explicitly assigning them.', verbose_name='superuser status')),
                ('username', models.CharField(error_messages={'unique': 'A user with that username already exists.'}, help_text='Required. 150 characters or fewer. Letters, digits and @/./+/-/_ only.', max_length=150, unique=True, validators=[django.contrib.auth.validators.UnicodeUsernameValidator()], verbose_name='username')),
                ('first_name', models.CharField(blank=True, max_length=150, verbose_name='first name')),
                ('last_name', models.CharField(blank=True, max_length=150, verbose_name='last name')),
                ('email', models.EmailField(blank=True, max_length=254, verbose_name='email address')),
                ('is_staff', models.BooleanField(default=False, help_text='Designates whether the user can log into this admin site.', verbose_name='staff status')),
                ('is_active', models.BooleanField(default=True, help_text='Designates whether this user should be treated as active. Unselect this instead of deleting accounts.', verbose_name='active')),
                ('date_joined', models.DateTimeField(default=django.utils.timezone.now, verbose_name='date joined')),
                ('created_at', models.DateTimeField(db_index=True, default=django.utils.timezone.now)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('deleted_at', models.DateTimeField(blank=True, help_text='Soft delete timestamp', null=True)),
                ('region', models.CharField(default='GLOBAL', help_text='ISO region/country code used for tournament eligibility', max_length=10)),
                ('current_xp', models.PositiveBigIntegerField(default=0)),
                ('current_points', models.PositiveBigIntegerField(default=0)),
                ('total_xp_earned', models.PositiveBigIntegerField(default=0)),
                ('total_points_earned', models.PositiveBigIntegerField(default=0)),
                ('user_level', models.PositiveIntegerField(default=1)),
                ('total_apps_shared', models.PositiveIntegerField(default=0)),
                ('sharing_streak_days', models.PositiveIntegerField(default=0)),
                ('longest_sharing_streak', models.PositiveIntegerField(default=0)),
                ('last_share_date', models.DateField(blank=True, null=True)),
                ('total_badges_earned', models.PositiveIntegerField(default=0)),
                ('total_tournaments_participated', models.PositiveIntegerField(default=0)),
                ('total_tournaments_won', models.PositiveIntegerField(default=0)),
                ('total_payouts_received', models.DecimalField(decimal_places=2, default=0, max_digits=12)),
                ('referral_code', models.CharField(blank=True, max_length=20, null=True, unique=True)),
                ('referral_count', models.PositiveIntegerField(default=0)),
                ('total_referrals_completed', models.PositiveIntegerField(default=0)),
                ('total_referral_earnings_xp', models.PositiveBigIntegerField(default=0)),
                ('total_referral_earnings_points', models.PositiveBigIntegerField(default=0)),
                ('last_activity_at', models.DateTimeField(blank=True, db_index=True, null=True)),
                ('groups', models.ManyToManyField(blank=True, help_text='The groups this user belongs to.', related_name='custom_user_set', related_query_name='custom_user', to='auth.group', verbose_name='groups')),
                ('user_permissions', models.ManyToManyField(blank=True, help_text='Specific permissions for this user.', related_name='custom_user_set', related_query_name='custom_user', to='auth.permission', verbose_name='user permissions')),
            ],
            options={
                'verbose_name': 'user',
                'verbose_name_plural': 'users',
                'abstract': False,
            },
            managers=[
                ('objects', users.models.SoftDeleteUserManager()),
            ],
        ),
    ]
