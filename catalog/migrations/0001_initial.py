from decimal import Decimal

import django.utils.timezone
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name='Category',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('created_at', models.DateTimeField(db_index=True, default=django.utils.timezone.now)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('deleted_at', models.DateTimeField(blank=True, help_text='Soft delete timestamp', null=True)),
                ('name', models.CharField(max_length=100, unique=True)),
                ('slug', models.SlugField(max_length=100, unique=True)),
                ('description', models.TextField(blank=True, default='')),
                ('color', models.CharField(default='#3B82F6', max_length=7)),
                ('is_active', models.BooleanField(default=True)),
                ('sort_order', models.PositiveIntegerField(default=0)),
            ],
            options={
                'verbose_name_plural': 'categories',
                'ordering': ['sort_order', 'name'],
            },
        ),
        migrations.CreateModel(
            name='App',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('created_at', models.DateTimeField(db_index=True, default=django.utils.timezone.now)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('deleted_at', models.DateTimeField(blank=True, help_text='Soft delete timestamp', null=True)),
                ('name', models.CharField(max_length=200)),
                ('slug', models.SlugField(max_length=200, unique=True)),
                ('description', models.TextField(blank=True, default='')),
                ('host_identifier', models.CharField(blank=True, default='', help_text='External identifier of the host that funds this app', max_length=100)),
                ('geo_availability', models.JSONField(blank=True, default=list)),
                ('is_active', models.BooleanField(default=True)),
                ('is_featured', models.BooleanField(default=False)),
                ('app_xp', models.PositiveIntegerField(default=0)),
                ('app_points', models.PositiveIntegerField(default=0)),
                ('daily_user_limit', models.PositiveIntegerField(default=10)),
                ('daily_global_limit', models.PositiveIntegerField(default=1000)),
                ('cooldown_minutes', models.PositiveIntegerField(default=30)),
                ('min_user_level', models.PositiveIntegerField(default=1)),
                ('budget_total', models.DecimalField(decimal_places=2, default=Decimal('10000'), max_digits=14)),
                ('budget_daily', models.DecimalField(decimal_places=2, default=Decimal('1000'), max_digits=14)),
                ('cost_per_xp', models.DecimalField(decimal_places=4, default=Decimal('0.01'), max_digits=10)),
                ('cost_per_point', models.DecimalField(decimal_places=4, default=Decimal('0.1'), max_digits=10)),
                ('total_shared', models.PositiveIntegerField(default=0)),
                ('total_xp_allocated', models.PositiveBigIntegerField(default=0)),
                ('total_points_allocated', models.PositiveBigIntegerField(default=0)),
                ('total_xp_spent', models.PositiveBigIntegerField(default=0)),
                ('total_points_spent', models.PositiveBigIntegerField(default=0)),
                ('categories', models.ManyToManyField(blank=True, related_name='apps', to='catalog.category')),
            ],
            options={
                'ordering': ['-is_featured', 'name'],
            },
        ),
    ]
