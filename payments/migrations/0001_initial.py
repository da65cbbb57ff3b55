import django.db.models.deletion
import django.utils.timezone
from django.conf import settings
from django.db import migrations, models

import payments.models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name='Payout',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('created_at', models.DateTimeField(db_index=True, default=django.utils.timezone.now)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('deleted_at', models.DateTimeField(blank=True, help_text='Soft delete timestamp', null=True)),
                ('reference', models.CharField(default=payments.models.generate_payout_reference, editable=False, max_length=32, unique=True)),
                ('points', models.PositiveIntegerField(help_text='Points debited from the user')),
                ('fee_points', models.DecimalField(decimal_places=2, default=0, max_digits=12)),
                ('amount', models.DecimalField(decimal_places=2, default=0, help_text='Cash value after fees', max_digits=12)),
                ('method', models.CharField(choices=[('stripe', 'Stripe'), ('paypal', 'PayPal'), ('bank_transfer', 'Bank Transfer'), ('crypto', 'Crypto')], max_length=20)),
                ('details', models.JSONField(blank=True, default=dict)),
                ('country', models.CharField(blank=True, default='', max_length=10)),
                ('ip_address', models.GenericIPAddressField(blank=True, null=True)),
                ('status', models.CharField(choices=[('pending', 'Pending'), ('pending_review', 'Pending Review'), ('processing', 'Processing'), ('completed', 'Completed'), ('failed', 'Failed'), ('blocked', 'Blocked'), ('cancelled', 'Cancelled')], db_index=True, default='pending', max_length=20)),
                ('fraud_score', models.PositiveSmallIntegerField(default=0)),
                ('fraud_flags', models.JSONField(blank=True, default=list)),
                ('failure_reason', models.TextField(blank=True, default='')),
                ('external_transaction_id', models.CharField(blank=True, default='', max_length=128)),
                ('processed_at', models.DateTimeField(blank=True, null=True)),
                ('user', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='payouts', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'ordering': ['-created_at'],
                'indexes': [
                    models.Index(fields=['user', 'status'], name='payout_user_status_idx'),
                    models.Index(fields=['status', 'created_at'], name='payout_status_created_idx'),
                ],
            },
        ),
    ]
