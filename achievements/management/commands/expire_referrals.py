"""
Expire pending referrals whose activation window has closed.

Runs the same sweep as the hourly Celery task; useful for backfills or when
the beat scheduler was down.
"""
from django.core.management.base import BaseCommand
from django.utils import timezone

from achievements.services.referrals import expire_referrals


class Command(BaseCommand):
    help = "Mark pending referrals past expires_at as expired."

    def add_arguments(self, parser):
        parser.add_argument(
            "--dry-run",
            action="store_true",
            help="Only report how many referrals would expire.",
        )

    def handle(self, *args, **options):
        dry_run: bool = bool(options.get("dry_run"))
        count = expire_referrals(timezone.now(), dry_run=dry_run)

        if dry_run:
            self.stdout.write(self.style.WARNING(f"{count} referral(s) would be expired"))
        else:
            self.stdout.write(self.style.SUCCESS(f"Expired {count} referral(s)"))
