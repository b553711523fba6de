from datetime import timedelta

from django.conf import settings
from django.core.management.base import BaseCommand, CommandError
from django.utils import timezone

from nursing.services.emergencies import expire_stale_requests


class Command(BaseCommand):
    help = "Expire live emergency requests older than the TTL; subscribers are notified of each change."

    def add_arguments(self, parser):
        parser.add_argument(
            '--minutes', type=int, default=None,
            help='Age in minutes after which a live request expires (default: EMERGENCY_REQUEST_TTL_MINUTES).',
        )

    def handle(self, *args, **options):
        minutes = options.get('minutes')
        if minutes is None:
            minutes = settings.EMERGENCY_REQUEST_TTL_MINUTES
        if minutes <= 0:
            raise CommandError('--minutes must be positive')

        now = timezone.now()
        expired = expire_stale_requests(timedelta(minutes=minutes), now=now)
        self.stdout.write(self.style.SUCCESS(f"Expired {len(expired)} requests older than {minutes} min at {now}"))
