from django.conf import settings
from django.core.management.base import BaseCommand, CommandError

from elearning.payments.recovery import ReconciliationService


class Command(BaseCommand):
    help = 'Mark pending payments older than the cutoff as failed (reason "stale_pending")'

    def add_arguments(self, parser):
        parser.add_argument(
            '--hours',
            type=int,
            default=None,
            help=f'Age in hours after which a pending payment is stale (default: {settings.STALE_PENDING_PAYMENT_HOURS})',
        )

    def handle(self, *args, **options):
        hours = options['hours']
        if hours is not None and hours < 1:
            raise CommandError('--hours must be at least 1')

        self.stdout.write('Expiring stale pending payments...')
        expired = ReconciliationService().expire_stale_pending(hours)

        self.stdout.write(
            self.style.SUCCESS(f'Successfully expired {expired} pending payments')
        )
