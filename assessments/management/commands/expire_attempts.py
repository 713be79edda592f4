from django.core.management.base import BaseCommand

from assessments.services import expire_overdue_attempts


class Command(BaseCommand):
    help = 'Auto-submits every active attempt whose time (plus grace period) has run out'

    def handle(self, *args, **options):
        count = expire_overdue_attempts()
        self.stdout.write(self.style.SUCCESS(f"Finalized {count} overdue attempt(s)"))
