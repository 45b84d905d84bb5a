from django.core.management.base import BaseCommand

from payments.services.webhooks import prune_processed_events


class Command(BaseCommand):
    help = "Delete processed webhook event records older than the retention window."

    def handle(self, *args, **options):
        deleted = prune_processed_events()
        self.stdout.write(self.style.SUCCESS(f"Pruned {deleted} webhook event record(s)."))
