from django.core.management.base import BaseCommand

from payments.services.reconciliation import reconcile_pending_authorizations


class Command(BaseCommand):
    help = "Re-query the payment gateway for bookings stuck waiting on authorization."

    def handle(self, *args, **options):
        report = reconcile_pending_authorizations()
        self.stdout.write(
            self.style.SUCCESS(
                f"checked={report.checked} authorized={report.authorized} failed={report.failed} "
                f"refunded={report.refunded} unchanged={report.unchanged} errors={report.errors}"
            )
        )
