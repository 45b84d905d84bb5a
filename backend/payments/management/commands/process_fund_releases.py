import logging
import time

from django.core.management.base import BaseCommand, CommandError

from payments.services.release import default_worker_id, run_due_releases

logger = logging.getLogger(__name__)


class Command(BaseCommand):
    help = "Release held funds for bookings whose hold period has ended."

    def add_arguments(self, parser):
        parser.add_argument("--loop", action="store_true", help="Keep sweeping until interrupted.")
        parser.add_argument("--interval", type=int, default=60, help="Seconds between sweeps with --loop.")
        parser.add_argument("--limit", type=int, default=100, help="Maximum entries per sweep.")
        parser.add_argument("--worker-id", default=None, help="Lease owner name (defaults to host:pid).")

    def handle(self, *args, **options):
        if options["interval"] < 1:
            raise CommandError("--interval must be at least 1 second.")
        worker_id = options["worker_id"] or default_worker_id()

        # The first sweep runs straight away so entries that matured while no
        # worker was running are picked up on start.
        while True:
            report = run_due_releases(worker_id=worker_id, limit=options["limit"])
            self.stdout.write(
                f"released={report.released} skipped={report.skipped} retrying={report.retried} "
                f"needs_attention={report.needs_attention} contended={report.contended}"
            )
            if not options["loop"]:
                return
            try:
                time.sleep(options["interval"])
            except KeyboardInterrupt:
                logger.info("Release worker %s stopping", worker_id)
                return
