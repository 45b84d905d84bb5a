"""
Durable schedule for releasing held funds to providers.

Entries live in ``ScheduledFundsRelease`` so a restart never loses one. Any
number of workers may sweep concurrently: each entry is claimed with a
conditional lease update before ``finalize_release`` runs, so only one worker
triggers a payout for it at a time.
"""

from __future__ import annotations

import logging
import os
import socket
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone as dt_timezone

from django.conf import settings
from django.db.models import Q
from django.utils import timezone

from bookings.exceptions import BookingNotFound, StateConflictError
from payments.gateway import GatewayError
from payments.models import ScheduledFundsRelease

logger = logging.getLogger(__name__)

Status = ScheduledFundsRelease.Status


@dataclass
class SweepReport:
    released: int = 0
    skipped: int = 0
    retried: int = 0
    needs_attention: int = 0
    contended: int = 0

    @property
    def processed(self) -> int:
        return self.released + self.skipped + self.retried + self.needs_attention


def add_working_days(start: datetime, days: int) -> datetime:
    """Step forward ``days`` weekdays from ``start`` (in UTC), keeping the time of day."""

    if days < 0:
        raise ValueError("days cannot be negative.")
    if timezone.is_naive(start):
        start = timezone.make_aware(start, dt_timezone.utc)
    current = start.astimezone(dt_timezone.utc)
    remaining = days
    while remaining:
        current += timedelta(days=1)
        if current.weekday() < 5:
            remaining -= 1
    return current


def default_worker_id() -> str:
    return f"{socket.gethostname()}:{os.getpid()}"


def schedule(booking_id, release_at: datetime) -> ScheduledFundsRelease:
    """Create or replace the release entry for a booking."""

    entry, created = ScheduledFundsRelease.objects.update_or_create(
        booking_id=booking_id,
        defaults={
            "release_at": release_at,
            "next_attempt_at": release_at,
            "status": Status.SCHEDULED,
            "attempts": 0,
            "lease_owner": "",
            "lease_expires_at": None,
            "last_error": "",
            "completed_at": None,
        },
    )
    logger.info(
        "%s funds release for booking %s at %s",
        "Scheduled" if created else "Rescheduled",
        booking_id,
        release_at.isoformat(),
    )
    return entry


def cancel_schedule(booking_id) -> int:
    deleted, _ = ScheduledFundsRelease.objects.filter(
        booking_id=booking_id,
        status=Status.SCHEDULED,
    ).delete()
    if deleted:
        logger.info("Cancelled pending funds release for booking %s", booking_id)
    return deleted


def _lease_free(now: datetime) -> Q:
    return Q(lease_expires_at__isnull=True) | Q(lease_expires_at__lte=now)


def _claim(entry_id: int, worker_id: str, now: datetime) -> bool:
    lease_until = now + timedelta(seconds=settings.FUNDS_RELEASE_LEASE_SECONDS)
    claimed = (
        ScheduledFundsRelease.objects.filter(pk=entry_id, status=Status.SCHEDULED, next_attempt_at__lte=now)
        .filter(_lease_free(now))
        .update(lease_owner=worker_id, lease_expires_at=lease_until, updated_at=timezone.now())
    )
    return bool(claimed)


def _settle(entry: ScheduledFundsRelease, worker_id: str, **fields) -> None:
    fields.setdefault("lease_owner", "")
    fields.setdefault("lease_expires_at", None)
    ScheduledFundsRelease.objects.filter(pk=entry.pk, lease_owner=worker_id).update(
        updated_at=timezone.now(),
        **fields,
    )


def _record_failure(entry, worker_id: str, now: datetime, error: str, report: SweepReport) -> None:
    attempts = entry.attempts + 1
    if attempts >= settings.FUNDS_RELEASE_MAX_ATTEMPTS:
        logger.error(
            "Funds release for booking %s failed %s times (%s); needs manual reconciliation.",
            entry.booking_id,
            attempts,
            error,
        )
        _settle(entry, worker_id, attempts=attempts, last_error=error, status=Status.NEEDS_ATTENTION)
        report.needs_attention += 1
        return

    delay = settings.FUNDS_RELEASE_RETRY_BASE_SECONDS * 2 ** (attempts - 1)
    logger.warning(
        "Funds release for booking %s failed (attempt %s, %s); retrying in %ss.",
        entry.booking_id,
        attempts,
        error,
        delay,
    )
    _settle(
        entry,
        worker_id,
        attempts=attempts,
        last_error=error,
        next_attempt_at=now + timedelta(seconds=delay),
    )
    report.retried += 1


def _process(entry: ScheduledFundsRelease, worker_id: str, now: datetime, report: SweepReport) -> None:
    from bookings.services import lifecycle

    try:
        lifecycle.finalize_release(entry.booking_id)
    except (StateConflictError, BookingNotFound) as exc:
        logger.info("Skipping funds release for booking %s: %s", entry.booking_id, exc)
        _settle(entry, worker_id, status=Status.SKIPPED, last_error=str(exc), completed_at=now)
        report.skipped += 1
    except GatewayError as exc:
        _record_failure(entry, worker_id, now, str(exc), report)
    except Exception as exc:
        logger.exception("Unexpected error releasing funds for booking %s", entry.booking_id)
        _record_failure(entry, worker_id, now, repr(exc), report)
    else:
        _settle(entry, worker_id, status=Status.RELEASED, last_error="", completed_at=now)
        report.released += 1


def run_due_releases(*, now: datetime | None = None, worker_id: str | None = None, limit: int = 100) -> SweepReport:
    """Release every matured entry this worker manages to claim."""

    now = now or timezone.now()
    worker_id = worker_id or default_worker_id()
    report = SweepReport()

    due_ids = list(
        ScheduledFundsRelease.objects.filter(status=Status.SCHEDULED, next_attempt_at__lte=now)
        .filter(_lease_free(now))
        .order_by("next_attempt_at")
        .values_list("pk", flat=True)[:limit]
    )
    for entry_id in due_ids:
        if not _claim(entry_id, worker_id, now):
            report.contended += 1
            continue
        entry = ScheduledFundsRelease.objects.get(pk=entry_id)
        _process(entry, worker_id, now, report)

    if due_ids:
        logger.info(
            "Release sweep by %s: %s released, %s skipped, %s retrying, %s need attention, %s contended",
            worker_id,
            report.released,
            report.skipped,
            report.retried,
            report.needs_attention,
            report.contended,
        )
    return report
