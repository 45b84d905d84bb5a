"""
Per-class admission ledger.

``ClassSession.booked_count`` is the only value that concurrent booking
attempts race on, so every change to it goes through a single conditional
UPDATE statement. The database evaluates the capacity check and the
increment together, which keeps admission linearizable per class without
application-level locks.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from django.db.models import F, IntegerField
from django.db.models.functions import Greatest

from catalog.models import ClassSession

logger = logging.getLogger(__name__)


class UnknownClassError(LookupError):
    """Raised when the ledger is asked about a class session that does not exist."""

    def __init__(self, class_id):
        super().__init__(f"Class {class_id} does not exist.")
        self.class_id = class_id


@dataclass(frozen=True)
class AdmissionResult:
    admitted: bool
    class_id: int
    participant_count: int


def _ensure_positive(participant_count: int) -> None:
    if participant_count < 1:
        raise ValueError("participant_count must be at least 1.")


def try_admit(class_id: int, participant_count: int) -> AdmissionResult:
    """Reserve places for ``participant_count`` people if the class has room."""

    _ensure_positive(participant_count)
    updated = ClassSession.objects.filter(
        pk=class_id,
        booked_count__lte=F("max_capacity") - participant_count,
    ).update(booked_count=F("booked_count") + participant_count)

    if updated:
        logger.debug("Admitted %s participant(s) to class %s", participant_count, class_id)
        return AdmissionResult(admitted=True, class_id=class_id, participant_count=participant_count)

    if not ClassSession.objects.filter(pk=class_id).exists():
        raise UnknownClassError(class_id)

    logger.info("Class %s is full; rejected %s participant(s)", class_id, participant_count)
    return AdmissionResult(admitted=False, class_id=class_id, participant_count=participant_count)


def release(class_id: int, participant_count: int) -> None:
    """Give places back to the class. The count never drops below zero."""

    _ensure_positive(participant_count)
    updated = ClassSession.objects.filter(pk=class_id).update(
        booked_count=Greatest(F("booked_count") - participant_count, 0, output_field=IntegerField())
    )
    if not updated:
        raise UnknownClassError(class_id)
    logger.debug("Released %s participant(s) from class %s", participant_count, class_id)


def booked_count(class_id: int) -> int:
    try:
        return ClassSession.objects.values_list("booked_count", flat=True).get(pk=class_id)
    except ClassSession.DoesNotExist:
        raise UnknownClassError(class_id) from None
