import uuid

from django.conf import settings
from django.core.validators import MaxValueValidator, MinValueValidator
from django.db import models
from django.utils import timezone
from django.utils.crypto import get_random_string

from .states import BookingStatus, PaymentStatus, TERMINAL_STATUSES


def generate_booking_number() -> str:
    prefix = getattr(settings, "BOOKING_NUMBER_PREFIX", "BK")
    suffix = get_random_string(6, allowed_chars="ABCDEFGHJKLMNPQRSTUVWXYZ23456789")
    return f"{prefix}{timezone.now():%y%m%d}{suffix}"


class Booking(models.Model):
    """A parent's reservation of places on a class session, and its escrowed payment.

    Status fields are only changed by ``bookings.services.lifecycle``; the
    ``version`` column backs the compare-and-set writes in ``bookings.store``.
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    booking_number = models.CharField(max_length=32, unique=True, default=generate_booking_number)
    class_session = models.ForeignKey(
        "catalog.ClassSession",
        on_delete=models.PROTECT,
        related_name="bookings",
    )
    booker = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="bookings",
    )
    session_start = models.DateTimeField()
    special_requests = models.TextField(blank=True)

    base_price_cents = models.PositiveIntegerField()
    service_fee_cents = models.PositiveIntegerField()
    total_amount_cents = models.PositiveIntegerField()
    currency = models.CharField(max_length=10, default="gbp")

    status = models.CharField(max_length=12, choices=BookingStatus.choices, default=BookingStatus.PENDING)
    payment_status = models.CharField(
        max_length=24,
        choices=PaymentStatus.choices,
        default=PaymentStatus.UNPAID,
    )
    payment_intent_ref = models.CharField(max_length=255, null=True, blank=True, unique=True)
    charge_ref = models.CharField(max_length=255, null=True, blank=True)
    payment_date = models.DateTimeField(null=True, blank=True)

    class_completed_at = models.DateTimeField(null=True, blank=True)
    funds_release_date = models.DateTimeField(null=True, blank=True)
    funds_released = models.BooleanField(default=False)
    funds_released_at = models.DateTimeField(null=True, blank=True)

    cancelled_at = models.DateTimeField(null=True, blank=True)
    cancellation_reason = models.CharField(max_length=500, null=True, blank=True)
    refund_amount_cents = models.PositiveIntegerField(null=True, blank=True)

    version = models.PositiveIntegerField(default=0)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["booker", "class_session"], name="bookings_bo_booker__5c1f0e_idx"),
            models.Index(fields=["payment_status", "status"], name="bookings_bo_payment_8d2a41_idx"),
            models.Index(fields=["charge_ref"], name="bookings_bo_charge__3b7e95_idx"),
        ]

    def __str__(self):
        return f"{self.booking_number} ({self.class_session.title})"

    @property
    def participant_count(self) -> int:
        return self.participants.count()

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def holds_capacity(self) -> bool:
        """Whether this booking's participants still occupy places on the class."""
        return self.status != BookingStatus.CANCELLED and self.payment_status != PaymentStatus.FAILED


class BookingParticipant(models.Model):
    """A child (or accompanying adult) attending under a booking, in entry order."""

    booking = models.ForeignKey("Booking", on_delete=models.CASCADE, related_name="participants")
    position = models.PositiveIntegerField()
    name = models.CharField(max_length=120)
    age = models.PositiveIntegerField(validators=[MinValueValidator(0), MaxValueValidator(120)])

    class Meta:
        ordering = ["booking", "position"]
        unique_together = ("booking", "position")

    def __str__(self):
        return f"{self.name} ({self.age})"
