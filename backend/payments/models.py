from django.db import models


class PaymentTransaction(models.Model):
    """Audit record of every gateway side effect taken for a booking."""

    class Kind(models.TextChoices):
        INTENT = "INTENT", "Payment intent"
        REFUND = "REFUND", "Refund"
        PAYOUT = "PAYOUT", "Provider payout"

    booking = models.ForeignKey('bookings.Booking', on_delete=models.CASCADE, related_name='transactions')
    kind = models.CharField(max_length=10, choices=Kind.choices)
    reference = models.CharField(max_length=255)
    amount_cents = models.PositiveIntegerField()
    currency = models.CharField(max_length=10, default='gbp')
    status = models.CharField(max_length=30)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['created_at']

    def __str__(self):
        return f"{self.kind} {self.reference} ({self.amount_cents} {self.currency})"


class ProcessedWebhookEvent(models.Model):
    """One row per gateway event id already applied; guards webhook replays."""

    class Outcome(models.TextChoices):
        PROCESSED = "PROCESSED", "Processed"
        UNRECOGNIZED = "UNRECOGNIZED", "Unrecognized"
        IGNORED = "IGNORED", "Ignored"

    event_id = models.CharField(max_length=255, unique=True)
    event_type = models.CharField(max_length=100)
    outcome = models.CharField(max_length=20, choices=Outcome.choices)
    processed_at = models.DateTimeField(auto_now_add=True, db_index=True)

    def __str__(self):
        return f"{self.event_id} ({self.event_type})"


class ScheduledFundsRelease(models.Model):
    """Durable entry telling the release sweep when a booking's held funds go to the provider."""

    class Status(models.TextChoices):
        SCHEDULED = "SCHEDULED", "Scheduled"
        RELEASED = "RELEASED", "Released"
        SKIPPED = "SKIPPED", "Skipped"
        NEEDS_ATTENTION = "NEEDS_ATTENTION", "Needs attention"

    booking = models.OneToOneField('bookings.Booking', on_delete=models.CASCADE, related_name='funds_release')
    release_at = models.DateTimeField()
    status = models.CharField(max_length=20, choices=Status.choices, default=Status.SCHEDULED)
    attempts = models.PositiveIntegerField(default=0)
    next_attempt_at = models.DateTimeField()
    lease_owner = models.CharField(max_length=100, blank=True)
    lease_expires_at = models.DateTimeField(null=True, blank=True)
    last_error = models.TextField(blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['next_attempt_at']
        indexes = [
            models.Index(fields=['status', 'next_attempt_at'], name='payments_sc_status_1d9c02_idx'),
        ]

    def __str__(self):
        return f"Release for booking {self.booking_id} at {self.release_at:%Y-%m-%d %H:%M} ({self.status})"
