from django.conf import settings
from django.core.exceptions import ValidationError
from django.core.validators import MinValueValidator
from django.db import models


class ClassSession(models.Model):
    """A single scheduled class a provider offers, with a finite number of places."""

    provider = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="class_sessions",
    )
    title = models.CharField(max_length=200)
    description = models.TextField(blank=True)
    location = models.CharField(max_length=200, blank=True)
    session_start = models.DateTimeField()
    duration_minutes = models.PositiveIntegerField(default=60)
    base_price_cents = models.PositiveIntegerField(default=0)
    currency = models.CharField(max_length=10, default="gbp")
    max_capacity = models.PositiveIntegerField(validators=[MinValueValidator(1)])
    # Owned by catalog.services.capacity; never assign directly.
    booked_count = models.PositiveIntegerField(default=0)
    is_active = models.BooleanField(default=True)
    is_published = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["session_start", "id"]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(max_capacity__gte=1),
                name="class_session_capacity_positive",
            ),
            models.CheckConstraint(
                condition=models.Q(booked_count__lte=models.F("max_capacity")),
                name="class_session_not_overbooked",
            ),
        ]

    def __str__(self):
        return f"{self.title} @ {self.session_start:%Y-%m-%d %H:%M}"

    @property
    def spots_remaining(self) -> int:
        return max(self.max_capacity - self.booked_count, 0)

    @property
    def is_bookable(self) -> bool:
        return self.is_active and self.is_published

    def clean(self):
        super().clean()
        if self.max_capacity is not None and self.booked_count > self.max_capacity:
            raise ValidationError({"booked_count": "Booked places cannot exceed the class capacity."})

    def save(self, *args, **kwargs):
        self.full_clean()
        return super().save(*args, **kwargs)
