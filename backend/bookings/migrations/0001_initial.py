import uuid

import bookings.models
import django.core.validators
import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
        ("catalog", "0001_initial"),
    ]

    operations = [
        migrations.CreateModel(
            name="Booking",
            fields=[
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4,
                        editable=False,
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                (
                    "booking_number",
                    models.CharField(
                        default=bookings.models.generate_booking_number,
                        max_length=32,
                        unique=True,
                    ),
                ),
                ("session_start", models.DateTimeField()),
                ("special_requests", models.TextField(blank=True)),
                ("base_price_cents", models.PositiveIntegerField()),
                ("service_fee_cents", models.PositiveIntegerField()),
                ("total_amount_cents", models.PositiveIntegerField()),
                ("currency", models.CharField(default="gbp", max_length=10)),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("PENDING", "Pending"),
                            ("CONFIRMED", "Confirmed"),
                            ("CANCELLED", "Cancelled"),
                            ("COMPLETED", "Completed"),
                            ("NO_SHOW", "No show"),
                        ],
                        default="PENDING",
                        max_length=12,
                    ),
                ),
                (
                    "payment_status",
                    models.CharField(
                        choices=[
                            ("UNPAID", "Unpaid"),
                            ("AUTHORIZATION_PENDING", "Authorization pending"),
                            ("HELD", "Held"),
                            ("PAID", "Paid"),
                            ("FAILED", "Failed"),
                            ("REFUNDED", "Refunded"),
                        ],
                        default="UNPAID",
                        max_length=24,
                    ),
                ),
                (
                    "payment_intent_ref",
                    models.CharField(blank=True, max_length=255, null=True, unique=True),
                ),
                ("charge_ref", models.CharField(blank=True, max_length=255, null=True)),
                ("payment_date", models.DateTimeField(blank=True, null=True)),
                ("class_completed_at", models.DateTimeField(blank=True, null=True)),
                ("funds_release_date", models.DateTimeField(blank=True, null=True)),
                ("funds_released", models.BooleanField(default=False)),
                ("funds_released_at", models.DateTimeField(blank=True, null=True)),
                ("cancelled_at", models.DateTimeField(blank=True, null=True)),
                ("cancellation_reason", models.CharField(blank=True, max_length=500, null=True)),
                ("refund_amount_cents", models.PositiveIntegerField(blank=True, null=True)),
                ("version", models.PositiveIntegerField(default=0)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "booker",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="bookings",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "class_session",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="bookings",
                        to="catalog.classsession",
                    ),
                ),
            ],
            options={
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(fields=["booker", "class_session"], name="bookings_bo_booker__5c1f0e_idx"),
                    models.Index(fields=["payment_status", "status"], name="bookings_bo_payment_8d2a41_idx"),
                    models.Index(fields=["charge_ref"], name="bookings_bo_charge__3b7e95_idx"),
                ],
            },
        ),
        migrations.CreateModel(
            name="BookingParticipant",
            fields=[
                (
                    "id",
                    models.BigAutoField(
                        auto_created=True,
                        primary_key=True,
                        serialize=False,
                        verbose_name="ID",
                    ),
                ),
                ("position", models.PositiveIntegerField()),
                ("name", models.CharField(max_length=120)),
                (
                    "age",
                    models.PositiveIntegerField(
                        validators=[
                            django.core.validators.MinValueValidator(0),
                            django.core.validators.MaxValueValidator(120),
                        ]
                    ),
                ),
                (
                    "booking",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="participants",
                        to="bookings.booking",
                    ),
                ),
            ],
            options={
                "ordering": ["booking", "position"],
                "unique_together": {("booking", "position")},
            },
        ),
    ]
