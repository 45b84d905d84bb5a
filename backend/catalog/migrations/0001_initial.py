import django.core.validators
import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="ClassSession",
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
                ("title", models.CharField(max_length=200)),
                ("description", models.TextField(blank=True)),
                ("location", models.CharField(blank=True, max_length=200)),
                ("session_start", models.DateTimeField()),
                ("duration_minutes", models.PositiveIntegerField(default=60)),
                ("base_price_cents", models.PositiveIntegerField(default=0)),
                ("currency", models.CharField(default="gbp", max_length=10)),
                (
                    "max_capacity",
                    models.PositiveIntegerField(
                        validators=[django.core.validators.MinValueValidator(1)]
                    ),
                ),
                ("booked_count", models.PositiveIntegerField(default=0)),
                ("is_active", models.BooleanField(default=True)),
                ("is_published", models.BooleanField(default=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "provider",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="class_sessions",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "ordering": ["session_start", "id"],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(max_capacity__gte=1),
                        name="class_session_capacity_positive",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(booked_count__lte=models.F("max_capacity")),
                        name="class_session_not_overbooked",
                    ),
                ],
            },
        ),
    ]
