from datetime import timedelta

from django.conf import settings
from django.core.management.base import BaseCommand, CommandError
from django.db import transaction
from django.utils import timezone

from accounts.models import User
from catalog.models import ClassSession


SEED_PASSWORD = "Classbook123!"
SUPERUSER_EMAIL = "admin@classbook.test"
SUPERUSER_PASSWORD = "AdminClassbook123!"


class Command(BaseCommand):
    help = "Populate the local development database with sample data."

    def handle(self, *args, **options):
        if not settings.DEBUG:
            raise CommandError("Refusing to seed data while DEBUG is False.")

        with transaction.atomic():
            self.stdout.write(self.style.MIGRATE_HEADING("Creating providers"))
            splash = self._ensure_user(
                email="hello@splashswim.test",
                first_name="Sam",
                last_name="Splash",
                user_type=User.PROVIDER,
                business_name="Splash Swim School",
            )
            studio = self._ensure_user(
                email="info@littlestudio.test",
                first_name="Ari",
                last_name="Studio",
                user_type=User.PROVIDER,
                business_name="Little Art Studio",
            )

            self.stdout.write(self.style.MIGRATE_HEADING("Creating parents"))
            self._ensure_user(
                email="parent@classbook.test",
                first_name="Priya",
                last_name="Parent",
                user_type=User.PARENT,
            )
            self._ensure_user(
                email="second.parent@classbook.test",
                first_name="Jordan",
                last_name="Parent",
                user_type=User.PARENT,
            )

            self.stdout.write(self.style.MIGRATE_HEADING("Creating classes"))
            start = timezone.now().replace(hour=10, minute=0, second=0, microsecond=0)
            self._ensure_class(
                provider=splash,
                title="Toddler Splash (2-4 years)",
                location="Riverside Leisure Centre",
                session_start=start + timedelta(days=3),
                base_price_cents=1200,
                max_capacity=8,
            )
            self._ensure_class(
                provider=splash,
                title="Stroke Improvers (5-8 years)",
                location="Riverside Leisure Centre",
                session_start=start + timedelta(days=5),
                base_price_cents=1500,
                max_capacity=6,
            )
            self._ensure_class(
                provider=studio,
                title="Messy Painting Morning",
                location="Little Art Studio, High Street",
                session_start=start + timedelta(days=1, hours=2),
                base_price_cents=900,
                max_capacity=2,
            )

            self._ensure_superuser()

        self.stdout.write(self.style.SUCCESS(f"Seed complete. Password for seeded users: {SEED_PASSWORD}"))

    def _ensure_user(
        self,
        email: str,
        first_name: str,
        last_name: str,
        user_type: str,
        business_name: str = "",
    ) -> User:
        user, created = User.objects.get_or_create(
            email=email,
            defaults={
                "username": email,
                "first_name": first_name,
                "last_name": last_name,
                "display_name": f"{first_name} {last_name}",
                "user_type": user_type,
                "business_name": business_name,
            },
        )
        if created:
            user.set_password(SEED_PASSWORD)
            user.save()
            self.stdout.write(f"  created {email}")
        return user

    def _ensure_class(self, *, provider: User, title: str, **fields) -> ClassSession:
        class_session = ClassSession.objects.filter(provider=provider, title=title).first()
        if class_session is None:
            class_session = ClassSession(provider=provider, title=title, is_published=True, **fields)
            class_session.save()
            self.stdout.write(f"  created {title}")
        return class_session

    def _ensure_superuser(self) -> None:
        if User.objects.filter(email=SUPERUSER_EMAIL).exists():
            return
        User.objects.create_superuser(
            username=SUPERUSER_EMAIL,
            email=SUPERUSER_EMAIL,
            password=SUPERUSER_PASSWORD,
        )
        self.stdout.write(f"  created superuser {SUPERUSER_EMAIL}")
