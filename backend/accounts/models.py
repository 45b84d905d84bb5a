from django.contrib.auth.models import AbstractUser
from django.db import models


class User(AbstractUser):
    """Marketplace account: either a parent who books classes or a class provider."""

    PARENT = "PARENT"
    PROVIDER = "PROVIDER"
    USER_TYPES = [
        (PARENT, "Parent"),
        (PROVIDER, "Provider"),
    ]

    user_type = models.CharField(max_length=12, choices=USER_TYPES, default=PARENT)
    display_name = models.CharField(max_length=120, blank=True)
    phone_number = models.CharField(max_length=30, blank=True)
    business_name = models.CharField(max_length=200, blank=True)
    stripe_account_id = models.CharField(max_length=255, blank=True)

    @property
    def is_parent(self) -> bool:
        return self.user_type == self.PARENT

    @property
    def is_provider(self) -> bool:
        return self.user_type == self.PROVIDER

    @property
    def public_name(self) -> str:
        if self.is_provider and self.business_name:
            return self.business_name
        return self.display_name or self.get_full_name() or self.email
