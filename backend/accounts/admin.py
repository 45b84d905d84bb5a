from django.contrib import admin
from django.contrib.auth.admin import UserAdmin

from .models import User


@admin.register(User)
class MarketplaceUserAdmin(UserAdmin):
    list_display = ("email", "display_name", "user_type", "business_name", "is_staff")
    list_filter = ("user_type", "is_staff", "is_active")
    search_fields = ("email", "first_name", "last_name", "business_name")
    fieldsets = UserAdmin.fieldsets + (
        (
            "Marketplace",
            {"fields": ("user_type", "display_name", "phone_number", "business_name", "stripe_account_id")},
        ),
    )
