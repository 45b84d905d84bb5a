from django.contrib import admin

from .models import ClassSession


@admin.register(ClassSession)
class ClassSessionAdmin(admin.ModelAdmin):
    list_display = ("title", "provider", "session_start", "booked_count", "max_capacity", "is_published")
    list_filter = ("is_active", "is_published")
    search_fields = ("title", "location", "provider__email", "provider__business_name")
    readonly_fields = ("booked_count",)
