from django.contrib import admin

from .models import Booking, BookingParticipant


class BookingParticipantInline(admin.TabularInline):
    model = BookingParticipant
    extra = 0


@admin.register(Booking)
class BookingAdmin(admin.ModelAdmin):
    list_display = ("booking_number", "class_session", "booker", "status", "payment_status", "total_amount_cents")
    list_filter = ("status", "payment_status", "funds_released")
    search_fields = ("booking_number", "class_session__title", "booker__email", "payment_intent_ref")
    readonly_fields = (
        "status",
        "payment_status",
        "payment_intent_ref",
        "charge_ref",
        "funds_released",
        "funds_released_at",
        "version",
    )
    inlines = [BookingParticipantInline]
