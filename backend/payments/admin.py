from django.contrib import admin

from .models import PaymentTransaction, ProcessedWebhookEvent, ScheduledFundsRelease


@admin.register(PaymentTransaction)
class PaymentTransactionAdmin(admin.ModelAdmin):
    list_display = ("booking", "kind", "reference", "amount_cents", "currency", "status", "created_at")
    list_filter = ("kind", "status")
    search_fields = ("reference", "booking__booking_number")


@admin.register(ProcessedWebhookEvent)
class ProcessedWebhookEventAdmin(admin.ModelAdmin):
    list_display = ("event_id", "event_type", "outcome", "processed_at")
    list_filter = ("event_type", "outcome")
    search_fields = ("event_id",)


@admin.register(ScheduledFundsRelease)
class ScheduledFundsReleaseAdmin(admin.ModelAdmin):
    list_display = ("booking", "release_at", "status", "attempts", "next_attempt_at", "lease_owner")
    list_filter = ("status",)
    search_fields = ("booking__booking_number",)
    readonly_fields = ("lease_owner", "lease_expires_at", "last_error", "completed_at")
