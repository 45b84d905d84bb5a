from rest_framework import serializers

from bookings.models import Booking, BookingParticipant
from bookings.services.lifecycle import MAX_PARTICIPANT_AGE


class BookingParticipantSerializer(serializers.ModelSerializer):
    class Meta:
        model = BookingParticipant
        fields = ["position", "name", "age"]
        read_only_fields = ["position"]


class ParticipantInputSerializer(serializers.Serializer):
    name = serializers.CharField(max_length=120)
    age = serializers.IntegerField(min_value=0, max_value=MAX_PARTICIPANT_AGE)


class BookingSerializer(serializers.ModelSerializer):
    class_title = serializers.CharField(source="class_session.title", read_only=True)
    provider_name = serializers.CharField(source="class_session.provider.public_name", read_only=True)
    booker_name = serializers.CharField(source="booker.public_name", read_only=True)
    participants = BookingParticipantSerializer(many=True, read_only=True)

    class Meta:
        model = Booking
        fields = [
            "id",
            "booking_number",
            "class_session",
            "class_title",
            "provider_name",
            "booker",
            "booker_name",
            "session_start",
            "participants",
            "special_requests",
            "base_price_cents",
            "service_fee_cents",
            "total_amount_cents",
            "currency",
            "status",
            "payment_status",
            "payment_intent_ref",
            "payment_date",
            "class_completed_at",
            "funds_release_date",
            "funds_released",
            "funds_released_at",
            "cancelled_at",
            "cancellation_reason",
            "refund_amount_cents",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields


class BookingCreateSerializer(serializers.Serializer):
    class_id = serializers.IntegerField()
    participants = ParticipantInputSerializer(many=True, allow_empty=False)
    session_start = serializers.DateTimeField(required=False)
    special_requests = serializers.CharField(required=False, allow_blank=True, default="")


class CancelBookingSerializer(serializers.Serializer):
    reason = serializers.CharField(required=False, allow_blank=True, max_length=500)


class ConfirmPaymentSerializer(serializers.Serializer):
    payment_method = serializers.CharField(required=False, allow_blank=True, max_length=255)


class PaymentIntentSerializer(serializers.Serializer):
    booking_id = serializers.UUIDField()
    payment_intent_id = serializers.CharField(source="intent_ref")
    client_secret = serializers.CharField(allow_null=True)
    status = serializers.CharField()
    amount_cents = serializers.IntegerField()
    currency = serializers.CharField()


class UpcomingReleaseSerializer(serializers.Serializer):
    booking_id = serializers.UUIDField()
    booking_number = serializers.CharField()
    class_title = serializers.CharField()
    amount_cents = serializers.IntegerField()
    release_at = serializers.DateTimeField()


class HeldFundsSerializer(serializers.Serializer):
    currency = serializers.CharField()
    held_cents = serializers.IntegerField()
    held_count = serializers.IntegerField()
    released_cents = serializers.IntegerField()
    released_count = serializers.IntegerField()
    upcoming = UpcomingReleaseSerializer(many=True)
