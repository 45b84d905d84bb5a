import logging

from rest_framework import mixins, permissions, status, viewsets
from rest_framework.decorators import action
from rest_framework.response import Response

from bookings.exceptions import BookingError
from bookings.models import Booking
from bookings.permissions import IsBooker, IsBookingParty, IsClassProvider, IsParent, IsProvider
from bookings.serializers import (
    BookingCreateSerializer,
    BookingSerializer,
    CancelBookingSerializer,
    ConfirmPaymentSerializer,
    HeldFundsSerializer,
    PaymentIntentSerializer,
)
from bookings.services import lifecycle
from bookings.services.earnings import held_funds_for_provider
from bookings.states import COLLECTED_PAYMENT_STATUSES
from catalog.services.capacity import UnknownClassError
from payments.gateway import GatewayError

logger = logging.getLogger(__name__)


def booking_error_response(exc):
    """Translate lifecycle and gateway failures into ``{"kind", "detail"}`` responses."""

    if isinstance(exc, BookingError):
        return Response(exc.as_payload(), status=exc.status_code)
    if isinstance(exc, UnknownClassError):
        return Response({"kind": "class_not_found", "detail": str(exc)}, status=status.HTTP_404_NOT_FOUND)
    if isinstance(exc, GatewayError):
        if exc.transient:
            return Response(
                {"kind": "gateway_unavailable", "detail": exc.message, "retryable": True},
                status=status.HTTP_503_SERVICE_UNAVAILABLE,
            )
        return Response(
            {"kind": "payment_error", "detail": exc.message, "code": exc.code},
            status=status.HTTP_502_BAD_GATEWAY,
        )
    return None


class BookingViewSet(mixins.ListModelMixin, mixins.RetrieveModelMixin, viewsets.GenericViewSet):
    serializer_class = BookingSerializer
    permission_classes = [permissions.IsAuthenticated]
    filterset_fields = ["status", "payment_status", "class_session"]
    ordering_fields = ["created_at", "session_start"]

    action_permissions = {
        "create": [IsParent],
        "pay": [IsBooker],
        "confirm_payment": [IsBooker],
        "cancel": [IsBookingParty],
        "complete": [IsClassProvider],
        "no_show": [IsClassProvider],
        "held_funds": [IsProvider],
    }

    def get_permissions(self):
        extra = self.action_permissions.get(self.action, [IsBookingParty])
        return [permission() for permission in [*self.permission_classes, *extra]]

    def get_queryset(self):
        user = self.request.user
        queryset = Booking.objects.select_related(
            "class_session",
            "class_session__provider",
            "booker",
        ).prefetch_related("participants")
        if user.is_superuser:
            return queryset
        if user.is_provider:
            return queryset.filter(class_session__provider=user)
        return queryset.filter(booker=user)

    def handle_exception(self, exc):
        response = booking_error_response(exc)
        if response is not None:
            return response
        return super().handle_exception(exc)

    def _booking_response(self, booking, status_code=status.HTTP_200_OK):
        booking = self.get_queryset().get(pk=booking.pk)
        return Response(BookingSerializer(booking).data, status=status_code)

    def create(self, request, *args, **kwargs):
        serializer = BookingCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        booking = lifecycle.create_booking(
            class_id=data["class_id"],
            booker=request.user,
            participants=data["participants"],
            session_start=data.get("session_start"),
            special_requests=data.get("special_requests", ""),
        )
        return self._booking_response(booking, status.HTTP_201_CREATED)

    @action(detail=True, methods=["post"])
    def pay(self, request, pk=None):
        booking = self.get_object()
        handle = lifecycle.begin_payment(booking.pk)
        payload = PaymentIntentSerializer(
            {
                "booking_id": booking.pk,
                "intent_ref": handle.intent_ref,
                "client_secret": handle.client_secret,
                "status": handle.status,
                "amount_cents": booking.total_amount_cents,
                "currency": booking.currency,
            }
        )
        return Response(payload.data, status=status.HTTP_200_OK)

    @action(detail=True, methods=["post"], url_path="confirm-payment")
    def confirm_payment(self, request, pk=None):
        booking = self.get_object()
        serializer = ConfirmPaymentSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        booking = lifecycle.confirm_payment(
            booking.pk,
            serializer.validated_data.get("payment_method") or None,
        )
        if booking.payment_status not in COLLECTED_PAYMENT_STATUSES:
            return Response(
                {
                    "kind": "payment_incomplete",
                    "detail": "Payment not completed.",
                    "payment_status": booking.payment_status,
                },
                status=status.HTTP_400_BAD_REQUEST,
            )
        return self._booking_response(booking)

    @action(detail=True, methods=["post"])
    def cancel(self, request, pk=None):
        booking = self.get_object()
        serializer = CancelBookingSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        result = lifecycle.cancel_booking(booking.pk, serializer.validated_data.get("reason") or None)
        return self._booking_response(result.booking)

    @action(detail=True, methods=["post"])
    def complete(self, request, pk=None):
        booking = self.get_object()
        return self._booking_response(lifecycle.mark_class_completed(booking.pk))

    @action(detail=True, methods=["post"], url_path="no-show")
    def no_show(self, request, pk=None):
        booking = self.get_object()
        return self._booking_response(lifecycle.mark_no_show(booking.pk))

    @action(detail=False, methods=["get"], url_path="held-funds")
    def held_funds(self, request):
        summary = held_funds_for_provider(request.user)
        return Response(HeldFundsSerializer(summary).data)
