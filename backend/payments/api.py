import logging

from django.db import DatabaseError
from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import APIView

from bookings.exceptions import StaleBookingError
from payments.gateway import GatewayError
from payments.services.webhooks import WebhookNotConfigured, WebhookSignatureInvalid, ingest

logger = logging.getLogger(__name__)


class StripeWebhookView(APIView):
    """Receive Stripe payment webhook events."""

    permission_classes: list = []
    authentication_classes: list = []

    def post(self, request, *args, **kwargs):
        payload = request.body
        sig_header = request.META.get("HTTP_STRIPE_SIGNATURE")

        try:
            result = ingest(payload, sig_header)
        except WebhookNotConfigured:
            logger.error("Stripe webhook secret not configured.")
            return Response(status=status.HTTP_500_INTERNAL_SERVER_ERROR)
        except WebhookSignatureInvalid:
            return Response(status=status.HTTP_400_BAD_REQUEST)
        except (DatabaseError, StaleBookingError) as exc:
            logger.exception("Transient failure handling Stripe webhook: %s", exc)
            return Response(status=status.HTTP_503_SERVICE_UNAVAILABLE)
        except GatewayError as exc:
            if not exc.transient:
                raise
            logger.warning("Payment gateway unavailable while handling Stripe webhook: %s", exc)
            return Response(status=status.HTTP_503_SERVICE_UNAVAILABLE)

        return Response(
            {"outcome": result.outcome.value, "event_id": result.event_id},
            status=status.HTTP_200_OK,
        )
