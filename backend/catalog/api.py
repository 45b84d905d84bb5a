from rest_framework import permissions, viewsets

from .models import ClassSession
from .serializers import ClassSessionSerializer


class ClassSessionViewSet(viewsets.ReadOnlyModelViewSet):
    """Bookable classes with their live remaining capacity."""

    serializer_class = ClassSessionSerializer
    permission_classes = [permissions.IsAuthenticated]
    filterset_fields = ["provider"]
    ordering_fields = ["session_start"]

    def get_queryset(self):
        return (
            ClassSession.objects.filter(is_active=True, is_published=True)
            .select_related("provider")
            .order_by("session_start")
        )
