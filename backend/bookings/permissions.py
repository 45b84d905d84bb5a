from rest_framework.permissions import BasePermission


class IsParent(BasePermission):
    """Only parent accounts may book classes."""

    message = "Only parent accounts can book classes."

    def has_permission(self, request, view):
        return bool(request.user and request.user.is_authenticated and request.user.is_parent)


class IsProvider(BasePermission):
    message = "Only class providers can do this."

    def has_permission(self, request, view):
        return bool(request.user and request.user.is_authenticated and request.user.is_provider)


class IsClassProvider(BasePermission):
    """
    Allow access only to the provider running the booking's class.
    Superusers automatically pass.
    """

    message = "Only the class provider can do this."

    def has_object_permission(self, request, view, obj):
        if request.user.is_superuser:
            return True
        return obj.class_session.provider_id == request.user.pk


class IsBookingParty(BasePermission):
    """The booker or the class provider."""

    def has_object_permission(self, request, view, obj):
        if request.user.is_superuser:
            return True
        return obj.booker_id == request.user.pk or obj.class_session.provider_id == request.user.pk


class IsBooker(BasePermission):
    message = "Only the booker can do this."

    def has_object_permission(self, request, view, obj):
        return obj.booker_id == request.user.pk
