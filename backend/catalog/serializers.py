from rest_framework import serializers

from .models import ClassSession


class ClassSessionSerializer(serializers.ModelSerializer):
    provider_name = serializers.CharField(source="provider.public_name", read_only=True)
    spots_remaining = serializers.IntegerField(read_only=True)

    class Meta:
        model = ClassSession
        fields = [
            "id",
            "provider",
            "provider_name",
            "title",
            "description",
            "location",
            "session_start",
            "duration_minutes",
            "base_price_cents",
            "currency",
            "max_capacity",
            "booked_count",
            "spots_remaining",
        ]
        read_only_fields = fields
