import re

from django.contrib.auth import get_user_model
from rest_framework import serializers
from rest_framework_simplejwt.serializers import TokenObtainPairSerializer

User = get_user_model()

CONNECTED_ACCOUNT_PATTERN = re.compile(r"^acct_[A-Za-z0-9]+$")


class UserSerializer(serializers.ModelSerializer):
    public_name = serializers.CharField(read_only=True)
    has_payout_account = serializers.SerializerMethodField()

    class Meta:
        model = User
        fields = [
            "id",
            "email",
            "first_name",
            "last_name",
            "display_name",
            "public_name",
            "user_type",
            "business_name",
            "has_payout_account",
        ]
        read_only_fields = fields

    def get_has_payout_account(self, obj) -> bool:
        return obj.is_provider and bool(obj.stripe_account_id)


class RegisterSerializer(serializers.ModelSerializer):
    """Sign up as a parent (books classes) or a provider (runs them)."""

    password = serializers.CharField(write_only=True, min_length=8)
    user_type = serializers.ChoiceField(choices=User.USER_TYPES, default=User.PARENT)

    class Meta:
        model = User
        fields = [
            "email",
            "password",
            "first_name",
            "last_name",
            "display_name",
            "user_type",
            "phone_number",
            "business_name",
        ]

    def validate_email(self, value: str) -> str:
        email = value.lower()
        if User.objects.filter(email__iexact=email).exists():
            raise serializers.ValidationError("A user with this email already exists.")
        return email

    def validate(self, attrs):
        business_name = (attrs.get("business_name") or "").strip()
        if attrs.get("user_type") == User.PROVIDER and not business_name:
            raise serializers.ValidationError({"business_name": "Providers must give a business name."})
        if attrs.get("user_type") != User.PROVIDER and business_name:
            raise serializers.ValidationError({"business_name": "Only providers have a business name."})
        attrs["business_name"] = business_name
        return attrs

    def create(self, validated_data):
        email = validated_data.pop("email")
        user = User.objects.create_user(
            username=email,
            email=email,
            password=validated_data.pop("password"),
            **validated_data,
        )
        if not user.display_name:
            user.display_name = user.get_full_name() or email
            user.save(update_fields=["display_name"])
        return user


class ProfileSerializer(serializers.ModelSerializer):
    """Editable profile fields; providers also manage their payout account here."""

    stripe_account_id = serializers.CharField(required=False, allow_blank=True, write_only=True)

    class Meta:
        model = User
        fields = ["first_name", "last_name", "display_name", "phone_number", "business_name", "stripe_account_id"]

    def validate_business_name(self, value: str) -> str:
        value = value.strip()
        if self.instance.is_provider and not value:
            raise serializers.ValidationError("Providers must give a business name.")
        if not self.instance.is_provider and value:
            raise serializers.ValidationError("Only providers have a business name.")
        return value

    def validate_stripe_account_id(self, value: str) -> str:
        if not self.instance.is_provider:
            raise serializers.ValidationError("Only providers receive payouts.")
        if value and not CONNECTED_ACCOUNT_PATTERN.match(value):
            raise serializers.ValidationError("Expected a connected account id like acct_123.")
        return value

    def to_representation(self, instance):
        return UserSerializer(instance).data


class EmailTokenObtainPairSerializer(TokenObtainPairSerializer):
    """Log in with ``email`` and ``password``; the response carries the user profile."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.fields.pop(self.username_field, None)
        self.fields["email"] = serializers.EmailField()

    def validate(self, attrs):
        attrs[self.username_field] = attrs.pop("email").lower()
        data = super().validate(attrs)
        data["user"] = UserSerializer(self.user).data
        return data
