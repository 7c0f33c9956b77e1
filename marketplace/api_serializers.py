from django.contrib.auth import authenticate
from rest_framework import serializers

from .mappers import PAYMENT_TYPES
from .models import Job, QuoteTemplate


class LoginSerializer(serializers.Serializer):
    username = serializers.CharField(max_length=150)
    password = serializers.CharField(write_only=True, trim_whitespace=False, style={"input_type": "password"})

    def validate(self, attrs):
        request = self.context.get("request")
        username = (attrs.get("username") or "").strip()
        password = attrs.get("password") or ""

        user = authenticate(request=request, username=username, password=password)
        if user is None:
            raise serializers.ValidationError("Invalid username or password.")
        if not user.is_active:
            raise serializers.ValidationError("This account is disabled.")

        attrs["user"] = user
        attrs["username"] = username
        return attrs


class LocationField(serializers.JSONField):
    """A bare postcode string or a ``{postcode, town, address, latitude, longitude}`` object."""

    def to_internal_value(self, data):
        value = super().to_internal_value(data)
        if value is None or isinstance(value, (str, dict)):
            return value
        raise serializers.ValidationError("Location must be a postcode or an object.")


class JobWriteSerializer(serializers.Serializer):
    title = serializers.CharField(max_length=200)
    description = serializers.CharField(required=False, allow_blank=True)
    service_type = serializers.CharField(max_length=120, required=False, allow_blank=True)
    skills = serializers.ListField(child=serializers.CharField(max_length=120), required=False)
    location = LocationField(required=False, allow_null=True)
    city_slug = serializers.CharField(max_length=80, required=False, allow_blank=True)
    urgency = serializers.ChoiceField(choices=Job.URGENCY_CHOICES, required=False)
    budget = serializers.DecimalField(max_digits=10, decimal_places=2, required=False, allow_null=True, min_value=0)
    scheduled_date = serializers.DateTimeField(required=False, allow_null=True)
    customer_contact_name = serializers.CharField(max_length=120, required=False, allow_blank=True)
    customer_contact_email = serializers.EmailField(required=False, allow_blank=True)
    customer_contact_phone = serializers.CharField(max_length=20, required=False, allow_blank=True)

    def validate_title(self, value):
        title = (value or "").strip()
        if len(title) < 3:
            raise serializers.ValidationError("Title must be at least 3 characters.")
        return title


class QuoteWriteSerializer(serializers.Serializer):
    price = serializers.DecimalField(max_digits=10, decimal_places=2, min_value=0)
    deposit_amount = serializers.DecimalField(max_digits=10, decimal_places=2, required=False, allow_null=True)
    description = serializers.CharField(required=False, allow_blank=True)
    estimated_duration = serializers.CharField(max_length=80, required=False, allow_blank=True)
    available_date = serializers.DateTimeField(required=False, allow_null=True)
    line_items = serializers.ListField(child=serializers.DictField(), required=False)
    template_ids = serializers.ListField(child=serializers.CharField(max_length=40), required=False)

    def validate(self, attrs):
        deposit = attrs.get("deposit_amount")
        if deposit is not None and deposit > attrs["price"]:
            raise serializers.ValidationError({"deposit_amount": "Deposit cannot exceed the quoted price."})
        return attrs


class CancelJobSerializer(serializers.Serializer):
    reason = serializers.CharField(max_length=240, required=False, allow_blank=True)


class PaymentSerializer(serializers.Serializer):
    type = serializers.ChoiceField(choices=[(value, value) for value in PAYMENT_TYPES])
    amount = serializers.DecimalField(max_digits=10, decimal_places=2, min_value=0)
    reference = serializers.CharField(max_length=120)
    paid_at = serializers.DateTimeField(required=False, allow_null=True)


class SavedJobSerializer(serializers.Serializer):
    job_id = serializers.IntegerField(min_value=1)


class QuoteTemplateSerializer(serializers.Serializer):
    label = serializers.CharField(max_length=120)
    category = serializers.ChoiceField(choices=QuoteTemplate.CATEGORY_CHOICES)
    description = serializers.CharField(max_length=500)
    unit = serializers.ChoiceField(choices=QuoteTemplate.UNIT_CHOICES)
    default_quantity = serializers.DecimalField(max_digits=8, decimal_places=2)
    unit_price = serializers.DecimalField(max_digits=10, decimal_places=2, min_value=0)
    vat_rate = serializers.DecimalField(max_digits=5, decimal_places=2, min_value=0, required=False, allow_null=True)
    warranty_text = serializers.CharField(max_length=240, required=False, allow_blank=True)
    is_archived = serializers.BooleanField(required=False)

    def validate_default_quantity(self, value):
        if value <= 0:
            raise serializers.ValidationError("Default quantity must be positive.")
        return value
