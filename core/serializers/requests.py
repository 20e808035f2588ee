import bleach
from rest_framework import serializers

from core.models import ServiceRequest


def _clean(v):
    return bleach.clean((v or '').strip(), strip=True)


class RequestCreateSerializer(serializers.Serializer):
    title = serializers.CharField(min_length=5, max_length=100)
    description = serializers.CharField(min_length=10, max_length=1000)
    serviceType = serializers.ChoiceField(choices=[c for c, _ in ServiceRequest.SERVICE_TYPE_CHOICES])
    address = serializers.CharField(min_length=10, max_length=255)
    scheduledDate = serializers.DateTimeField(required=False, allow_null=True)
    estimatedDuration = serializers.IntegerField(min_value=1, max_value=24, required=False, allow_null=True)
    urgencyLevel = serializers.ChoiceField(choices=[c for c, _ in ServiceRequest.URGENCY_CHOICES], required=False)
    specialRequirements = serializers.CharField(max_length=500, required=False, allow_blank=True)
    budget = serializers.DecimalField(max_digits=10, decimal_places=2, min_value=0, required=False, allow_null=True)
    contactPhone = serializers.CharField(max_length=15, required=False, allow_blank=True)
    notes = serializers.CharField(max_length=500, required=False, allow_blank=True)

    FIELD_MAP = {
        'title': 'title',
        'description': 'description',
        'serviceType': 'service_type',
        'address': 'address',
        'scheduledDate': 'scheduled_date',
        'estimatedDuration': 'estimated_duration',
        'urgencyLevel': 'urgency_level',
        'specialRequirements': 'special_requirements',
        'budget': 'budget',
        'contactPhone': 'contact_phone',
        'notes': 'notes',
    }

    def validate_title(self, v):
        v = _clean(v)
        if len(v) < 5:
            raise serializers.ValidationError('Title must be at least 5 characters long.')
        return v

    def validate_description(self, v):
        return _clean(v)

    def validate_address(self, v):
        return _clean(v)

    def validate_specialRequirements(self, v):
        return _clean(v)

    def validate_contactPhone(self, v):
        v = _clean(v)
        if v and len(v) < 10:
            raise serializers.ValidationError('Phone number must be at least 10 digits.')
        return v

    def validate_notes(self, v):
        return _clean(v)

    def to_model_fields(self) -> dict:
        return {self.FIELD_MAP[k]: v for k, v in self.validated_data.items() if k in self.FIELD_MAP}


class RequestUpdateSerializer(RequestCreateSerializer):
    """Partial edit of a pending request; every field is optional."""

    def __init__(self, *args, **kwargs):
        kwargs.setdefault('partial', True)
        super().__init__(*args, **kwargs)


class RequestListQuerySerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=[c for c, _ in ServiceRequest.STATUS_CHOICES], required=False)
    page = serializers.IntegerField(min_value=1, required=False)
    pageSize = serializers.IntegerField(min_value=1, max_value=100, required=False)


class RequestStatusSerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=[c for c, _ in ServiceRequest.STATUS_CHOICES])
    cancellationReason = serializers.CharField(max_length=255, required=False, allow_blank=True)

    def validate_cancellationReason(self, v):
        return _clean(v)
