from rest_framework import serializers

from core.models import Application


class ApplicationCreateSerializer(serializers.Serializer):
    requestId = serializers.IntegerField(min_value=1)
    price = serializers.DecimalField(max_digits=10, decimal_places=2, min_value=0)
    estimatedTime = serializers.IntegerField(min_value=0)


class ApplicationUpdateSerializer(serializers.Serializer):
    price = serializers.DecimalField(max_digits=10, decimal_places=2, min_value=0, required=False)
    estimatedTime = serializers.IntegerField(min_value=0, required=False)

    def validate(self, attrs):
        if not attrs:
            raise serializers.ValidationError('Nothing to update.')
        return attrs


class ApplicationStatusSerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=[Application.STATUS_ACCEPTED, Application.STATUS_REJECTED])


class ApplicationListQuerySerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=[c for c, _ in Application.STATUS_CHOICES], required=False)
