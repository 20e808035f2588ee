import bleach
from rest_framework import serializers

from core.models import User


class UserListQuerySerializer(serializers.Serializer):
    role = serializers.ChoiceField(choices=[c for c, _ in User.ROLE_CHOICES], required=False)
    verificationStatus = serializers.ChoiceField(choices=[c for c, _ in User.VERIFICATION_CHOICES], required=False)
    page = serializers.IntegerField(min_value=1, required=False)
    pageSize = serializers.IntegerField(min_value=1, max_value=200, required=False)


class VerificationSerializer(serializers.Serializer):
    verificationStatus = serializers.ChoiceField(choices=[c for c, _ in User.VERIFICATION_CHOICES])
    reason = serializers.CharField(required=False, allow_blank=True, max_length=255)

    def validate_reason(self, v):
        return bleach.clean((v or '').strip(), strip=True)


class ProfileUpdateSerializer(serializers.Serializer):
    name = serializers.CharField(required=False, max_length=150)
    phone = serializers.CharField(required=False, allow_blank=True, max_length=32)

    def validate_name(self, v):
        v = bleach.clean((v or '').strip(), strip=True)
        if len(v) < 2:
            raise serializers.ValidationError('Name must be at least 2 characters long.')
        return v

    def validate_phone(self, v):
        return bleach.clean((v or '').strip(), strip=True)
