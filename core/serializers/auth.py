import bleach
from django.contrib.auth.password_validation import validate_password
from django.core.exceptions import ValidationError as DjangoValidationError
from rest_framework import serializers

from core.models import User


class LoginSerializer(serializers.Serializer):
    username = serializers.CharField()
    password = serializers.CharField()

    def validate_username(self, v):
        v = (v or '').strip()
        if not v:
            raise serializers.ValidationError('Username is required.')
        return v

    def validate_password(self, v):
        if not v:
            raise serializers.ValidationError('Password is required.')
        return v


class RegisterSerializer(serializers.Serializer):
    username = serializers.CharField(min_length=3, max_length=150)
    password = serializers.CharField(write_only=True)
    name = serializers.CharField(max_length=150)
    role = serializers.ChoiceField(choices=[User.ROLE_PATIENT, User.ROLE_NURSE])
    phone = serializers.CharField(required=False, allow_blank=True, max_length=32)

    def validate_username(self, v):
        v = (v or '').strip()
        if User.objects.filter(username__iexact=v).exists():
            raise serializers.ValidationError('This username is already taken.')
        return v

    def validate_name(self, v):
        v = bleach.clean((v or '').strip(), strip=True)
        if len(v) < 2:
            raise serializers.ValidationError('Name must be at least 2 characters long.')
        return v

    def validate_phone(self, v):
        return bleach.clean((v or '').strip(), strip=True)

    def validate(self, attrs):
        try:
            validate_password(attrs['password'], User(username=attrs.get('username', '')))
        except DjangoValidationError as e:
            raise serializers.ValidationError({'password': list(e.messages)})
        return attrs
