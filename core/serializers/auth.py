from core.sanitize import clean_text
from rest_framework import serializers

from core.models import BLOOD_GROUPS


def _clean(v):
    return clean_text(v)


class RegisterSerializer(serializers.Serializer):
    name = serializers.CharField(max_length=50)
    email = serializers.EmailField()
    password = serializers.CharField(write_only=True, trim_whitespace=False)
    # donor
    bloodGroup = serializers.ChoiceField(choices=BLOOD_GROUPS, required=False)
    phone = serializers.CharField(required=False, allow_blank=True, max_length=20)
    latitude = serializers.FloatField(required=False, allow_null=True, min_value=-90, max_value=90)
    longitude = serializers.FloatField(required=False, allow_null=True, min_value=-180, max_value=180)
    # hospital
    hospitalName = serializers.CharField(required=False, max_length=100)
    address = serializers.CharField(required=False, max_length=200)
    licenseNumber = serializers.CharField(required=False, max_length=64)
    contactNumber = serializers.CharField(required=False, allow_blank=True, max_length=20)

    def validate_name(self, v):
        v = _clean(v)
        if len(v) < 2:
            raise serializers.ValidationError('Name must be at least 2 characters.')
        return v

    def validate_hospitalName(self, v):
        return _clean(v)

    def validate_address(self, v):
        return _clean(v)

    def validate_phone(self, v):
        return _clean(v)


class LoginSerializer(serializers.Serializer):
    email = serializers.EmailField()
    password = serializers.CharField(trim_whitespace=False)

    def validate_password(self, v):
        if not v:
            raise serializers.ValidationError('Password is required.')
        return v


class VerifyOtpSerializer(serializers.Serializer):
    email = serializers.EmailField()
    role = serializers.ChoiceField(choices=['donor', 'hospital', 'admin'])
    otp = serializers.RegexField(r'^\d{6}$', error_messages={'invalid': 'Code must be 6 digits.'})


class ResendOtpSerializer(serializers.Serializer):
    email = serializers.EmailField()
    role = serializers.ChoiceField(choices=['donor', 'hospital', 'admin'])


class RefreshSerializer(serializers.Serializer):
    refresh = serializers.CharField()
