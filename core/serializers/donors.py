from core.sanitize import clean_text
from rest_framework import serializers

from core.models import BloodRequest


class DirectDonorSerializer(serializers.Serializer):
    donorName = serializers.CharField(max_length=150)
    donorEmail = serializers.EmailField()
    donorPhone = serializers.CharField(max_length=20)
    # Checked against the blood group enumeration by the service
    bloodGroup = serializers.CharField(max_length=8)

    def validate_donorName(self, v):
        v = clean_text(v)
        if len(v) < 2:
            raise serializers.ValidationError('Name must be at least 2 characters.')
        return v


class RosterQuerySerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=[s for s, _ in BloodRequest.STATUS_CHOICES] + ['all'],
                                     required=False, allow_blank=True)


class DonorProfileUpdateSerializer(serializers.Serializer):
    name = serializers.CharField(required=False, max_length=50)
    phone = serializers.CharField(required=False, allow_blank=True, max_length=20)
    available = serializers.BooleanField(required=False)

    def validate_name(self, v):
        v = clean_text(v)
        if len(v) < 2:
            raise serializers.ValidationError('Name must be at least 2 characters.')
        return v


class LocationSerializer(serializers.Serializer):
    latitude = serializers.FloatField(min_value=-90, max_value=90)
    longitude = serializers.FloatField(min_value=-180, max_value=180)


class HospitalProfileUpdateSerializer(serializers.Serializer):
    name = serializers.CharField(required=False, max_length=50)
    hospitalName = serializers.CharField(required=False, max_length=100)
    address = serializers.CharField(required=False, max_length=200)
    contactNumber = serializers.RegexField(r'^[0-9]{10}$', required=False,
                                           error_messages={'invalid': 'Please provide a valid 10-digit contact number.'})
    latitude = serializers.FloatField(required=False, allow_null=True, min_value=-90, max_value=90)
    longitude = serializers.FloatField(required=False, allow_null=True, min_value=-180, max_value=180)

    def validate_hospitalName(self, v):
        return clean_text(v)

    def validate_address(self, v):
        return clean_text(v)
