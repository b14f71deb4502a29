from core.sanitize import clean_text
from rest_framework import serializers

from core.models import BLOOD_GROUPS, BloodRequest


class BloodRequestCreateSerializer(serializers.Serializer):
    patientName = serializers.CharField(required=False, allow_blank=True, max_length=100)
    bloodGroup = serializers.CharField(max_length=3)
    unitsNeeded = serializers.IntegerField(min_value=1, max_value=10, default=1)
    urgency = serializers.ChoiceField(choices=[u for u, _ in BloodRequest.URGENCY_CHOICES], default='medium')
    notes = serializers.CharField(required=False, allow_blank=True, max_length=500)
    requiredBy = serializers.DateField(required=False, allow_null=True)

    def validate_patientName(self, v):
        return clean_text(v)

    def validate_notes(self, v):
        return clean_text(v)


class RequestListQuerySerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=[s for s, _ in BloodRequest.STATUS_CHOICES] + ['all'],
                                     required=False, allow_blank=True)
    bloodGroup = serializers.ChoiceField(choices=BLOOD_GROUPS, required=False, allow_blank=True)
    urgency = serializers.ChoiceField(choices=[u for u, _ in BloodRequest.URGENCY_CHOICES],
                                      required=False, allow_blank=True)
    search = serializers.CharField(required=False, allow_blank=True, max_length=100)

    def filters(self) -> dict:
        vd = self.validated_data
        status = vd.get('status') or ''
        return {
            'status': '' if status == 'all' else status,
            'blood_group': vd.get('bloodGroup') or '',
            'urgency': vd.get('urgency') or '',
            'search': (vd.get('search') or '').strip(),
        }


class CancelSerializer(serializers.Serializer):
    reason = serializers.CharField(required=False, allow_blank=True, max_length=255)


class StatusUpdateSerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=[s for s, _ in BloodRequest.STATUS_CHOICES])
    reason = serializers.CharField(required=False, allow_blank=True, max_length=255)
