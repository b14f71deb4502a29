from rest_framework import serializers


class UserStatusSerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=['active', 'inactive'], required=False)
    isApproved = serializers.BooleanField(required=False)


class UserListQuerySerializer(serializers.Serializer):
    role = serializers.ChoiceField(choices=['donor', 'hospital', 'admin', 'all'], required=False, allow_blank=True)
    search = serializers.CharField(required=False, allow_blank=True, max_length=100)
    status = serializers.ChoiceField(choices=['active', 'inactive', 'unverified', 'pending', 'all'],
                                     required=False, allow_blank=True)
