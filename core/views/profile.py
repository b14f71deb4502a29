from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from ..permissions import IsDonorRole
from ..principals import principal_for
from ..serializers.donors import DonorProfileUpdateSerializer, LocationSerializer
from ..services import accounts, profiles


@api_view(['GET', 'PUT'])
@permission_classes([IsAuthenticated, IsDonorRole])
def user_profile(request):
    """Read or update the donor's name, phone and availability."""
    if request.method == 'PUT':
        s = DonorProfileUpdateSerializer(data=request.data, partial=True)
        s.is_valid(raise_exception=True)
        profiles.update_donor_profile(principal_for(request.user), s.validated_data)
        request.user.refresh_from_db()
    return Response({'ok': True, 'data': accounts.account_payload(request.user)})


@api_view(['PUT'])
@permission_classes([IsAuthenticated, IsDonorRole])
def user_location(request):
    s = LocationSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    profiles.update_location(principal_for(request.user), s.validated_data['latitude'], s.validated_data['longitude'])
    request.user.refresh_from_db()
    return Response({'ok': True, 'data': accounts.account_payload(request.user)})
