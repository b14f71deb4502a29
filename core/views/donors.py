"""
Hospital donor roster, out-of-band donations, analytics and profile.
"""
from __future__ import annotations

from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from ..pagination import page_params, paginate
from ..permissions import IsHospitalRole
from ..principals import principal_for
from ..serializers.donors import DirectDonorSerializer, HospitalProfileUpdateSerializer, RosterQuerySerializer
from ..services import accounts, analytics, donors, profiles


@api_view(['GET'])
@permission_classes([IsAuthenticated, IsHospitalRole])
def hospital_donors(request):
    """Donors who accepted or gave at this hospital, most donations first."""
    q = RosterQuerySerializer(data=request.query_params)
    q.is_valid(raise_exception=True)
    page, limit = page_params(request.query_params)
    roster = donors.hospital_roster(principal_for(request.user), status=q.validated_data.get('status') or '')
    return Response(paginate(roster, page, limit))


@api_view(['POST'])
@permission_classes([IsAuthenticated, IsHospitalRole])
def add_direct_donor(request):
    s = DirectDonorSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    data = donors.add_direct_donor(principal_for(request.user), s.validated_data)
    return Response({'ok': True, 'status': 'completed', 'data': data}, status=201)


@api_view(['GET'])
@permission_classes([IsAuthenticated, IsHospitalRole])
def hospital_analytics(request):
    return Response({'ok': True, 'data': analytics.request_kpis(hospital_id=request.user.id)})


@api_view(['GET', 'PATCH'])
@permission_classes([IsAuthenticated, IsHospitalRole])
def hospital_profile(request):
    principal = principal_for(request.user)
    if request.method == 'PATCH':
        s = HospitalProfileUpdateSerializer(data=request.data, partial=True)
        s.is_valid(raise_exception=True)
        profiles.update_hospital_profile(principal, s.validated_data)
        request.user.refresh_from_db()
    return Response({'ok': True, 'data': accounts.account_payload(request.user)})
