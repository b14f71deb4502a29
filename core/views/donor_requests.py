"""
Donor side of the blood request lifecycle: the compatible request feed,
accepting requests, reporting en route and cancelling.
"""
from __future__ import annotations

from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from ..pagination import page_params, paginate
from ..permissions import IsDonorRole
from ..principals import principal_for
from ..serializers.requests import CancelSerializer
from ..services import donors, lifecycle, matching


def _mutated(req) -> Response:
    return Response({'ok': True, 'status': req.status, 'data': lifecycle.format_request(req)})


def _feed_item(pair) -> dict:
    req, distance = pair
    data = lifecycle.format_request(req)
    data['distanceKm'] = round(distance, 2) if distance is not None else None
    return data


@api_view(['GET'])
@permission_classes([IsAuthenticated, IsDonorRole])
def compatible_requests(request):
    """Open requests the donor can give to: critical first, then nearest."""
    principal = principal_for(request.user)
    page, limit = page_params(request.query_params)
    feed = matching.compatible_requests(principal.profile)
    return Response(paginate(feed, page, limit, _feed_item))


@api_view(['GET'])
@permission_classes([IsAuthenticated, IsDonorRole])
def my_requests(request):
    principal = principal_for(request.user)
    page, limit = page_params(request.query_params)
    return Response(paginate(lifecycle.donor_requests(principal), page, limit, lifecycle.format_request))


@api_view(['GET'])
@permission_classes([IsAuthenticated, IsDonorRole])
def donation_stats(request):
    return Response({'ok': True, 'data': donors.donor_stats(principal_for(request.user))})


@api_view(['PATCH'])
@permission_classes([IsAuthenticated, IsDonorRole])
def accept_request(request, pk: int):
    req, _ = lifecycle.accept(pk, principal_for(request.user))
    return _mutated(req)


@api_view(['PATCH'])
@permission_classes([IsAuthenticated, IsDonorRole])
def donor_on_the_way(request, pk: int):
    return _mutated(lifecycle.mark_on_the_way(pk, principal_for(request.user)))


@api_view(['PATCH'])
@permission_classes([IsAuthenticated, IsDonorRole])
def donor_cancel(request, pk: int):
    s = CancelSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    req = lifecycle.cancel(pk, principal_for(request.user), reason=s.validated_data.get('reason', ''))
    return _mutated(req)
