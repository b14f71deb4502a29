"""
Hospital side of the blood request lifecycle.

Hospitals create requests, look up matching donors and drive their own
requests through confirmation and completion (or cancel them).  Admins
may call the same endpoints on any request.  Every mutation answers with
the updated request and its new ``status``.
"""
from __future__ import annotations

from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from ..pagination import page_params, paginate
from ..permissions import IsHospitalOrAdmin, IsHospitalRole
from ..principals import principal_for
from ..serializers.requests import BloodRequestCreateSerializer, CancelSerializer, RequestListQuerySerializer
from ..services import lifecycle, matching


def _mutated(req, status: int = 200) -> Response:
    return Response({'ok': True, 'status': req.status, 'data': lifecycle.format_request(req)}, status=status)


@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated, IsHospitalRole])
def hospital_requests(request):
    """List the hospital's own requests or create a new one.

    GET accepts ``status``, ``bloodGroup``, ``urgency``, ``search``,
    ``page`` and ``limit``; results are newest first.
    """
    principal = principal_for(request.user)
    if request.method == 'POST':
        s = BloodRequestCreateSerializer(data=request.data)
        s.is_valid(raise_exception=True)
        req = lifecycle.create_request(principal, s.validated_data)
        return _mutated(req, status=201)

    q = RequestListQuerySerializer(data=request.query_params)
    q.is_valid(raise_exception=True)
    page, limit = page_params(request.query_params)
    qs = lifecycle.list_hospital_requests(principal, **q.filters())
    return Response(paginate(qs, page, limit, lifecycle.format_request))


@api_view(['GET'])
@permission_classes([IsAuthenticated, IsHospitalOrAdmin])
def hospital_request_detail(request, pk: int):
    req = lifecycle.get_request(pk, principal_for(request.user))
    data = lifecycle.format_request(req)
    data['history'] = lifecycle.format_history(req)
    return Response({'ok': True, 'status': req.status, 'data': data})


@api_view(['GET'])
@permission_classes([IsAuthenticated, IsHospitalOrAdmin])
def hospital_request_matches(request, pk: int):
    """Eligible donors for the request, nearest first."""
    req = lifecycle.get_request(pk, principal_for(request.user))
    page, limit = page_params(request.query_params)
    ranked = matching.match_donors(req)
    return Response(paginate(ranked, page, limit, lambda m: matching.format_match(*m)))


@api_view(['PATCH'])
@permission_classes([IsAuthenticated, IsHospitalOrAdmin])
def hospital_request_on_the_way(request, pk: int):
    return _mutated(lifecycle.mark_on_the_way(pk, principal_for(request.user)))


@api_view(['PATCH'])
@permission_classes([IsAuthenticated, IsHospitalOrAdmin])
def hospital_request_confirm(request, pk: int):
    return _mutated(lifecycle.confirm(pk, principal_for(request.user)))


@api_view(['PATCH'])
@permission_classes([IsAuthenticated, IsHospitalOrAdmin])
def hospital_request_complete(request, pk: int):
    return _mutated(lifecycle.complete(pk, principal_for(request.user)))


@api_view(['PATCH'])
@permission_classes([IsAuthenticated, IsHospitalOrAdmin])
def hospital_request_cancel(request, pk: int):
    s = CancelSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    req = lifecycle.cancel(pk, principal_for(request.user), reason=s.validated_data.get('reason', ''))
    return _mutated(req)
