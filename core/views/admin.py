"""
Platform administration endpoints.

Admins list, inspect, (de)activate and delete any account, approve
hospitals, oversee every request and read the platform dashboard.
"""
from __future__ import annotations

from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from ..pagination import page_params, paginate
from ..permissions import IsAdminRole
from ..principals import principal_for
from ..serializers.admin import UserListQuerySerializer, UserStatusSerializer
from ..serializers.requests import RequestListQuerySerializer, StatusUpdateSerializer
from ..services import accounts, analytics, lifecycle
from ..services import admin as admin_service


@api_view(['GET'])
@permission_classes([IsAuthenticated, IsAdminRole])
def admin_users(request):
    q = UserListQuerySerializer(data=request.query_params)
    q.is_valid(raise_exception=True)
    vd = q.validated_data
    page, limit = page_params(request.query_params)
    qs = admin_service.list_users(
        principal_for(request.user),
        role=vd.get('role') or '',
        search=(vd.get('search') or '').strip(),
        status='' if vd.get('status') == 'all' else (vd.get('status') or ''),
    )
    return Response(paginate(qs, page, limit, accounts.account_payload))


@api_view(['GET', 'DELETE'])
@permission_classes([IsAuthenticated, IsAdminRole])
def admin_user_detail(request, pk: int):
    principal = principal_for(request.user)
    if request.method == 'DELETE':
        admin_service.delete_user(principal, pk)
        return Response({'ok': True, 'status': 'deleted', 'data': {'id': pk}})
    user = admin_service.get_user(principal, pk)
    return Response({'ok': True, 'data': accounts.account_payload(user)})


@api_view(['PUT'])
@permission_classes([IsAuthenticated, IsAdminRole])
def admin_user_status(request, pk: int):
    """Body: ``status`` (active|inactive) and/or ``isApproved`` for hospitals."""
    s = UserStatusSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    user = admin_service.set_user_status(
        principal_for(request.user), pk,
        status=s.validated_data.get('status'),
        is_approved=s.validated_data.get('isApproved'),
    )
    return Response({
        'ok': True,
        'status': 'active' if user.is_active else 'inactive',
        'data': accounts.account_payload(user),
    })


@api_view(['GET'])
@permission_classes([IsAuthenticated, IsAdminRole])
def admin_requests(request):
    q = RequestListQuerySerializer(data=request.query_params)
    q.is_valid(raise_exception=True)
    page, limit = page_params(request.query_params)
    qs = lifecycle.list_all_requests(**q.filters())
    return Response(paginate(qs, page, limit, lifecycle.format_request))


@api_view(['PUT'])
@permission_classes([IsAuthenticated, IsAdminRole])
def admin_request_status(request, pk: int):
    s = StatusUpdateSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    req = lifecycle.set_status(
        pk, s.validated_data['status'], principal_for(request.user),
        reason=s.validated_data.get('reason', ''),
    )
    return Response({'ok': True, 'status': req.status, 'data': lifecycle.format_request(req)})


@api_view(['GET'])
@permission_classes([IsAuthenticated, IsAdminRole])
def admin_dashboard(request):
    return Response({'ok': True, 'data': analytics.admin_dashboard()})
