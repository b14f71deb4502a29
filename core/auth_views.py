"""
Authentication views: registration, one-time code verification, login,
session lookup, logout and JWT refresh.

Every role (donor, hospital, admin) has its own register and login
endpoint because the same e-mail may exist once per role.  The combined
``auth/login`` endpoint tries the namespaces in order on the server.
"""
from __future__ import annotations

from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import AllowAny, IsAuthenticated
from rest_framework.response import Response
from rest_framework_simplejwt.exceptions import InvalidToken, TokenError
from rest_framework_simplejwt.serializers import TokenRefreshSerializer

from core.exceptions import DomainError, InvalidProfile, NotFound
from core.serializers.auth import (
    LoginSerializer,
    RefreshSerializer,
    RegisterSerializer,
    ResendOtpSerializer,
    VerifyOtpSerializer,
)
from core.services import accounts
from core.services import otp as otp_service
from core.services.audit import client_ip, log_action

from .models import User


def _role_or_404(role: str) -> str:
    if role not in accounts.ROLES:
        raise NotFound(f'Unknown account type: {role}')
    return role


def _login_payload(user: User) -> dict:
    return {
        'ok': True,
        **accounts.issue_tokens(user),
        'role': user.role,
        'user': accounts.account_payload(user),
    }


# ---------------------------------------------------------------------
# Registration & verification
# ---------------------------------------------------------------------
@api_view(['POST'])
@permission_classes([AllowAny])
def register_view(request, role: str):
    """Create an unverified account and e-mail it a 6 digit code.

    Donors send ``bloodGroup``; hospitals send ``hospitalName``,
    ``address``, ``licenseNumber`` and ``contactNumber``.
    """
    _role_or_404(role)
    s = RegisterSerializer(data=request.data)
    if not s.is_valid():
        raise InvalidProfile('Please correct the highlighted fields.', fields=s.errors)
    user, code, delivered = accounts.register(role, s.validated_data, actor=request.user)
    return Response({
        'ok': True,
        'status': 'pending_verification',
        'message': 'Registration successful. Check your e-mail for the verification code.',
        'data': otp_service.delivery_payload(code, delivered),
    }, status=201)

register_view.cls.throttle_scope = 'register'


@api_view(['POST'])
@permission_classes([AllowAny])
def verify_otp_view(request):
    s = VerifyOtpSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    vd = s.validated_data
    user = accounts.verify(vd['email'], vd['role'], vd['otp'])
    return Response({'ok': True, 'status': 'verified', **_login_payload(user)})

verify_otp_view.cls.throttle_scope = 'otp'


@api_view(['POST'])
@permission_classes([AllowAny])
def resend_otp_view(request):
    s = ResendOtpSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    code, delivered = accounts.resend(s.validated_data['email'], s.validated_data['role'])
    return Response({
        'ok': True,
        'status': 'pending_verification',
        'data': otp_service.delivery_payload(code, delivered),
    })

resend_otp_view.cls.throttle_scope = 'otp'


# ---------------------------------------------------------------------
# Login
# ---------------------------------------------------------------------
def _audited_login(request, email: str, attempt):
    try:
        user = attempt()
    except DomainError as e:
        log_action(user=None, action='login', object_type='user', object_id=None,
                   detail={'result': e.default_code, 'email': email, 'ip': client_ip(request)})
        raise
    log_action(user=user, action='login', object_type='user', object_id=user.id,
               detail={'result': 'ok', 'ip': client_ip(request)})
    return Response(_login_payload(user))


@api_view(['POST'])
@permission_classes([AllowAny])
def login_view(request, role: str):
    """Log in within one role namespace."""
    _role_or_404(role)
    s = LoginSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    vd = s.validated_data
    return _audited_login(request, vd['email'],
                          lambda: accounts.authenticate(vd['email'], role, vd['password']))

login_view.cls.throttle_scope = 'login'


@api_view(['POST'])
@permission_classes([AllowAny])
def login_any_view(request):
    """Log in trying donor, then hospital, then admin."""
    s = LoginSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    vd = s.validated_data
    return _audited_login(request, vd['email'],
                          lambda: accounts.authenticate_any(vd['email'], vd['password']))

login_any_view.cls.throttle_scope = 'login'


# ---------------------------------------------------------------------
# Session
# ---------------------------------------------------------------------
@api_view(['GET'])
@permission_classes([IsAuthenticated])
def me_view(request):
    return Response({'ok': True, 'data': accounts.account_payload(request.user)})


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def logout_view(request):
    """Delete the session token and blacklist the user's refresh tokens."""
    count = accounts.revoke_tokens(request.user)
    log_action(user=request.user, action='logout', object_type='user', object_id=request.user.id,
               detail={'blacklisted': count})
    return Response({'ok': True, 'blacklisted': count})


@api_view(['POST'])
@permission_classes([AllowAny])
def refresh_view(request):
    """Return a new access token from a refresh token."""
    RefreshSerializer(data=request.data).is_valid(raise_exception=True)
    s = TokenRefreshSerializer(data=request.data)
    try:
        s.is_valid(raise_exception=True)
    except TokenError as e:
        raise InvalidToken(e.args[0])
    return Response({'ok': True, 'jwt_access': s.validated_data['access']})

refresh_view.cls.throttle_scope = 'login'
