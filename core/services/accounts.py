"""
Account registration, verification and login.

Each role (donor, hospital, admin) is its own namespace: the same e-mail
may be registered once per role.  Accounts start unverified and cannot log
in until the e-mailed one-time code has been redeemed.
"""
from __future__ import annotations

import logging
import re
from datetime import datetime
from typing import Any, Optional

from django.conf import settings
from django.contrib.auth.password_validation import validate_password
from django.core.exceptions import ValidationError
from django.core.validators import validate_email
from django.db import IntegrityError, transaction
from django.utils import timezone
from rest_framework.authtoken.models import Token
from rest_framework_simplejwt.token_blacklist.models import BlacklistedToken, OutstandingToken
from rest_framework_simplejwt.tokens import RefreshToken

from core.exceptions import (
    AccountInactive,
    DuplicateAccount,
    Forbidden,
    InvalidCredential,
    InvalidProfile,
    NoPendingVerification,
    NotVerified,
)
from core.models import BLOOD_GROUPS, DonorProfile, HospitalProfile, OneTimeCode, User
from core.services import otp as otp_service
from core.services.audit import log_action

logger = logging.getLogger(__name__)

ROLES = (User.ROLE_DONOR, User.ROLE_HOSPITAL, User.ROLE_ADMIN)
# Order in which the combined login tries the namespaces
LOGIN_FALLBACK_ORDER = (User.ROLE_DONOR, User.ROLE_HOSPITAL, User.ROLE_ADMIN)

CONTACT_RE = re.compile(r'^[0-9]{10}$')


def normalize_email(email: Any) -> str:
    return str(email or '').strip().lower()


def _check_role(role: str) -> None:
    if role not in ROLES:
        raise InvalidProfile(f'Unknown account type: {role}', field='role')


def _required(profile: dict, key: str) -> str:
    value = str(profile.get(key) or '').strip()
    if not value:
        raise InvalidProfile(f'{key} is required.', field=key)
    return value


def _validate_common(profile: dict) -> tuple[str, str, str]:
    email = normalize_email(_required(profile, 'email'))
    try:
        validate_email(email)
    except ValidationError:
        raise InvalidProfile('Please provide a valid email.', field='email')
    name = _required(profile, 'name')
    if not 2 <= len(name) <= 50:
        raise InvalidProfile('Name must be between 2 and 50 characters.', field='name')
    password = str(profile.get('password') or '')
    try:
        validate_password(password)
    except ValidationError as e:
        raise InvalidProfile(' '.join(e.messages), field='password')
    return email, name, password


def _coordinate(profile: dict, key: str) -> Optional[float]:
    value = profile.get(key)
    if value in (None, ''):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        raise InvalidProfile(f'{key} must be a number.', field=key)


def _validate_donor(profile: dict) -> dict:
    blood_group = str(profile.get('bloodGroup') or '').strip().upper()
    if blood_group not in BLOOD_GROUPS:
        raise InvalidProfile('A valid blood group is required.', field='bloodGroup')
    return {
        'blood_group': blood_group,
        'phone': str(profile.get('phone') or '').strip(),
        'latitude': _coordinate(profile, 'latitude'),
        'longitude': _coordinate(profile, 'longitude'),
    }


def _validate_hospital(profile: dict) -> dict:
    license_number = _required(profile, 'licenseNumber')
    if len(license_number) < 5:
        raise InvalidProfile('License number must be at least 5 characters.', field='licenseNumber')
    contact = str(profile.get('contactNumber') or '').strip()
    if contact and not CONTACT_RE.match(contact):
        raise InvalidProfile('Please provide a valid 10-digit contact number.', field='contactNumber')
    return {
        'hospital_name': _required(profile, 'hospitalName'),
        'address': _required(profile, 'address'),
        'license_number': license_number,
        'contact_number': contact,
        'latitude': _coordinate(profile, 'latitude'),
        'longitude': _coordinate(profile, 'longitude'),
    }


def register(role: str, profile: dict, *, actor: Optional[User] = None,
             now: Optional[datetime] = None) -> tuple[User, OneTimeCode, bool]:
    """Create an unverified account and e-mail it a one-time code.

    Returns ``(user, code, delivered)``.  Admin accounts can only be created
    by an existing admin unless ``ADMIN_SIGNUP_OPEN`` is set.
    """
    _check_role(role)
    if role == User.ROLE_ADMIN and not getattr(settings, 'ADMIN_SIGNUP_OPEN', False):
        if actor is None or getattr(actor, 'role', None) != User.ROLE_ADMIN:
            raise Forbidden('Admin accounts can only be created by an administrator.')

    email, name, password = _validate_common(profile)
    extra: dict = {}
    if role == User.ROLE_DONOR:
        extra = _validate_donor(profile)
    elif role == User.ROLE_HOSPITAL:
        extra = _validate_hospital(profile)

    if User.objects.filter(email=email, role=role).exists():
        raise DuplicateAccount(field='email')
    if role == User.ROLE_HOSPITAL and HospitalProfile.objects.filter(
            license_number=extra['license_number']).exists():
        raise DuplicateAccount('This license number is already registered.', field='licenseNumber')

    try:
        with transaction.atomic():
            user = User.objects.create_user(
                username=User.username_for(role, email),
                email=email,
                password=password,
                first_name=name,
                role=role,
                is_verified=False,
            )
            if role == User.ROLE_DONOR:
                DonorProfile.objects.create(user=user, **extra)
            elif role == User.ROLE_HOSPITAL:
                HospitalProfile.objects.create(user=user, **extra)
            code = otp_service.issue_code(email, role, now=now)
    except IntegrityError:
        # Lost a race with a concurrent registration for the same identity
        raise DuplicateAccount(field='email')

    delivered = otp_service.deliver_code(code)
    log_action(user=actor or user, action='register', object_type='user', object_id=user.id,
               detail={'role': role, 'delivered': delivered})
    logger.info('registered %s account %s', role, user.id)
    return user, code, delivered


def verify(email: str, role: str, code: str, *, now: Optional[datetime] = None) -> User:
    """Redeem a one-time code and mark the account verified."""
    _check_role(role)
    email = normalize_email(email)
    with transaction.atomic():
        user = User.objects.select_for_update().filter(email=email, role=role).first()
        if user is None or user.is_verified:
            raise NoPendingVerification(email=email, role=role)
        otp_service.consume_code(email, role, code, now=now)
        user.is_verified = True
        user.save(update_fields=['is_verified'])
    log_action(user=user, action='verify', object_type='user', object_id=user.id)
    return user


def resend(email: str, role: str, *, now: Optional[datetime] = None) -> tuple[OneTimeCode, bool]:
    """Issue a fresh code for an unverified account, revoking older ones."""
    _check_role(role)
    email = normalize_email(email)
    user = User.objects.filter(email=email, role=role).first()
    if user is None or user.is_verified:
        raise NoPendingVerification(email=email, role=role)
    code = otp_service.issue_code(email, role, now=now)
    delivered = otp_service.deliver_code(code)
    log_action(user=user, action='resend_otp', object_type='user', object_id=user.id,
               detail={'delivered': delivered})
    return code, delivered


def authenticate(email: str, role: str, password: str) -> User:
    """Check a credential inside one role namespace.

    Checks run in order: credential, activity, verification.
    """
    _check_role(role)
    email = normalize_email(email)
    user = User.objects.filter(username=User.username_for(role, email)).first()
    if user is None:
        # Hash anyway so unknown and known e-mails cost the same
        User().set_password(password)
        raise InvalidCredential()
    if not user.check_password(password or ''):
        raise InvalidCredential()
    if not user.is_active:
        raise AccountInactive()
    if not user.is_verified:
        raise NotVerified(email=email, role=role)
    return user


def authenticate_any(email: str, password: str) -> User:
    """Try each role namespace in order and return the first that logs in.

    When none succeeds the most specific failure wins: a namespace that
    recognised the password but refused the account (inactive or
    unverified) outranks a plain bad credential.
    """
    specific: Optional[Exception] = None
    for role in LOGIN_FALLBACK_ORDER:
        try:
            return authenticate(email, role, password)
        except (AccountInactive, NotVerified) as e:
            specific = specific or e
        except InvalidCredential:
            continue
    raise specific or InvalidCredential()


def issue_tokens(user: User) -> dict:
    token_obj, _ = Token.objects.get_or_create(user=user)
    refresh = RefreshToken.for_user(user)
    user.last_login = timezone.now()
    user.save(update_fields=['last_login'])
    return {
        'token': token_obj.key,
        'jwt_access': str(refresh.access_token),
        'jwt_refresh': str(refresh),
    }


def revoke_tokens(user: User) -> int:
    """Drop the session token and blacklist outstanding refresh tokens."""
    Token.objects.filter(user=user).delete()
    count = 0
    for outstanding in OutstandingToken.objects.filter(user=user):
        _, created = BlacklistedToken.objects.get_or_create(token=outstanding)
        count += int(created)
    return count


def account_payload(user: User) -> dict:
    data: dict[str, Any] = {
        'id': user.id,
        'name': user.display_name,
        'email': user.email,
        'role': user.role,
        'isVerified': user.is_verified,
        'isActive': user.is_active,
        'createdAt': user.date_joined.isoformat(),
    }
    donor = getattr(user, 'donor_profile', None) if user.role == User.ROLE_DONOR else None
    hospital = getattr(user, 'hospital_profile', None) if user.role == User.ROLE_HOSPITAL else None
    if donor is not None:
        data.update({
            'bloodGroup': donor.blood_group,
            'phone': donor.phone,
            'location': _location(donor),
            'available': donor.available,
            'donationCount': donor.donation_count,
            'lastDonationDate': donor.last_donation_date.isoformat() if donor.last_donation_date else None,
        })
    if hospital is not None:
        data.update({
            'hospitalName': hospital.hospital_name,
            'licenseNumber': hospital.license_number,
            'address': hospital.address,
            'contactNumber': hospital.contact_number,
            'location': _location(hospital),
            'isApproved': hospital.is_approved,
        })
    return data


def _location(profile) -> Optional[dict]:
    if profile.latitude is None or profile.longitude is None:
        return None
    return {'latitude': profile.latitude, 'longitude': profile.longitude}
