"""
Platform administration of accounts.

Only admins reach these functions.  Hospital approval is exclusive to this
module; deactivation takes effect on the account's next API call because
token authentication re-checks ``is_active`` every time.
"""
from __future__ import annotations

from typing import Optional

from django.db import transaction
from django.db.models import Q
from django.utils import timezone

from core.exceptions import Forbidden, InvalidProfile, NotFound
from core.models import HospitalProfile, User
from core.principals import AdminPrincipal
from core.services.accounts import revoke_tokens
from core.services.audit import log_action


def _require_admin(principal) -> None:
    if not isinstance(principal, AdminPrincipal):
        raise Forbidden('Administrator access required.')


def list_users(principal, *, role: str = '', search: str = '', status: str = ''):
    _require_admin(principal)
    qs = User.objects.select_related('donor_profile', 'hospital_profile').order_by('-date_joined', '-id')
    if role and role != 'all':
        qs = qs.filter(role=role)
    if search:
        qs = qs.filter(
            Q(first_name__icontains=search)
            | Q(email__icontains=search)
            | Q(hospital_profile__hospital_name__icontains=search)
        )
    if status == 'active':
        qs = qs.filter(is_active=True)
    elif status == 'inactive':
        qs = qs.filter(is_active=False)
    elif status == 'unverified':
        qs = qs.filter(is_verified=False)
    elif status == 'pending':
        qs = qs.filter(role=User.ROLE_HOSPITAL, hospital_profile__is_approved=False)
    return qs


def get_user(principal, user_id: int) -> User:
    _require_admin(principal)
    user = User.objects.select_related('donor_profile', 'hospital_profile').filter(pk=user_id).first()
    if user is None:
        raise NotFound('User not found.', userId=user_id)
    return user


def set_user_status(principal, user_id: int, *, status: Optional[str] = None,
                    is_approved: Optional[bool] = None) -> User:
    """Activate/deactivate an account and, for hospitals, grant approval."""
    _require_admin(principal)
    if status is None and is_approved is None:
        raise InvalidProfile('Nothing to update.', field='status')
    if status is not None and status not in ('active', 'inactive'):
        raise InvalidProfile(f'Unknown status: {status}', field='status')
    with transaction.atomic():
        user = User.objects.select_for_update().filter(pk=user_id).first()
        if user is None:
            raise NotFound('User not found.', userId=user_id)
        if user.pk == principal.id and status == 'inactive':
            raise Forbidden('You cannot deactivate your own account.')
        detail: dict = {}
        if status is not None:
            user.is_active = status == 'active'
            user.save(update_fields=['is_active'])
            detail['status'] = status
            if not user.is_active:
                revoke_tokens(user)
        if is_approved is not None:
            if user.role != User.ROLE_HOSPITAL:
                raise InvalidProfile('Only hospital accounts can be approved.', field='isApproved')
            profile = HospitalProfile.objects.select_for_update().get(user=user)
            profile.is_approved = bool(is_approved)
            profile.approved_at = timezone.now() if is_approved else None
            profile.save(update_fields=['is_approved', 'approved_at'])
            detail['isApproved'] = bool(is_approved)
    log_action(user=principal.user, action='admin_user_status', object_type='user',
               object_id=user.id, detail=detail)
    return User.objects.select_related('donor_profile', 'hospital_profile').get(pk=user.pk)


def delete_user(principal, user_id: int) -> None:
    _require_admin(principal)
    user = User.objects.filter(pk=user_id).first()
    if user is None:
        raise NotFound('User not found.', userId=user_id)
    if user.pk == principal.id:
        raise Forbidden('You cannot delete your own account.')
    snapshot = {'email': user.email, 'role': user.role}
    user.delete()
    log_action(user=principal.user, action='admin_user_delete', object_type='user',
               object_id=user_id, detail=snapshot)
