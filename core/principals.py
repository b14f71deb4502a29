"""
Role-specific principals.

A request's authenticated user is resolved into exactly one of
:class:`DonorPrincipal`, :class:`HospitalPrincipal` or
:class:`AdminPrincipal`.  Guards in the services dispatch over this closed
set with ``isinstance`` and end in :func:`assert_never`, so a new role
cannot slip through a guard unhandled.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import NoReturn, Optional, Union

from core.exceptions import Forbidden
from core.models import DonorProfile, HospitalProfile, User


@dataclass(frozen=True)
class DonorPrincipal:
    user: User
    profile: DonorProfile

    @property
    def id(self) -> int:
        return self.user.id

    @property
    def blood_group(self) -> str:
        return self.profile.blood_group


@dataclass(frozen=True)
class HospitalPrincipal:
    user: User
    profile: HospitalProfile

    @property
    def id(self) -> int:
        return self.user.id

    @property
    def is_approved(self) -> bool:
        return self.profile.is_approved


@dataclass(frozen=True)
class AdminPrincipal:
    user: User

    @property
    def id(self) -> int:
        return self.user.id


Principal = Union[DonorPrincipal, HospitalPrincipal, AdminPrincipal]


def assert_never(value: object) -> NoReturn:
    raise TypeError(f'unhandled principal: {type(value).__name__}')


def principal_for(user: Optional[User]) -> Principal:
    """Resolve an authenticated user to its principal, or raise Forbidden."""
    if user is None or not getattr(user, 'is_authenticated', False) or not user.is_active:
        raise Forbidden('Authentication required.')
    if user.role == User.ROLE_DONOR:
        profile = DonorProfile.objects.filter(user=user).first()
        if profile is None:
            raise Forbidden('Donor profile missing.')
        return DonorPrincipal(user=user, profile=profile)
    if user.role == User.ROLE_HOSPITAL:
        profile = HospitalProfile.objects.filter(user=user).first()
        if profile is None:
            raise Forbidden('Hospital profile missing.')
        return HospitalPrincipal(user=user, profile=profile)
    if user.role == User.ROLE_ADMIN:
        return AdminPrincipal(user=user)
    raise Forbidden(f'Unknown role: {user.role}')
