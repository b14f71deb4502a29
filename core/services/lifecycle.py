"""
Blood request lifecycle.

States move forward along ``pending -> accepted -> on_the_way -> confirmed
-> completed``; ``cancelled`` can be reached from any state before
``confirmed``.  ``completed`` and ``cancelled`` are terminal.

Every status change locks the request row, evaluates its guard against the
locked state and commits with a compare-and-set on ``(status, version)``.
When the compare-and-set misses (the row moved between read and write on
a backend without row locks) the whole step is retried against fresh
state, so a guard is never checked against stale data.  Acceptances only
require the request to still be open: they are plain inserts protected by
a unique constraint, and only the ``pending -> accepted`` edge is matched
on status.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Optional

from django.db import IntegrityError, transaction
from django.db.models import F, Q
from django.utils import timezone

from core.exceptions import (
    AlreadyFinalized,
    Forbidden,
    InvalidProfile,
    InvalidTransition,
    NotFound,
    NotVerified,
)
from core.models import Acceptance, BloodRequest, DonorProfile, RequestTransition
from core.principals import (
    AdminPrincipal,
    DonorPrincipal,
    HospitalPrincipal,
    Principal,
    assert_never,
)
from core.sanitize import clean_text
from core.services import matching
from core.services.audit import log_action

logger = logging.getLogger(__name__)

PENDING = BloodRequest.STATUS_PENDING
ACCEPTED = BloodRequest.STATUS_ACCEPTED
ON_THE_WAY = BloodRequest.STATUS_ON_THE_WAY
CONFIRMED = BloodRequest.STATUS_CONFIRMED
COMPLETED = BloodRequest.STATUS_COMPLETED
CANCELLED = BloodRequest.STATUS_CANCELLED

TRANSITIONS: dict[str, frozenset[str]] = {
    PENDING: frozenset({ACCEPTED, CANCELLED}),
    # accepted -> confirmed skips the en-route report
    ACCEPTED: frozenset({ON_THE_WAY, CONFIRMED, CANCELLED}),
    ON_THE_WAY: frozenset({CONFIRMED, CANCELLED}),
    CONFIRMED: frozenset({COMPLETED}),
    COMPLETED: frozenset(),
    CANCELLED: frozenset(),
}
# Statuses in which further donors may still sign up
ACCEPTING = frozenset({PENDING, ACCEPTED, ON_THE_WAY})
# Timestamp column stamped on entering a status
STAMPS = {
    ACCEPTED: 'accepted_at',
    CONFIRMED: 'confirmed_at',
    COMPLETED: 'completed_at',
    CANCELLED: 'cancelled_at',
}
MAX_ATTEMPTS = 3


def check_transition(current: str, target: str) -> None:
    """Raise unless ``current -> target`` is an edge of the state graph."""
    if current in BloodRequest.TERMINAL_STATUSES:
        raise AlreadyFinalized(current)
    if target not in TRANSITIONS.get(current, frozenset()):
        raise InvalidTransition(current, target)


def _locked(request_id: int) -> BloodRequest:
    req = (
        BloodRequest.objects.select_for_update()
        .filter(pk=request_id)
        .first()
    )
    if req is None:
        raise NotFound('Blood request not found.', requestId=request_id)
    return req


def _cas(req: BloodRequest, now: datetime, **fields) -> bool:
    updated = (
        BloodRequest.objects
        .filter(pk=req.pk, status=req.status, version=req.version)
        .update(version=F('version') + 1, updated_at=now, **fields)
    )
    return updated == 1


def _has_accepted(req: BloodRequest, user_id: int) -> bool:
    return Acceptance.objects.filter(blood_request=req, donor_id=user_id).exists()


# ---------------------------------------------------------------------
# Guards
# ---------------------------------------------------------------------
def _owner_or_admin(principal: Principal, req: BloodRequest, action: str) -> None:
    if isinstance(principal, AdminPrincipal):
        return
    if isinstance(principal, HospitalPrincipal):
        if req.hospital_id != principal.id:
            raise Forbidden(f'Only the requesting hospital may {action} this request.')
        return
    if isinstance(principal, DonorPrincipal):
        raise Forbidden(f'Donors cannot {action} a request.')
    assert_never(principal)


def _participant(principal: Principal, req: BloodRequest, action: str) -> None:
    """Owning hospital, an accepted donor, or an admin."""
    if isinstance(principal, AdminPrincipal):
        return
    if isinstance(principal, HospitalPrincipal):
        if req.hospital_id != principal.id:
            raise Forbidden(f'Only the requesting hospital may {action} this request.')
        return
    if isinstance(principal, DonorPrincipal):
        if not _has_accepted(req, principal.id):
            raise Forbidden(f'Only a donor who accepted this request may {action} it.')
        if not principal.profile.available:
            raise Forbidden(f'Mark yourself as available before you {action} a request.')
        return
    assert_never(principal)


def _admin_only(principal: Principal, req: BloodRequest, action: str) -> None:
    if isinstance(principal, AdminPrincipal):
        return
    if isinstance(principal, (HospitalPrincipal, DonorPrincipal)):
        raise Forbidden('Only administrators may override request status.')
    assert_never(principal)


# ---------------------------------------------------------------------
# Transitions
# ---------------------------------------------------------------------
def _transition(request_id: int, target: str, principal: Principal,
                guard: Callable[[Principal, BloodRequest, str], None], action: str,
                *, reason: str = '', now: Optional[datetime] = None) -> BloodRequest:
    now = now or timezone.now()
    for attempt in range(1, MAX_ATTEMPTS + 1):
        with transaction.atomic():
            req = _locked(request_id)
            guard(principal, req, action)
            check_transition(req.status, target)
            fields = {'status': target}
            if target in STAMPS:
                fields[STAMPS[target]] = now
            if target == CANCELLED:
                fields['cancel_reason'] = reason[:255]
            if _cas(req, now, **fields):
                RequestTransition.objects.create(
                    blood_request=req, from_status=req.status, to_status=target,
                    operator=principal.user, reason=reason[:255],
                )
                if target == COMPLETED:
                    _record_donations(req, now)
                log_action(user=principal.user, action=f'request_{target}', object_type='blood_request',
                           object_id=req.id, detail={'from': req.status, 'to': target})
                req.refresh_from_db()
                return req
        logger.info('request %s moved during %s (attempt %s)', request_id, action, attempt)
    fresh = BloodRequest.objects.get(pk=request_id)
    raise InvalidTransition(fresh.status, target, detail='Request changed concurrently; please retry.')


def _record_donations(req: BloodRequest, now: datetime) -> None:
    donor_ids = list(req.acceptances.values_list('donor_id', flat=True))
    DonorProfile.objects.filter(user_id__in=donor_ids).update(
        donation_count=F('donation_count') + 1,
        last_donation_date=timezone.localdate(now),
    )


def mark_on_the_way(request_id: int, principal: Principal, *, now: Optional[datetime] = None) -> BloodRequest:
    return _transition(request_id, ON_THE_WAY, principal, _participant, 'update', now=now)


def confirm(request_id: int, principal: Principal, *, now: Optional[datetime] = None) -> BloodRequest:
    return _transition(request_id, CONFIRMED, principal, _owner_or_admin, 'confirm', now=now)


def complete(request_id: int, principal: Principal, *, now: Optional[datetime] = None) -> BloodRequest:
    return _transition(request_id, COMPLETED, principal, _owner_or_admin, 'complete', now=now)


def cancel(request_id: int, principal: Principal, *, reason: str = '',
           now: Optional[datetime] = None) -> BloodRequest:
    reason = clean_text(reason)
    return _transition(request_id, CANCELLED, principal, _participant, 'cancel', reason=reason, now=now)


def set_status(request_id: int, target: str, principal: Principal, *, reason: str = '',
               now: Optional[datetime] = None) -> BloodRequest:
    """Admin override: any edge of the graph, regardless of ownership."""
    if target not in TRANSITIONS:
        raise InvalidProfile(f'Unknown status: {target}', field='status')
    reason = clean_text(reason)
    return _transition(request_id, target, principal, _admin_only, 'set status of', reason=reason, now=now)


def accept(request_id: int, principal: Principal, *,
           now: Optional[datetime] = None) -> tuple[BloodRequest, Acceptance]:
    """Add the donor to the request's accepted donors.

    The first acceptance moves a pending request to ``accepted``; later
    ones are appended while the request is still open.  Appends only
    require the request to still be open, so concurrent donors never
    invalidate each other; the per-donor unique constraint rejects a
    donor accepting twice.
    """
    if not isinstance(principal, DonorPrincipal):
        raise Forbidden('Only donors can accept blood requests.')
    profile = principal.profile
    if not profile.available:
        raise Forbidden('Mark yourself as available before accepting requests.')
    now = now or timezone.now()

    with transaction.atomic():
        req = _locked(request_id)
        if req.is_terminal:
            raise AlreadyFinalized(req.status)
        if req.status not in ACCEPTING:
            raise InvalidTransition(req.status, ACCEPTED)
        if not matching.is_compatible(profile.blood_group, req.blood_group):
            raise Forbidden(
                f'Blood group {profile.blood_group} cannot donate to {req.blood_group}.',
                donorBloodGroup=profile.blood_group, requestBloodGroup=req.blood_group,
            )
        if _has_accepted(req, principal.id):
            raise InvalidTransition(req.status, ACCEPTED, detail='You have already accepted this request.')

        opened = BloodRequest.objects.filter(pk=req.pk, status=PENDING).update(
            status=ACCEPTED, accepted_at=now, version=F('version') + 1, updated_at=now,
        )
        if not opened:
            still_open = BloodRequest.objects.filter(pk=req.pk, status__in=ACCEPTING).update(
                version=F('version') + 1, updated_at=now,
            )
            if not still_open:
                current = BloodRequest.objects.values_list('status', flat=True).get(pk=req.pk)
                if current in BloodRequest.TERMINAL_STATUSES:
                    raise AlreadyFinalized(current)
                raise InvalidTransition(current, ACCEPTED)
        try:
            with transaction.atomic():
                acceptance = Acceptance.objects.create(
                    blood_request=req,
                    donor=principal.user,
                    donor_name=principal.user.display_name,
                    donor_blood_group=profile.blood_group,
                    donor_phone=profile.phone,
                    accepted_at=now,
                )
        except IntegrityError:
            raise InvalidTransition(req.status, ACCEPTED, detail='You have already accepted this request.')
        if opened:
            RequestTransition.objects.create(
                blood_request=req, from_status=PENDING, to_status=ACCEPTED,
                operator=principal.user, reason='first donor accepted',
            )
        req.refresh_from_db()
        log_action(user=principal.user, action='request_accept', object_type='blood_request',
                   object_id=req.id, detail={'from': PENDING if opened else req.status})
        return req, acceptance


# ---------------------------------------------------------------------
# Creation & queries
# ---------------------------------------------------------------------
def create_request(principal: Principal, data: dict) -> BloodRequest:
    """Open a new request for a verified, approved hospital."""
    if isinstance(principal, (DonorPrincipal, AdminPrincipal)):
        raise Forbidden('Only hospitals can create blood requests.')
    if not isinstance(principal, HospitalPrincipal):
        assert_never(principal)
    if not principal.user.is_verified or not principal.is_approved:
        raise NotVerified('Hospital must be verified and approved before creating requests.')

    blood_group = matching.check_blood_group(data.get('bloodGroup'))
    units = data.get('unitsNeeded', 1)
    if not isinstance(units, int) or not 1 <= units <= 10:
        raise InvalidProfile('Units needed must be between 1 and 10.', field='unitsNeeded')
    urgency = data.get('urgency') or 'medium'
    if urgency not in dict(BloodRequest.URGENCY_CHOICES):
        raise InvalidProfile(f'Unknown urgency: {urgency}', field='urgency')
    notes = clean_text(data.get('notes'))
    if len(notes) > 500:
        raise InvalidProfile('Notes cannot be more than 500 characters.', field='notes')

    with transaction.atomic():
        req = BloodRequest.objects.create(
            hospital=principal.user,
            patient_name=clean_text(data.get('patientName'))[:100],
            blood_group=blood_group,
            units_needed=units,
            urgency=urgency,
            notes=notes,
            required_by=data.get('requiredBy') or timezone.localdate(),
        )
        RequestTransition.objects.create(
            blood_request=req, from_status=None, to_status=PENDING,
            operator=principal.user, reason='created',
        )
    log_action(user=principal.user, action='request_create', object_type='blood_request',
               object_id=req.id, detail={'bloodGroup': blood_group, 'units': units})
    return req


def get_request(request_id: int, principal: Principal) -> BloodRequest:
    req = (
        BloodRequest.objects.select_related('hospital', 'hospital__hospital_profile')
        .filter(pk=request_id)
        .first()
    )
    if req is None:
        raise NotFound('Blood request not found.', requestId=request_id)
    if isinstance(principal, AdminPrincipal):
        return req
    if isinstance(principal, HospitalPrincipal):
        if req.hospital_id != principal.id:
            raise Forbidden('This request belongs to another hospital.')
        return req
    if isinstance(principal, DonorPrincipal):
        if _has_accepted(req, principal.id):
            return req
        if req.status in ACCEPTING and matching.is_compatible(principal.blood_group, req.blood_group):
            return req
        raise Forbidden('You cannot view this request.')
    assert_never(principal)


def filter_requests(qs, *, status: str = '', blood_group: str = '', urgency: str = '', search: str = ''):
    if status:
        qs = qs.filter(status=status)
    if blood_group:
        qs = qs.filter(blood_group=matching.check_blood_group(blood_group))
    if urgency:
        qs = qs.filter(urgency=urgency)
    if search:
        qs = qs.filter(
            Q(patient_name__icontains=search)
            | Q(hospital__hospital_profile__hospital_name__icontains=search)
            | Q(notes__icontains=search)
        )
    return qs


def list_hospital_requests(principal: HospitalPrincipal, **filters):
    if not isinstance(principal, HospitalPrincipal):
        raise Forbidden('Only hospitals have a request list.')
    qs = BloodRequest.objects.filter(hospital_id=principal.id).prefetch_related('acceptances')
    return filter_requests(qs, **filters).order_by('-created_at', '-id')


def list_all_requests(**filters):
    qs = (
        BloodRequest.objects.select_related('hospital', 'hospital__hospital_profile')
        .prefetch_related('acceptances')
    )
    return filter_requests(qs, **filters).order_by('-created_at', '-id')


def donor_requests(principal: DonorPrincipal):
    """Requests the donor has accepted, newest acceptance first."""
    return (
        BloodRequest.objects.select_related('hospital', 'hospital__hospital_profile')
        .prefetch_related('acceptances')
        .filter(acceptances__donor_id=principal.id)
        .order_by('-acceptances__accepted_at', '-id')
        .distinct()
    )


# ---------------------------------------------------------------------
# Formatting
# ---------------------------------------------------------------------
def _ts(value) -> Optional[str]:
    return value.isoformat() if value else None


def format_acceptance(a: Acceptance) -> dict:
    return {
        'donorId': a.donor_id,
        'name': a.donor_name,
        'bloodGroup': a.donor_blood_group,
        'phone': a.donor_phone,
        'acceptedAt': _ts(a.accepted_at),
    }


def format_request(req: BloodRequest) -> dict:
    hospital = getattr(req.hospital, 'hospital_profile', None)
    return {
        'id': req.id,
        'hospitalId': req.hospital_id,
        'hospitalName': hospital.hospital_name if hospital else req.hospital.display_name,
        'hospitalAddress': hospital.address if hospital else '',
        'patientName': req.patient_name,
        'bloodGroup': req.blood_group,
        'unitsNeeded': req.units_needed,
        'urgency': req.urgency,
        'notes': req.notes,
        'requiredBy': req.required_by.isoformat() if req.required_by else None,
        'status': req.status,
        'version': req.version,
        'acceptedDonors': [format_acceptance(a) for a in req.acceptances.all()],
        'acceptedAt': _ts(req.accepted_at),
        'confirmedAt': _ts(req.confirmed_at),
        'completedAt': _ts(req.completed_at),
        'cancelledAt': _ts(req.cancelled_at),
        'cancelReason': req.cancel_reason,
        'createdAt': _ts(req.created_at),
        'updatedAt': _ts(req.updated_at),
    }


def format_history(req: BloodRequest) -> list[dict]:
    return [
        {
            'from': t.from_status,
            'to': t.to_status,
            'operator': t.operator.display_name if t.operator else '',
            'reason': t.reason,
            'timestamp': _ts(t.timestamp),
        }
        for t in req.transitions.select_related('operator').order_by('timestamp', 'id')
    ]
