"""
Donor rosters, out-of-band donations and donor statistics.

Donation history is not stored as its own table.  It is derived from
acceptances (joined with their request's status) and from donations a
hospital records directly.
"""
from __future__ import annotations

import logging
from typing import Iterable, Optional

from django.db import transaction
from django.db.models import F
from django.utils import timezone

from core.exceptions import Forbidden, InvalidProfile
from core.models import Acceptance, BloodRequest, DirectDonation, DonorProfile, User
from core.principals import DonorPrincipal, HospitalPrincipal
from core.sanitize import clean_text
from core.services import matching
from core.services.audit import log_action

logger = logging.getLogger(__name__)

ROSTER_STATUSES = (
    BloodRequest.STATUS_ACCEPTED,
    BloodRequest.STATUS_ON_THE_WAY,
    BloodRequest.STATUS_CONFIRMED,
    BloodRequest.STATUS_COMPLETED,
)

BADGES = (
    ('First Donation', 'Completed your first blood donation', 1),
    ('Life Saver', 'Completed 3 blood donations', 3),
    ('Hero Donor', 'Completed 5 blood donations', 5),
    ('Champion', 'Completed 10 blood donations', 10),
    ('Legend', 'Completed 25 blood donations', 25),
)


def badges_for(total: int) -> list[dict]:
    return [
        {'name': name, 'description': description, 'threshold': threshold, 'earned': total >= threshold}
        for name, description, threshold in BADGES
    ]


def _ts(value) -> Optional[str]:
    return value.isoformat() if value else None


def add_direct_donor(principal: HospitalPrincipal, data: dict) -> dict:
    """Record an in-person donation and return the donor's roster entry.

    Matching is bypassed but the blood group must still be one of the
    eight recognised values.  When the e-mail belongs to a donor account
    the donation is linked to it and counted in the donor's totals.
    """
    if not isinstance(principal, HospitalPrincipal):
        raise Forbidden('Only hospitals can record direct donations.')
    blood_group = matching.check_blood_group(data.get('bloodGroup'))
    fields = {}
    for key in ('donorName', 'donorEmail', 'donorPhone'):
        value = clean_text(data.get(key))
        if not value:
            raise InvalidProfile(f'{key} is required.', field=key)
        fields[key] = value
    email = fields['donorEmail'].lower()
    now = timezone.now()

    with transaction.atomic():
        account = User.objects.filter(email=email, role=User.ROLE_DONOR).first()
        donation = DirectDonation.objects.create(
            hospital=principal.user,
            donor=account,
            donor_name=fields['donorName'],
            donor_email=email,
            donor_phone=fields['donorPhone'],
            blood_group=blood_group,
            donated_at=now,
        )
        if account is not None:
            DonorProfile.objects.filter(user=account).update(
                donation_count=F('donation_count') + 1,
                last_donation_date=timezone.localdate(now),
            )
    total = DirectDonation.objects.filter(hospital=principal.user, donor_email=email).count()
    log_action(user=principal.user, action='direct_donation', object_type='direct_donation',
               object_id=donation.id, detail={'email': email, 'linked': account is not None})
    return {
        'id': donation.id,
        'donorId': donation.donor_id,
        'donorName': donation.donor_name,
        'donorEmail': donation.donor_email,
        'donorPhone': donation.donor_phone,
        'bloodGroup': donation.blood_group,
        'lastDonationDate': _ts(donation.donated_at),
        'totalDonations': total,
    }


def hospital_roster(principal: HospitalPrincipal, status: str = '') -> list[dict]:
    """Everyone who has committed to or given blood at this hospital.

    Acceptances on the hospital's requests (statuses in ROSTER_STATUSES,
    or exactly ``status`` when given) are merged with direct donations by
    e-mail.  Entries are sorted by total donations, highest first.
    """
    if not isinstance(principal, HospitalPrincipal):
        raise Forbidden('Only hospitals have a donor roster.')
    statuses: Iterable[str] = (status,) if status and status != 'all' else ROSTER_STATUSES
    acceptances = (
        Acceptance.objects.select_related('blood_request', 'donor')
        .filter(blood_request__hospital_id=principal.id, blood_request__status__in=list(statuses))
        .order_by('accepted_at', 'id')
    )
    roster: dict[str, dict] = {}

    def entry(key: str, **base) -> dict:
        if key not in roster:
            roster[key] = {**base, 'donations': [], 'totalDonations': 0,
                           'firstDonation': None, 'lastDonation': None}
        return roster[key]

    def touch(e: dict, when) -> None:
        e['totalDonations'] += 1
        if when is None:
            return
        if e['firstDonation'] is None or when < e['firstDonation']:
            e['firstDonation'] = when
        if e['lastDonation'] is None or when > e['lastDonation']:
            e['lastDonation'] = when

    for a in acceptances:
        req = a.blood_request
        e = entry(a.donor.email.lower(), donorId=a.donor_id, name=a.donor_name,
                  email=a.donor.email, phone=a.donor_phone, bloodGroup=a.donor_blood_group)
        e['donations'].append({
            'type': 'request',
            'requestId': req.id,
            'patientName': req.patient_name,
            'bloodGroup': req.blood_group,
            'status': req.status,
            'urgency': req.urgency,
            'acceptedAt': _ts(a.accepted_at),
            'completedAt': _ts(req.completed_at),
        })
        touch(e, req.completed_at)

    for d in DirectDonation.objects.filter(hospital_id=principal.id).order_by('donated_at', 'id'):
        e = entry(d.donor_email, donorId=d.donor_id, name=d.donor_name,
                  email=d.donor_email, phone=d.donor_phone, bloodGroup=d.blood_group)
        e['donations'].append({
            'type': 'direct',
            'id': d.id,
            'bloodGroup': d.blood_group,
            'status': BloodRequest.STATUS_COMPLETED,
            'completedAt': _ts(d.donated_at),
        })
        touch(e, d.donated_at)

    entries = sorted(roster.values(), key=lambda e: (-e['totalDonations'], e['name'].lower()))
    for e in entries:
        e['firstDonation'] = _ts(e['firstDonation'])
        e['lastDonation'] = _ts(e['lastDonation'])
    return entries


def donor_stats(principal: DonorPrincipal) -> dict:
    """Completed donation totals, recent donations and earned badges."""
    if not isinstance(principal, DonorPrincipal):
        raise Forbidden('Only donors have donation statistics.')
    completed = (
        Acceptance.objects.select_related('blood_request', 'blood_request__hospital__hospital_profile')
        .filter(donor_id=principal.id, blood_request__status=BloodRequest.STATUS_COMPLETED)
    )
    direct = DirectDonation.objects.select_related('hospital__hospital_profile').filter(donor_id=principal.id)

    recent = [
        {
            'type': 'request',
            'requestId': a.blood_request_id,
            'hospitalName': _hospital_name(a.blood_request.hospital),
            'bloodGroup': a.blood_request.blood_group,
            'date': _ts(a.blood_request.completed_at),
        }
        for a in completed
    ] + [
        {
            'type': 'direct',
            'id': d.id,
            'hospitalName': _hospital_name(d.hospital),
            'bloodGroup': d.blood_group,
            'date': _ts(d.donated_at),
        }
        for d in direct
    ]
    recent.sort(key=lambda r: r['date'] or '', reverse=True)
    total = len(recent)
    return {
        'totalDonations': total,
        'activeAcceptances': Acceptance.objects.filter(
            donor_id=principal.id,
            blood_request__status__in=[
                BloodRequest.STATUS_PENDING,
                BloodRequest.STATUS_ACCEPTED,
                BloodRequest.STATUS_ON_THE_WAY,
                BloodRequest.STATUS_CONFIRMED,
            ],
        ).count(),
        'lastDonationDate': _ts(principal.profile.last_donation_date),
        'recentDonations': recent[:5],
        'badges': badges_for(total),
    }


def _hospital_name(user: User) -> str:
    profile = getattr(user, 'hospital_profile', None)
    return profile.hospital_name if profile else user.display_name
