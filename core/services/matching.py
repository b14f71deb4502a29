"""
Donor matching and eligibility.

Compatibility is an explicit donor -> recipient table over the eight
ABO/Rh groups rather than a rule derived at runtime.  Ranking puts the
nearest eligible donors first, breaking ties by fewer past donations and
then by account age.  Donors (or hospitals) without a coordinate sort
after everyone who has one.
"""
from __future__ import annotations

import math
from typing import Iterable, Optional

from core.exceptions import InvalidBloodGroup
from core.models import BLOOD_GROUPS, BloodRequest, DonorProfile, User

EARTH_RADIUS_KM = 6371.0

# COMPATIBILITY[donor][recipient]
_Y, _N = True, False
COMPATIBILITY: dict[str, dict[str, bool]] = {
    #          A+  A-  B+  B-  AB+ AB- O+  O-
    'A+':  dict(zip(BLOOD_GROUPS, (_Y, _N, _N, _N, _Y, _N, _N, _N))),
    'A-':  dict(zip(BLOOD_GROUPS, (_Y, _Y, _N, _N, _Y, _Y, _N, _N))),
    'B+':  dict(zip(BLOOD_GROUPS, (_N, _N, _Y, _N, _Y, _N, _N, _N))),
    'B-':  dict(zip(BLOOD_GROUPS, (_N, _N, _Y, _Y, _Y, _Y, _N, _N))),
    'AB+': dict(zip(BLOOD_GROUPS, (_N, _N, _N, _N, _Y, _N, _N, _N))),
    'AB-': dict(zip(BLOOD_GROUPS, (_N, _N, _N, _N, _Y, _Y, _N, _N))),
    'O+':  dict(zip(BLOOD_GROUPS, (_Y, _N, _Y, _N, _Y, _N, _Y, _N))),
    'O-':  dict(zip(BLOOD_GROUPS, (_Y, _Y, _Y, _Y, _Y, _Y, _Y, _Y))),
}


def check_blood_group(value) -> str:
    group = str(value or '').strip().upper()
    if group not in BLOOD_GROUPS:
        raise InvalidBloodGroup(value)
    return group


def is_compatible(donor_group: str, recipient_group: str) -> bool:
    donor = check_blood_group(donor_group)
    recipient = check_blood_group(recipient_group)
    return COMPATIBILITY[donor][recipient]


def donor_groups_for(recipient_group: str) -> list[str]:
    """Groups that can give to ``recipient_group``."""
    recipient = check_blood_group(recipient_group)
    return [d for d in BLOOD_GROUPS if COMPATIBILITY[d][recipient]]


def recipient_groups_for(donor_group: str) -> list[str]:
    """Groups that ``donor_group`` can give to."""
    donor = check_blood_group(donor_group)
    return [r for r in BLOOD_GROUPS if COMPATIBILITY[donor][r]]


def haversine_km(lat1: Optional[float], lng1: Optional[float],
                 lat2: Optional[float], lng2: Optional[float]) -> Optional[float]:
    """Great-circle distance in kilometres, or None if any point is missing."""
    if None in (lat1, lng1, lat2, lng2):
        return None
    p1, p2 = math.radians(lat1), math.radians(lat2)
    dp = p2 - p1
    dl = math.radians(lng2 - lng1)
    a = math.sin(dp / 2) ** 2 + math.cos(p1) * math.cos(p2) * math.sin(dl / 2) ** 2
    return 2 * EARTH_RADIUS_KM * math.asin(min(1.0, math.sqrt(a)))


def eligible_donors(blood_group: str):
    """Queryset of donor profiles that may give to ``blood_group``."""
    return (
        DonorProfile.objects.select_related('user')
        .filter(
            user__role=User.ROLE_DONOR,
            user__is_verified=True,
            user__is_active=True,
            available=True,
            blood_group__in=donor_groups_for(blood_group),
        )
    )


def rank_donors(profiles: Iterable[DonorProfile], origin: tuple[Optional[float], Optional[float]]
                ) -> list[tuple[DonorProfile, Optional[float]]]:
    """Order donors by distance, then donation count, then join date."""
    lat, lng = origin
    scored = [(p, haversine_km(lat, lng, p.latitude, p.longitude)) for p in profiles]
    scored.sort(key=lambda s: (
        s[1] is None,
        s[1] if s[1] is not None else 0.0,
        s[0].donation_count,
        s[0].user.date_joined,
        s[0].user_id,
    ))
    return scored


def match_donors(blood_request: BloodRequest) -> list[tuple[DonorProfile, Optional[float]]]:
    """Eligible donors for a request, best first, excluding those already accepted."""
    hospital = getattr(blood_request.hospital, 'hospital_profile', None)
    origin = (hospital.latitude, hospital.longitude) if hospital else (None, None)
    accepted = blood_request.acceptances.values_list('donor_id', flat=True)
    profiles = eligible_donors(blood_request.blood_group).exclude(user_id__in=accepted)
    return rank_donors(profiles, origin)


def format_match(profile: DonorProfile, distance_km: Optional[float]) -> dict:
    return {
        'donorId': profile.user_id,
        'name': profile.user.display_name,
        'email': profile.user.email,
        'phone': profile.phone,
        'bloodGroup': profile.blood_group,
        'donationCount': profile.donation_count,
        'lastDonationDate': profile.last_donation_date.isoformat() if profile.last_donation_date else None,
        'distanceKm': round(distance_km, 2) if distance_km is not None else None,
    }


def compatible_requests(donor: DonorProfile):
    """Open requests the donor could serve, as ``(request, distance_km)`` pairs.

    Critical requests come first, then nearer ones, then newer ones.
    Requests the donor already accepted are left out.
    """
    qs = (
        BloodRequest.objects.select_related('hospital', 'hospital__hospital_profile')
        .filter(
            status__in=[
                BloodRequest.STATUS_PENDING,
                BloodRequest.STATUS_ACCEPTED,
                BloodRequest.STATUS_ON_THE_WAY,
            ],
            blood_group__in=recipient_groups_for(donor.blood_group),
            hospital__is_active=True,
        )
        .exclude(acceptances__donor_id=donor.user_id)
    )
    scored = []
    for req in qs:
        hp = getattr(req.hospital, 'hospital_profile', None)
        distance = haversine_km(donor.latitude, donor.longitude,
                                hp.latitude if hp else None, hp.longitude if hp else None)
        scored.append((req, distance))
    scored.sort(key=lambda s: (
        s[0].urgency != 'critical',
        s[1] is None,
        s[1] if s[1] is not None else 0.0,
        -s[0].created_at.timestamp(),
        -s[0].id,
    ))
    return scored
