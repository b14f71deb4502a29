from typing import Optional

from django.db.models import Count, Sum

from core.models import BLOOD_GROUPS, Acceptance, BloodRequest, DirectDonation, DonorProfile, HospitalProfile, User


def _status_counts(qs) -> dict:
    counts = {s: 0 for s, _ in BloodRequest.STATUS_CHOICES}
    for row in qs.values('status').annotate(n=Count('id')):
        counts[row['status']] = row['n']
    return counts


def _group_counts(qs, field: str = 'blood_group') -> dict:
    counts = {g: 0 for g in BLOOD_GROUPS}
    for row in qs.values(field).annotate(n=Count('id')):
        counts[row[field]] = row['n']
    return counts


def request_kpis(hospital_id: Optional[int] = None) -> dict:
    """Request counts by status, blood group and urgency, optionally for one hospital."""
    qs = BloodRequest.objects.all()
    acceptances = Acceptance.objects.all()
    direct = DirectDonation.objects.all()
    if hospital_id is not None:
        qs = qs.filter(hospital_id=hospital_id)
        acceptances = acceptances.filter(blood_request__hospital_id=hospital_id)
        direct = direct.filter(hospital_id=hospital_id)
    by_status = _status_counts(qs)
    total = sum(by_status.values())
    urgency = {u: 0 for u, _ in BloodRequest.URGENCY_CHOICES}
    for row in qs.values('urgency').annotate(n=Count('id')):
        urgency[row['urgency']] = row['n']
    units = qs.filter(status=BloodRequest.STATUS_COMPLETED).aggregate(u=Sum('units_needed'))['u'] or 0
    return {
        'totalRequests': total,
        'byStatus': by_status,
        'byBloodGroup': _group_counts(qs),
        'byUrgency': urgency,
        'completionRate': round(by_status[BloodRequest.STATUS_COMPLETED] / total, 4) if total else 0.0,
        'unitsFulfilled': units,
        'totalAcceptances': acceptances.count(),
        'uniqueDonors': acceptances.values('donor_id').distinct().count(),
        'directDonations': direct.count(),
    }


def admin_dashboard() -> dict:
    users = User.objects.all()
    return {
        'overview': {
            'totalDonors': users.filter(role=User.ROLE_DONOR).count(),
            'totalHospitals': users.filter(role=User.ROLE_HOSPITAL).count(),
            'totalAdmins': users.filter(role=User.ROLE_ADMIN).count(),
            'unverifiedAccounts': users.filter(is_verified=False).count(),
            'inactiveAccounts': users.filter(is_active=False).count(),
            'pendingHospitalApprovals': HospitalProfile.objects.filter(is_approved=False).count(),
            'availableDonors': DonorProfile.objects.filter(
                available=True, user__is_active=True, user__is_verified=True).count(),
        },
        'requests': request_kpis(),
        'donorBloodGroups': _group_counts(DonorProfile.objects.all()),
    }
