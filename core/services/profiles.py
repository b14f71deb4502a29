from django.db import transaction

from core.exceptions import Forbidden
from core.principals import DonorPrincipal, HospitalPrincipal
from core.services.audit import log_action


@transaction.atomic
def update_donor_profile(principal: DonorPrincipal, data: dict) -> None:
    if not isinstance(principal, DonorPrincipal):
        raise Forbidden('Only donors have a donor profile.')
    user, profile = principal.user, principal.profile
    if 'name' in data:
        user.first_name = data['name']
        user.save(update_fields=['first_name'])
    changed = [k for k in ('phone', 'available') if k in data]
    for k in changed:
        setattr(profile, k, data[k])
    if changed:
        profile.save(update_fields=changed)
    log_action(user=user, action='profile_update', object_type='user', object_id=user.id,
               detail={'fields': sorted(data)})


def update_location(principal: DonorPrincipal, latitude: float, longitude: float) -> None:
    if not isinstance(principal, DonorPrincipal):
        raise Forbidden('Only donors can share a location.')
    profile = principal.profile
    profile.latitude = latitude
    profile.longitude = longitude
    profile.save(update_fields=['latitude', 'longitude'])


@transaction.atomic
def update_hospital_profile(principal: HospitalPrincipal, data: dict) -> None:
    if not isinstance(principal, HospitalPrincipal):
        raise Forbidden('Only hospitals have a hospital profile.')
    user, profile = principal.user, principal.profile
    if 'name' in data:
        user.first_name = data['name']
        user.save(update_fields=['first_name'])
    mapping = {
        'hospitalName': 'hospital_name',
        'address': 'address',
        'contactNumber': 'contact_number',
        'latitude': 'latitude',
        'longitude': 'longitude',
    }
    changed = []
    for key, attr in mapping.items():
        if key in data:
            setattr(profile, attr, data[key])
            changed.append(attr)
    if changed:
        profile.save(update_fields=changed)
    log_action(user=user, action='profile_update', object_type='user', object_id=user.id,
               detail={'fields': sorted(data)})
