import itertools

import pytest
from django.utils import timezone

from core.exceptions import AlreadyFinalized, Forbidden, InvalidProfile, InvalidTransition, NotFound, NotVerified
from core.models import BloodRequest, DonorProfile, RequestTransition
from core.services import lifecycle
from core.tests.factories import as_principal, make_admin, make_donor, make_hospital, make_request

pytestmark = pytest.mark.django_db

ALL_STATUSES = [s for s, _ in BloodRequest.STATUS_CHOICES]
FORWARD = ['pending', 'accepted', 'on_the_way', 'confirmed', 'completed']


def _force_status(req, status):
    BloodRequest.objects.filter(pk=req.pk).update(status=status)
    req.refresh_from_db()
    return req


def _statuses(req):
    return list(
        RequestTransition.objects.filter(blood_request=req).order_by('timestamp', 'id').values_list('to_status', flat=True)
    )


def test_two_donors_accept_then_confirm_and_complete():
    hospital = make_hospital()
    req = make_request(hospital, blood_group='O+', units=2)
    d1 = make_donor(blood_group='O+')
    d2 = make_donor(blood_group='O-')

    r1, _ = lifecycle.accept(req.id, as_principal(d1))
    assert r1.status == 'accepted'
    r2, _ = lifecycle.accept(req.id, as_principal(d2))
    assert r2.status == 'accepted'
    assert [a.donor_id for a in r2.acceptances.all()] == [d1.id, d2.id]

    assert lifecycle.confirm(req.id, as_principal(hospital)).status == 'confirmed'
    done = lifecycle.complete(req.id, as_principal(hospital))
    assert done.status == 'completed'
    assert done.completed_at is not None

    for attempt in (
        lambda: lifecycle.confirm(req.id, as_principal(hospital)),
        lambda: lifecycle.complete(req.id, as_principal(hospital)),
        lambda: lifecycle.cancel(req.id, as_principal(hospital)),
        lambda: lifecycle.accept(req.id, as_principal(make_donor(blood_group='O-'))),
    ):
        with pytest.raises(AlreadyFinalized):
            attempt()
    assert _statuses(req) == ['pending', 'accepted', 'confirmed', 'completed']


def test_completion_credits_every_accepted_donor():
    hospital = make_hospital()
    req = make_request(hospital)
    donors = [make_donor(blood_group='O+', donation_count=2), make_donor(blood_group='O-')]
    for d in donors:
        lifecycle.accept(req.id, as_principal(d))
    lifecycle.confirm(req.id, as_principal(hospital))
    lifecycle.complete(req.id, as_principal(hospital))

    counts = dict(DonorProfile.objects.filter(user__in=donors).values_list('user_id', 'donation_count'))
    assert counts == {donors[0].id: 3, donors[1].id: 1}
    assert all(p.last_donation_date == timezone.localdate()
               for p in DonorProfile.objects.filter(user__in=donors))


def test_full_forward_path_through_on_the_way():
    hospital = make_hospital()
    donor = make_donor()
    req = make_request(hospital)
    lifecycle.accept(req.id, as_principal(donor))
    assert lifecycle.mark_on_the_way(req.id, as_principal(donor)).status == 'on_the_way'
    # A second donor may still join while the first is en route
    late, _ = lifecycle.accept(req.id, as_principal(make_donor(blood_group='O-')))
    assert late.status == 'on_the_way'
    assert lifecycle.confirm(req.id, as_principal(hospital)).status == 'confirmed'
    assert lifecycle.complete(req.id, as_principal(hospital)).status == 'completed'
    assert _statuses(req) == FORWARD


def test_every_status_pair_outside_the_graph_is_rejected():
    hospital = make_hospital()
    admin = as_principal(make_admin())
    allowed = {(src, dst) for src, dsts in lifecycle.TRANSITIONS.items() for dst in dsts}
    for src, dst in itertools.product(ALL_STATUSES, ALL_STATUSES):
        if (src, dst) in allowed:
            continue
        req = _force_status(make_request(hospital), src)
        expected = AlreadyFinalized if src in ('completed', 'cancelled') else InvalidTransition
        with pytest.raises(expected) as exc:
            lifecycle.set_status(req.id, dst, admin)
        if expected is InvalidTransition:
            assert (exc.value.current, exc.value.attempted) == (src, dst)
        req.refresh_from_db()
        assert req.status == src
        assert req.version == 0


def test_confirmed_request_cannot_be_cancelled_or_accepted():
    hospital = make_hospital()
    donor = make_donor()
    req = make_request(hospital)
    lifecycle.accept(req.id, as_principal(donor))
    lifecycle.confirm(req.id, as_principal(hospital))

    with pytest.raises(InvalidTransition) as exc:
        lifecycle.cancel(req.id, as_principal(hospital))
    assert exc.value.current == 'confirmed'
    with pytest.raises(InvalidTransition):
        lifecycle.accept(req.id, as_principal(make_donor(blood_group='O-')))


def test_pending_request_cannot_skip_to_confirm():
    hospital = make_hospital()
    req = make_request(hospital)
    with pytest.raises(InvalidTransition) as exc:
        lifecycle.confirm(req.id, as_principal(hospital))
    assert (exc.value.current, exc.value.attempted) == ('pending', 'confirmed')
    with pytest.raises(InvalidTransition):
        lifecycle.mark_on_the_way(req.id, as_principal(hospital))


def test_donor_cannot_accept_twice():
    hospital = make_hospital()
    donor = make_donor()
    req = make_request(hospital)
    lifecycle.accept(req.id, as_principal(donor))
    with pytest.raises(InvalidTransition):
        lifecycle.accept(req.id, as_principal(donor))
    assert BloodRequest.objects.get(pk=req.pk).acceptances.count() == 1


def test_incompatible_or_unavailable_donor_cannot_accept():
    hospital = make_hospital()
    req = make_request(hospital, blood_group='O-')
    with pytest.raises(Forbidden):
        lifecycle.accept(req.id, as_principal(make_donor(blood_group='A+')))
    with pytest.raises(Forbidden):
        lifecycle.accept(req.id, as_principal(make_donor(blood_group='O-', available=False)))
    assert BloodRequest.objects.get(pk=req.pk).status == 'pending'


def test_only_donors_accept():
    hospital = make_hospital()
    req = make_request(hospital)
    for who in (hospital, make_admin()):
        with pytest.raises(Forbidden):
            lifecycle.accept(req.id, as_principal(who))


def test_other_hospital_cannot_drive_request():
    owner = make_hospital()
    other = as_principal(make_hospital())
    req = make_request(owner)
    lifecycle.accept(req.id, as_principal(make_donor()))
    for op in (lifecycle.confirm, lifecycle.complete, lifecycle.cancel, lifecycle.mark_on_the_way):
        with pytest.raises(Forbidden):
            op(req.id, other)
    with pytest.raises(Forbidden):
        lifecycle.get_request(req.id, other)


def test_donor_cannot_confirm_or_complete():
    hospital = make_hospital()
    donor = make_donor()
    req = make_request(hospital)
    lifecycle.accept(req.id, as_principal(donor))
    with pytest.raises(Forbidden):
        lifecycle.confirm(req.id, as_principal(donor))
    with pytest.raises(Forbidden):
        lifecycle.complete(req.id, as_principal(donor))


def test_accepted_donor_may_cancel_but_bystander_may_not():
    hospital = make_hospital()
    donor = make_donor()
    bystander = make_donor(blood_group='O-')
    req = make_request(hospital)
    lifecycle.accept(req.id, as_principal(donor))

    with pytest.raises(Forbidden):
        lifecycle.cancel(req.id, as_principal(bystander))
    with pytest.raises(Forbidden):
        lifecycle.mark_on_the_way(req.id, as_principal(bystander))

    done = lifecycle.cancel(req.id, as_principal(donor), reason='<b>Unwell</b> today')
    assert done.status == 'cancelled'
    assert done.cancel_reason == 'Unwell today'
    assert done.cancelled_at is not None


def test_unavailable_donor_cannot_cancel_or_go_en_route():
    hospital = make_hospital()
    donor = make_donor()
    req = make_request(hospital)
    lifecycle.accept(req.id, as_principal(donor))
    DonorProfile.objects.filter(user=donor).update(available=False)

    for op in (lifecycle.cancel, lifecycle.mark_on_the_way):
        with pytest.raises(Forbidden):
            op(req.id, as_principal(donor))
    assert BloodRequest.objects.get(pk=req.pk).status == 'accepted'

    DonorProfile.objects.filter(user=donor).update(available=True)
    assert lifecycle.mark_on_the_way(req.id, as_principal(donor)).status == 'on_the_way'


def test_admin_overrides_ownership():
    hospital = make_hospital()
    admin = as_principal(make_admin())
    req = make_request(hospital)
    lifecycle.accept(req.id, as_principal(make_donor()))
    assert lifecycle.set_status(req.id, 'on_the_way', admin).status == 'on_the_way'
    assert lifecycle.confirm(req.id, admin).status == 'confirmed'
    assert lifecycle.set_status(req.id, 'completed', admin, reason='closed by ops').status == 'completed'
    last = RequestTransition.objects.filter(blood_request=req).order_by('-id').first()
    assert last.reason == 'closed by ops'
    assert last.operator_id == admin.id


def test_set_status_is_admin_only_and_validates_target():
    hospital = make_hospital()
    req = make_request(hospital)
    with pytest.raises(Forbidden):
        lifecycle.set_status(req.id, 'cancelled', as_principal(hospital))
    with pytest.raises(InvalidProfile):
        lifecycle.set_status(req.id, 'lost', as_principal(make_admin()))


def test_missing_request_is_not_found():
    with pytest.raises(NotFound):
        lifecycle.confirm(999999, as_principal(make_hospital()))


def test_stale_version_does_not_apply():
    hospital = make_hospital()
    req = make_request(hospital)
    stale = BloodRequest.objects.get(pk=req.pk)
    # Someone else moves the row first
    lifecycle.cancel(req.id, as_principal(hospital))

    now = timezone.now()
    assert lifecycle._cas(stale, now, status='accepted') is False
    fresh = BloodRequest.objects.get(pk=req.pk)
    assert fresh.status == 'cancelled'
    assert fresh.version == 1


def test_every_transition_bumps_version():
    hospital = make_hospital()
    req = make_request(hospital)
    assert req.version == 0
    r, _ = lifecycle.accept(req.id, as_principal(make_donor()))
    assert r.version == 1
    r, _ = lifecycle.accept(req.id, as_principal(make_donor(blood_group='O-')))
    assert r.version == 2
    assert lifecycle.confirm(req.id, as_principal(hospital)).version == 3


# ---------------------------------------------------------------------
# Creation
# ---------------------------------------------------------------------
def test_unverified_or_unapproved_hospital_cannot_create():
    for hospital in (make_hospital(verified=False), make_hospital(approved=False)):
        with pytest.raises(NotVerified):
            make_request(hospital)
    assert BloodRequest.objects.count() == 0


def test_create_validates_and_sanitises():
    hospital = make_hospital()
    req = make_request(hospital, blood_group='ab-', units=3, urgency='critical',
                       notes='<script>x</script>Bring ID', patientName='<i>Sam</i>')
    assert req.blood_group == 'AB-'
    assert req.status == 'pending'
    assert req.notes == 'xBring ID'
    assert req.patient_name == 'Sam'
    for bad in ({'units': 0}, {'units': 11}, {'urgency': 'whenever'}):
        with pytest.raises(InvalidProfile):
            make_request(hospital, **bad)


def test_only_hospitals_create():
    with pytest.raises(Forbidden):
        make_request(make_donor())
    with pytest.raises(Forbidden):
        make_request(make_admin())


def test_free_text_loses_all_markup_but_keeps_ampersands():
    hospital = make_hospital()
    req = make_request(hospital, notes='<a href="http://x.test">Call</a> Ward 3 & <b>bring</b> <i>ID</i>',
                       patientName='<em>Sam</em> &amp; Co')
    assert req.notes == 'Call Ward 3 & bring ID'
    assert req.patient_name == 'Sam & Co'

    done = lifecycle.cancel(req.id, as_principal(hospital), reason='<img src=x onerror=alert(1)>Duplicate &lt;b&gt;')
    assert done.cancel_reason == 'Duplicate &lt;b&gt;'
