import datetime as dt

import pytest
from django.utils import timezone

from core.exceptions import InvalidBloodGroup
from core.models import BLOOD_GROUPS
from core.services import matching
from core.tests.factories import as_principal, make_donor, make_hospital, make_request

pytestmark = pytest.mark.django_db


# ---------------------------------------------------------------------
# Compatibility table
# ---------------------------------------------------------------------
EXPECTED = {
    'O-': {'O-', 'O+', 'A-', 'A+', 'B-', 'B+', 'AB-', 'AB+'},
    'O+': {'O+', 'A+', 'B+', 'AB+'},
    'A-': {'A-', 'A+', 'AB-', 'AB+'},
    'A+': {'A+', 'AB+'},
    'B-': {'B-', 'B+', 'AB-', 'AB+'},
    'B+': {'B+', 'AB+'},
    'AB-': {'AB-', 'AB+'},
    'AB+': {'AB+'},
}


@pytest.mark.parametrize('donor', BLOOD_GROUPS)
def test_table_matches_standard_abo_rh_rules(donor):
    assert set(matching.recipient_groups_for(donor)) == EXPECTED[donor]
    for recipient in BLOOD_GROUPS:
        assert matching.is_compatible(donor, recipient) is (recipient in EXPECTED[donor])


def test_universal_donor_and_recipient():
    assert matching.recipient_groups_for('O-') == list(BLOOD_GROUPS)
    assert matching.recipient_groups_for('AB+') == ['AB+']
    assert set(matching.donor_groups_for('AB+')) == set(BLOOD_GROUPS)
    assert matching.donor_groups_for('O-') == ['O-']


def test_a_positive_recipient_receives_from_four_groups():
    assert set(matching.donor_groups_for('A+')) == {'A+', 'A-', 'O+', 'O-'}


@pytest.mark.parametrize('bad', ['C+', '', None, 'O', 'A+B'])
def test_unknown_blood_group_rejected(bad):
    with pytest.raises(InvalidBloodGroup):
        matching.check_blood_group(bad)


def test_blood_group_case_and_whitespace_normalised():
    assert matching.check_blood_group(' ab+ ') == 'AB+'


# ---------------------------------------------------------------------
# Distance
# ---------------------------------------------------------------------
def test_haversine_known_distance():
    # London -> Paris is roughly 344 km
    d = matching.haversine_km(51.5074, -0.1278, 48.8566, 2.3522)
    assert 340 < d < 348


def test_haversine_missing_coordinate_is_none():
    assert matching.haversine_km(None, 0.0, 1.0, 1.0) is None
    assert matching.haversine_km(1.0, 1.0, 1.0, None) is None
    assert matching.haversine_km(10.0, 10.0, 10.0, 10.0) == pytest.approx(0.0)


# ---------------------------------------------------------------------
# Ranking
# ---------------------------------------------------------------------
def test_ranking_by_distance_then_load_then_age():
    hospital = make_hospital(lat=12.97, lng=77.59)
    req = make_request(hospital, blood_group='A+')
    t0 = timezone.now() - dt.timedelta(days=30)

    far = make_donor(blood_group='O-', lat=13.50, lng=77.59, joined=t0)
    near = make_donor(blood_group='A+', lat=12.98, lng=77.59, joined=t0)
    # Same spot: fewer donations first, then the older account
    tie_busy = make_donor(blood_group='A-', lat=13.10, lng=77.59, donation_count=4, joined=t0)
    tie_new = make_donor(blood_group='O+', lat=13.10, lng=77.59, donation_count=1, joined=t0 + dt.timedelta(days=2))
    tie_old = make_donor(blood_group='A+', lat=13.10, lng=77.59, donation_count=1, joined=t0 + dt.timedelta(days=1))
    nowhere = make_donor(blood_group='A+', joined=t0 - dt.timedelta(days=300))

    ranked = matching.match_donors(req)
    assert [p.user_id for p, _ in ranked] == [
        near.id, tie_old.id, tie_new.id, tie_busy.id, far.id, nowhere.id,
    ]
    assert ranked[-1][1] is None
    assert ranked[0][1] < ranked[-2][1]


def test_ranking_excludes_ineligible_donors():
    hospital = make_hospital(lat=0.0, lng=0.0)
    req = make_request(hospital, blood_group='O-')
    ok = make_donor(blood_group='O-', lat=0.1, lng=0.1)
    make_donor(blood_group='O+', lat=0.1, lng=0.1)                     # incompatible
    make_donor(blood_group='O-', verified=False)                       # unverified
    make_donor(blood_group='O-', active=False)                         # deactivated
    make_donor(blood_group='O-', available=False)                      # unavailable

    assert [p.user_id for p, _ in matching.match_donors(req)] == [ok.id]


def test_hospital_without_coordinate_ranks_by_load_only():
    hospital = make_hospital()
    req = make_request(hospital, blood_group='B+')
    busy = make_donor(blood_group='B+', lat=1.0, lng=1.0, donation_count=3)
    fresh = make_donor(blood_group='O-', lat=2.0, lng=2.0, donation_count=0)

    ranked = matching.match_donors(req)
    assert [p.user_id for p, _ in ranked] == [fresh.id, busy.id]
    assert all(d is None for _, d in ranked)


def test_accepted_donor_drops_out_of_matches():
    from core.services import lifecycle

    hospital = make_hospital()
    req = make_request(hospital, blood_group='O+')
    d1 = make_donor(blood_group='O+')
    d2 = make_donor(blood_group='O-')
    lifecycle.accept(req.id, as_principal(d1))

    assert [p.user_id for p, _ in matching.match_donors(req)] == [d2.id]


# ---------------------------------------------------------------------
# Donor feed
# ---------------------------------------------------------------------
def test_compatible_feed_orders_critical_then_nearest():
    near_hosp = make_hospital(lat=10.0, lng=10.0)
    far_hosp = make_hospital(lat=20.0, lng=20.0)
    donor = make_donor(blood_group='O+', lat=10.01, lng=10.0)

    far_critical = make_request(far_hosp, blood_group='AB+', urgency='critical')
    near_high = make_request(near_hosp, blood_group='A+', urgency='high')
    far_low = make_request(far_hosp, blood_group='O+', urgency='low')
    make_request(near_hosp, blood_group='O-')          # O+ cannot give to O-

    feed = matching.compatible_requests(as_principal(donor).profile)
    assert [r.id for r, _ in feed] == [far_critical.id, near_high.id, far_low.id]


def test_compatible_feed_skips_closed_and_already_accepted():
    from core.services import lifecycle

    hospital = make_hospital()
    donor = make_donor(blood_group='O-')
    accepted = make_request(hospital, blood_group='O+')
    cancelled = make_request(hospital, blood_group='O+')
    open_req = make_request(hospital, blood_group='B-')
    lifecycle.accept(accepted.id, as_principal(donor))
    lifecycle.cancel(cancelled.id, as_principal(hospital))

    feed = matching.compatible_requests(as_principal(donor).profile)
    assert [r.id for r, _ in feed] == [open_req.id]
