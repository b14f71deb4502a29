"""
Races between concurrent lifecycle calls.

The interleaving tests pause a call between reading the request row and
writing it, run the competing call in that gap, and so run on every
backend.  The threaded tests need real row locks and only run against a
database with SELECT ... FOR UPDATE (PostgreSQL via DATABASE_URL).
"""
import threading

import pytest
from django.db import connection
from django.test import TransactionTestCase, skipUnlessDBFeature

from core.exceptions import AlreadyFinalized, DomainError, InvalidTransition
from core.models import Acceptance, BloodRequest, DonorProfile, RequestTransition
from core.services import lifecycle

from core.tests.factories import as_principal, make_donor, make_hospital, make_request


def _interleave(monkeypatch, competing):
    """Run ``competing()`` right after the next row read, then hand back the stale row."""
    real = lifecycle._locked
    pending = [competing]

    def locked(request_id):
        row = real(request_id)
        if pending:
            pending.pop()()
        return row
    monkeypatch.setattr(lifecycle, '_locked', locked)


@pytest.mark.django_db
def test_accept_between_read_and_write_still_appends(monkeypatch):
    hospital = make_hospital()
    req = make_request(hospital, units=5)
    others = [as_principal(make_donor(blood_group=g)) for g in ('O+', 'O-', 'O+')]
    late = as_principal(make_donor(blood_group='O-'))

    def others_accept():
        for p in others:
            lifecycle.accept(req.id, p)
    _interleave(monkeypatch, others_accept)

    r, acceptance = lifecycle.accept(req.id, late)
    assert acceptance.donor_id == late.id
    assert r.status == 'accepted'
    assert r.version == 4
    assert Acceptance.objects.filter(blood_request=req).count() == 4
    assert RequestTransition.objects.filter(blood_request=req, to_status='accepted').count() == 1


@pytest.mark.django_db
def test_accept_after_competing_terminal_move_is_refused(monkeypatch):
    hospital = make_hospital()
    req = make_request(hospital)
    donor = as_principal(make_donor())
    _interleave(monkeypatch, lambda: lifecycle.cancel(req.id, as_principal(hospital)))

    with pytest.raises(AlreadyFinalized) as exc:
        lifecycle.accept(req.id, donor)
    assert exc.value.current == 'cancelled'
    assert not Acceptance.objects.filter(blood_request=req).exists()


@pytest.mark.django_db
def test_confirm_between_read_and_write_has_one_winner(monkeypatch):
    hospital = make_hospital()
    req = make_request(hospital)
    lifecycle.accept(req.id, as_principal(make_donor()))
    principal = as_principal(hospital)
    _interleave(monkeypatch, lambda: lifecycle.confirm(req.id, principal))

    with pytest.raises(InvalidTransition) as exc:
        lifecycle.confirm(req.id, principal)
    assert exc.value.current == 'confirmed'
    fresh = BloodRequest.objects.get(pk=req.pk)
    assert fresh.status == 'confirmed'
    assert fresh.version == 2
    assert RequestTransition.objects.filter(blood_request=req, to_status='confirmed').count() == 1


@pytest.mark.django_db
def test_complete_between_read_and_write_credits_once(monkeypatch):
    hospital = make_hospital()
    donor = make_donor()
    req = make_request(hospital)
    lifecycle.accept(req.id, as_principal(donor))
    lifecycle.confirm(req.id, as_principal(hospital))
    principal = as_principal(hospital)
    _interleave(monkeypatch, lambda: lifecycle.complete(req.id, principal))

    with pytest.raises(AlreadyFinalized):
        lifecycle.complete(req.id, principal)
    assert BloodRequest.objects.get(pk=req.pk).status == 'completed'
    assert DonorProfile.objects.get(user=donor).donation_count == 1


def _race(*calls):
    barrier = threading.Barrier(len(calls))
    results = [None] * len(calls)

    def run(i, fn):
        try:
            barrier.wait()
            results[i] = fn()
        except DomainError as e:
            results[i] = e
        finally:
            connection.close()

    threads = [threading.Thread(target=run, args=(i, fn)) for i, fn in enumerate(calls)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    return results


@skipUnlessDBFeature('has_select_for_update')
class LifecycleRaceTests(TransactionTestCase):
    def test_concurrent_accepts_all_recorded(self):
        hospital = make_hospital()
        req = make_request(hospital)
        donors = [make_donor(blood_group=g) for g in ('O+', 'O-', 'O+', 'O-')]
        results = _race(*[
            (lambda d=d: lifecycle.accept(req.id, as_principal(d))) for d in donors
        ])
        self.assertFalse([r for r in results if isinstance(r, DomainError)])
        req.refresh_from_db()
        self.assertEqual(req.status, 'accepted')
        self.assertEqual(req.version, len(donors))
        self.assertEqual(Acceptance.objects.filter(blood_request=req).count(), len(donors))
        self.assertEqual(RequestTransition.objects.filter(blood_request=req, to_status='accepted').count(), 1)

    def test_double_confirm_has_one_winner(self):
        hospital = make_hospital()
        req = make_request(hospital)
        lifecycle.accept(req.id, as_principal(make_donor()))
        principal = as_principal(hospital)

        results = _race(
            lambda: lifecycle.confirm(req.id, principal),
            lambda: lifecycle.confirm(req.id, principal),
        )
        self.assertEqual(len([r for r in results if isinstance(r, BloodRequest)]), 1)
        loser = next(r for r in results if isinstance(r, DomainError))
        self.assertEqual(loser.default_code, 'invalid_transition')
        self.assertEqual(BloodRequest.objects.get(pk=req.pk).version, 2)

    def test_double_complete_has_one_winner(self):
        hospital = make_hospital()
        req = make_request(hospital)
        lifecycle.accept(req.id, as_principal(make_donor()))
        lifecycle.confirm(req.id, as_principal(hospital))
        principal = as_principal(hospital)

        results = _race(
            lambda: lifecycle.complete(req.id, principal),
            lambda: lifecycle.complete(req.id, principal),
        )
        winners = [r for r in results if isinstance(r, BloodRequest)]
        self.assertEqual(len(winners), 1)
        self.assertEqual(BloodRequest.objects.get(pk=req.pk).status, 'completed')
        self.assertEqual(RequestTransition.objects.filter(blood_request=req, to_status='completed').count(), 1)
