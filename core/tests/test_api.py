"""
Integration tests for the BloodBridge API.

These tests drive the HTTP surface end to end: registration with e-mailed
codes, login, the hospital/donor request lifecycle, list pagination and
the shape of error responses.  They use Django REST Framework's
APIClient within the APITestCase base class.

To run the tests:

```
pytest -q core/tests
```
"""
import re

from django.core import mail
from django.urls import reverse
from rest_framework import status
from rest_framework.test import APIClient, APITestCase

from core.models import BloodRequest, RequestTransition, User
from core.tests.factories import PASSWORD, make_admin, make_donor, make_hospital


class RegistrationFlowTests(APITestCase):
    def _code_from_mail(self) -> str:
        return re.search(r'\b(\d{6})\b', mail.outbox[-1].body).group(1)

    def test_donor_registers_verifies_and_logs_in(self):
        client = APIClient()
        r = client.post(reverse('register', args=['donor']), {
            'name': 'Dana Donor', 'email': 'dana@example.com', 'password': PASSWORD, 'bloodGroup': 'O-',
        }, format='json')
        self.assertEqual(r.status_code, status.HTTP_201_CREATED)
        self.assertEqual(r.data['status'], 'pending_verification')
        self.assertTrue(r.data['data']['delivered'])
        self.assertNotIn('otp', r.data['data'])

        # Unverified accounts are refused
        r = client.post(reverse('login', args=['donor']), {'email': 'dana@example.com', 'password': PASSWORD},
                        format='json')
        self.assertEqual(r.status_code, status.HTTP_403_FORBIDDEN)
        self.assertEqual(r.data['error']['code'], 'not_verified')

        r = client.post(reverse('verify_otp'), {
            'email': 'dana@example.com', 'role': 'donor', 'otp': self._code_from_mail(),
        }, format='json')
        self.assertEqual(r.status_code, status.HTTP_200_OK)
        self.assertEqual(r.data['status'], 'verified')
        self.assertTrue(r.data['token'])
        self.assertEqual(r.data['user']['bloodGroup'], 'O-')

        r = client.post(reverse('login', args=['donor']), {'email': 'dana@example.com', 'password': PASSWORD},
                        format='json')
        self.assertEqual(r.status_code, status.HTTP_200_OK)
        for key in ('token', 'jwt_access', 'jwt_refresh'):
            self.assertTrue(r.data[key])
        self.assertEqual(r.data['role'], 'donor')

        client.credentials(HTTP_AUTHORIZATION=f"Token {r.data['token']}")
        me = client.get(reverse('me'))
        self.assertEqual(me.data['data']['email'], 'dana@example.com')

    def test_duplicate_registration_is_conflict(self):
        body = {'name': 'Dana Donor', 'email': 'dana@example.com', 'password': PASSWORD, 'bloodGroup': 'A+'}
        self.client.post(reverse('register', args=['donor']), body, format='json')
        r = self.client.post(reverse('register', args=['donor']), body, format='json')
        self.assertEqual(r.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(r.data['error']['code'], 'duplicate_account')

    def test_register_with_bad_fields_reports_them(self):
        r = self.client.post(reverse('register', args=['donor']), {
            'name': 'D', 'email': 'nope', 'password': PASSWORD, 'bloodGroup': 'Q+',
        }, format='json')
        self.assertEqual(r.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertFalse(r.data['ok'])
        self.assertEqual(r.data['error']['code'], 'invalid_profile')
        self.assertIn('bloodGroup', r.data['error']['fields'])
        self.assertIn('email', r.data['error']['fields'])

    def test_unknown_role_is_not_found(self):
        r = self.client.post(reverse('register', args=['nurse']), {}, format='json')
        self.assertEqual(r.status_code, status.HTTP_404_NOT_FOUND)

    def test_wrong_code_then_resend(self):
        self.client.post(reverse('register', args=['hospital']), {
            'name': 'Hana Admin', 'email': 'h@example.com', 'password': PASSWORD,
            'hospitalName': 'Harbor General', 'address': '1 Harbor Road', 'licenseNumber': 'LIC-99999',
        }, format='json')
        first = self._code_from_mail()
        wrong = '000000' if first != '000000' else '111111'
        r = self.client.post(reverse('verify_otp'), {'email': 'h@example.com', 'role': 'hospital', 'otp': wrong},
                             format='json')
        self.assertEqual(r.data['error']['code'], 'code_mismatch')

        r = self.client.post(reverse('resend_otp'), {'email': 'h@example.com', 'role': 'hospital'}, format='json')
        self.assertEqual(r.status_code, status.HTTP_200_OK)
        self.assertEqual(len(mail.outbox), 2)
        r = self.client.post(reverse('verify_otp'), {
            'email': 'h@example.com', 'role': 'hospital', 'otp': self._code_from_mail(),
        }, format='json')
        self.assertEqual(r.status_code, status.HTTP_200_OK)
        self.assertFalse(r.data['user']['isApproved'])

    def test_combined_login_picks_the_matching_namespace(self):
        hospital = make_hospital(email='shared@example.com')
        r = self.client.post(reverse('login_any'), {'email': 'shared@example.com', 'password': PASSWORD},
                             format='json')
        self.assertEqual(r.status_code, status.HTTP_200_OK)
        self.assertEqual(r.data['user']['id'], hospital.id)

        r = self.client.post(reverse('login_any'), {'email': 'shared@example.com', 'password': 'wrong-one'},
                             format='json')
        self.assertEqual(r.status_code, status.HTTP_401_UNAUTHORIZED)
        self.assertEqual(r.data['error']['code'], 'invalid_credential')

    def test_refresh_returns_new_access_token(self):
        make_donor(email='jwt@example.com')
        r = self.client.post(reverse('login', args=['donor']), {'email': 'jwt@example.com', 'password': PASSWORD},
                             format='json')
        r2 = self.client.post(reverse('refresh'), {'refresh': r.data['jwt_refresh']}, format='json')
        self.assertEqual(r2.status_code, status.HTTP_200_OK)
        self.assertTrue(r2.data['jwt_access'])


class RequestLifecycleAPITests(APITestCase):
    def setUp(self) -> None:
        self.hospital = make_hospital(lat=12.97, lng=77.59)
        self.donor1 = make_donor(blood_group='O+', lat=12.98, lng=77.59)
        self.donor2 = make_donor(blood_group='O-', lat=13.20, lng=77.59)
        self.admin = make_admin()

    def authenticate(self, user: User) -> APIClient:
        """Return an APIClient carrying a session token for ``user``."""
        from rest_framework.authtoken.models import Token

        token, _ = Token.objects.get_or_create(user=user)
        client = APIClient()
        client.credentials(HTTP_AUTHORIZATION=f'Token {token.key}')
        return client

    def _create(self, **body) -> int:
        payload = {'bloodGroup': 'O+', 'unitsNeeded': 2, 'urgency': 'high', **body}
        r = self.authenticate(self.hospital).post(reverse('hospital_requests'), payload, format='json')
        self.assertEqual(r.status_code, status.HTTP_201_CREATED, r.data)
        return r.data['data']['id']

    def test_two_donors_then_confirm_and_complete(self):
        hc = self.authenticate(self.hospital)
        pk = self._create(patientName='Sam')

        matches = hc.get(reverse('hospital_request_matches', args=[pk]))
        self.assertEqual([m['donorId'] for m in matches.data['data']], [self.donor1.id, self.donor2.id])

        feed = self.authenticate(self.donor2).get(reverse('compatible_requests'))
        self.assertEqual([f['id'] for f in feed.data['data']], [pk])

        r1 = self.authenticate(self.donor1).patch(reverse('accept_request', args=[pk]))
        self.assertEqual(r1.status_code, status.HTTP_200_OK)
        self.assertEqual(r1.data['status'], 'accepted')
        r2 = self.authenticate(self.donor2).patch(reverse('accept_request', args=[pk]))
        self.assertEqual(r2.data['status'], 'accepted')
        self.assertEqual(len(r2.data['data']['acceptedDonors']), 2)

        self.assertEqual(hc.patch(reverse('hospital_request_confirm', args=[pk])).data['status'], 'confirmed')
        done = hc.patch(reverse('hospital_request_complete', args=[pk]))
        self.assertEqual(done.data['status'], 'completed')

        again = hc.patch(reverse('hospital_request_complete', args=[pk]))
        self.assertEqual(again.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(again.data['error'], {
            'code': 'already_finalized', 'message': 'Request is already completed.', 'current': 'completed',
        })

        detail = hc.get(reverse('hospital_request_detail', args=[pk]))
        self.assertEqual([h['to'] for h in detail.data['data']['history']],
                         ['pending', 'accepted', 'confirmed', 'completed'])

        stats = self.authenticate(self.donor1).get(reverse('donation_stats'))
        self.assertEqual(stats.data['data']['totalDonations'], 1)
        self.assertTrue(stats.data['data']['badges'][0]['earned'])

    def test_invalid_transition_reports_current_and_attempted(self):
        pk = self._create()
        r = self.authenticate(self.hospital).patch(reverse('hospital_request_confirm', args=[pk]))
        self.assertEqual(r.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(r.data['error']['code'], 'invalid_transition')
        self.assertEqual(r.data['error']['current'], 'pending')
        self.assertEqual(r.data['error']['attempted'], 'confirmed')

    def test_donor_goes_on_the_way_then_cancels(self):
        pk = self._create()
        dc = self.authenticate(self.donor1)
        dc.patch(reverse('accept_request', args=[pk]))
        self.assertEqual(dc.patch(reverse('donor_on_the_way', args=[pk])).data['status'], 'on_the_way')
        r = dc.patch(reverse('donor_cancel', args=[pk]), {'reason': 'Flat tyre'}, format='json')
        self.assertEqual(r.data['status'], 'cancelled')
        self.assertEqual(r.data['data']['cancelReason'], 'Flat tyre')
        mine = dc.get(reverse('my_requests'))
        self.assertEqual(mine.data['data'][0]['status'], 'cancelled')

    def test_incompatible_donor_gets_forbidden(self):
        pk = self._create(bloodGroup='O-')
        r = self.authenticate(self.donor1).patch(reverse('accept_request', args=[pk]))
        self.assertEqual(r.status_code, status.HTTP_403_FORBIDDEN)
        self.assertEqual(r.data['error']['code'], 'forbidden')

    def test_invalid_blood_group_on_create(self):
        r = self.authenticate(self.hospital).post(reverse('hospital_requests'),
                                                  {'bloodGroup': 'XY', 'unitsNeeded': 1}, format='json')
        self.assertEqual(r.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(r.data['error']['code'], 'invalid_blood_group')
        self.assertEqual(r.data['error']['field'], 'bloodGroup')
        self.assertFalse(BloodRequest.objects.exists())

    def test_units_out_of_range_is_validation_error(self):
        r = self.authenticate(self.hospital).post(reverse('hospital_requests'),
                                                  {'bloodGroup': 'A+', 'unitsNeeded': 11}, format='json')
        self.assertEqual(r.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(r.data['error']['code'], 'validation_error')
        self.assertIn('unitsNeeded', r.data['error']['fields'])

    def test_list_is_paginated_and_filterable(self):
        for i in range(12):
            self._create(urgency='critical' if i % 3 == 0 else 'low')
        hc = self.authenticate(self.hospital)

        page1 = hc.get(reverse('hospital_requests'))
        self.assertEqual(len(page1.data['data']), 10)
        self.assertEqual(page1.data['pagination'], {
            'page': 1, 'limit': 10, 'total': 12, 'pages': 2, 'hasNext': True, 'hasPrev': False,
        })
        page2 = hc.get(reverse('hospital_requests'), {'page': 2})
        self.assertEqual(len(page2.data['data']), 2)
        self.assertFalse(page2.data['pagination']['hasNext'])
        # Newest first
        ids = [r['id'] for r in page1.data['data']]
        self.assertEqual(ids, sorted(ids, reverse=True))

        critical = hc.get(reverse('hospital_requests'), {'urgency': 'critical', 'limit': 50})
        self.assertEqual(critical.data['pagination']['total'], 4)

        bad = hc.get(reverse('hospital_requests'), {'limit': 500})
        self.assertEqual(bad.status_code, status.HTTP_400_BAD_REQUEST)

    def test_other_hospital_cannot_see_request(self):
        pk = self._create()
        other = self.authenticate(make_hospital())
        r = other.get(reverse('hospital_request_detail', args=[pk]))
        self.assertEqual(r.status_code, status.HTTP_403_FORBIDDEN)
        r = other.patch(reverse('hospital_request_cancel', args=[pk]))
        self.assertEqual(r.status_code, status.HTTP_403_FORBIDDEN)

    def test_admin_can_override_status(self):
        pk = self._create()
        ac = self.authenticate(self.admin)
        r = ac.put(reverse('admin_request_status', args=[pk]), {'status': 'cancelled', 'reason': 'duplicate'},
                   format='json')
        self.assertEqual(r.status_code, status.HTTP_200_OK)
        self.assertEqual(r.data['status'], 'cancelled')
        t = RequestTransition.objects.filter(blood_request_id=pk).order_by('-id').first()
        self.assertEqual((t.from_status, t.to_status, t.operator_id), ('pending', 'cancelled', self.admin.id))

        listing = ac.get(reverse('admin_requests'), {'status': 'cancelled'})
        self.assertEqual([x['id'] for x in listing.data['data']], [pk])


class HealthTests(APITestCase):
    def test_healthz(self):
        r = self.client.get(reverse('healthz'))
        self.assertEqual(r.status_code, 200)
        self.assertEqual(r.json(), {'ok': True, 'db': True})
