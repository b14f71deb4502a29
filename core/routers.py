"""
URL mappings for the BloodBridge API.

All API paths live under ``/api/`` and omit trailing slashes to match the
front-end client.  ``/healthz`` and ``/metrics`` sit at the root for
probes and scrapers.
"""
from django.urls import path, include

from .auth_views import (
    login_any_view,
    login_view,
    logout_view,
    me_view,
    refresh_view,
    register_view,
    resend_otp_view,
    verify_otp_view,
)
from .views import health
from .views.admin import (
    admin_dashboard,
    admin_request_status,
    admin_requests,
    admin_user_detail,
    admin_user_status,
    admin_users,
)
from .views.donor_requests import (
    accept_request,
    compatible_requests,
    donation_stats,
    donor_cancel,
    donor_on_the_way,
    my_requests,
)
from .views.donors import add_direct_donor, hospital_analytics, hospital_donors, hospital_profile
from .views.hospital_requests import (
    hospital_request_cancel,
    hospital_request_complete,
    hospital_request_confirm,
    hospital_request_detail,
    hospital_request_matches,
    hospital_request_on_the_way,
    hospital_requests,
)
from .views.profile import user_location, user_profile

ROLE = '<str:role>'

urlpatterns = [
    path('', include('django_prometheus.urls')),
    path('healthz', health.healthz, name='healthz'),

    # Authentication
    path('api/auth/login', login_any_view, name='login_any'),
    path('api/auth/verify-otp', verify_otp_view, name='verify_otp'),
    path('api/auth/resend-otp', resend_otp_view, name='resend_otp'),
    path('api/auth/me', me_view, name='me'),
    path('api/auth/logout', logout_view, name='logout'),
    path('api/auth/refresh', refresh_view, name='refresh'),
    path(f'api/auth/{ROLE}/register', register_view, name='register'),
    path(f'api/auth/{ROLE}/login', login_view, name='login'),

    # Hospital
    path('api/hospital/requests', hospital_requests, name='hospital_requests'),
    path('api/hospital/requests/<int:pk>', hospital_request_detail, name='hospital_request_detail'),
    path('api/hospital/requests/<int:pk>/matches', hospital_request_matches, name='hospital_request_matches'),
    path('api/hospital/requests/<int:pk>/on-the-way', hospital_request_on_the_way, name='hospital_request_on_the_way'),
    path('api/hospital/requests/<int:pk>/confirm', hospital_request_confirm, name='hospital_request_confirm'),
    path('api/hospital/requests/<int:pk>/complete', hospital_request_complete, name='hospital_request_complete'),
    path('api/hospital/requests/<int:pk>/cancel', hospital_request_cancel, name='hospital_request_cancel'),
    path('api/hospital/donors', hospital_donors, name='hospital_donors'),
    path('api/hospital/donors/add-direct', add_direct_donor, name='add_direct_donor'),
    path('api/hospital/analytics', hospital_analytics, name='hospital_analytics'),
    path('api/hospital/profile', hospital_profile, name='hospital_profile'),

    # Donor / patient
    path('api/requests/compatible', compatible_requests, name='compatible_requests'),
    path('api/requests/my', my_requests, name='my_requests'),
    path('api/requests/stats', donation_stats, name='donation_stats'),
    path('api/requests/<int:pk>/accept', accept_request, name='accept_request'),
    path('api/requests/<int:pk>/on-the-way', donor_on_the_way, name='donor_on_the_way'),
    path('api/requests/<int:pk>/cancel', donor_cancel, name='donor_cancel'),
    path('api/users/profile', user_profile, name='user_profile'),
    path('api/users/location', user_location, name='user_location'),

    # Admin
    path('api/admin/users', admin_users, name='admin_users'),
    path('api/admin/users/<int:pk>', admin_user_detail, name='admin_user_detail'),
    path('api/admin/users/<int:pk>/status', admin_user_status, name='admin_user_status'),
    path('api/admin/requests', admin_requests, name='admin_requests'),
    path('api/admin/requests/<int:pk>/status', admin_request_status, name='admin_request_status'),
    path('api/admin/dashboard', admin_dashboard, name='admin_dashboard'),
]
