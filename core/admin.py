"""
Django admin registrations for the core models.

The Django admin is mounted at ``/django-admin/`` (``/api/admin/*`` is the
platform admin API) and is meant for superusers inspecting data during
operations.
"""

from django.contrib import admin

from .models import (
    Acceptance,
    AuditEvent,
    BloodRequest,
    DirectDonation,
    DonorProfile,
    HospitalProfile,
    OneTimeCode,
    RequestTransition,
    User,
)


@admin.register(User)
class UserAdmin(admin.ModelAdmin):
    list_display = ('email', 'role', 'first_name', 'is_verified', 'is_active', 'date_joined')
    list_filter = ('role', 'is_verified', 'is_active')
    search_fields = ('email', 'first_name', 'username')
    exclude = ('password',)


@admin.register(DonorProfile)
class DonorProfileAdmin(admin.ModelAdmin):
    list_display = ('user', 'blood_group', 'available', 'donation_count', 'last_donation_date')
    list_filter = ('blood_group', 'available')
    search_fields = ('user__email', 'user__first_name', 'phone')


@admin.register(HospitalProfile)
class HospitalProfileAdmin(admin.ModelAdmin):
    list_display = ('hospital_name', 'user', 'license_number', 'is_approved', 'approved_at')
    list_filter = ('is_approved',)
    search_fields = ('hospital_name', 'license_number', 'user__email')


@admin.register(OneTimeCode)
class OneTimeCodeAdmin(admin.ModelAdmin):
    list_display = ('email', 'role', 'issued_at', 'expires_at', 'consumed_at', 'revoked')
    list_filter = ('role', 'revoked')
    search_fields = ('email',)
    exclude = ('code',)


class AcceptanceInline(admin.TabularInline):
    model = Acceptance
    extra = 0
    readonly_fields = ('donor', 'donor_name', 'donor_blood_group', 'donor_phone', 'accepted_at')


class RequestTransitionInline(admin.TabularInline):
    model = RequestTransition
    extra = 0
    readonly_fields = ('from_status', 'to_status', 'operator', 'reason', 'timestamp')


@admin.register(BloodRequest)
class BloodRequestAdmin(admin.ModelAdmin):
    list_display = ('id', 'hospital', 'blood_group', 'units_needed', 'urgency', 'status', 'created_at')
    list_filter = ('status', 'urgency', 'blood_group')
    search_fields = ('id', 'patient_name', 'hospital__email')
    # Status only moves through the API so transitions stay audited
    readonly_fields = ('status', 'version', 'accepted_at', 'confirmed_at', 'completed_at', 'cancelled_at')
    inlines = [AcceptanceInline, RequestTransitionInline]


@admin.register(DirectDonation)
class DirectDonationAdmin(admin.ModelAdmin):
    list_display = ('donor_email', 'donor_name', 'blood_group', 'hospital', 'donated_at')
    list_filter = ('blood_group',)
    search_fields = ('donor_email', 'donor_name', 'hospital__email')


@admin.register(AuditEvent)
class AuditEventAdmin(admin.ModelAdmin):
    list_display = ('created_at', 'action', 'object_type', 'object_id', 'user')
    list_filter = ('action', 'object_type')
    search_fields = ('action', 'user__email')
