"""
Database models for the BloodBridge backend.

These models capture the core concepts of the system: role-scoped
accounts with their donor or hospital profiles, one-time verification
codes, blood requests with their accepted donors and status history,
and out-of-band donations recorded by hospitals.  Donation history is
not stored separately; it is derived from acceptances and direct
donations (see :mod:`core.services.donors`).
"""
from __future__ import annotations

from datetime import datetime

from django.contrib.auth.models import AbstractUser
from django.core.validators import MaxValueValidator, MinValueValidator
from django.db import models
from django.utils import timezone


BLOOD_GROUPS = ('A+', 'A-', 'B+', 'B-', 'AB+', 'AB-', 'O+', 'O-')
BLOOD_GROUP_CHOICES = [(g, g) for g in BLOOD_GROUPS]


class User(AbstractUser):
    """Account with a role namespace.

    Roles are 'donor' (donor/patient), 'hospital' and 'admin'.  The same
    e-mail may exist once per role, so the Django ``username`` is derived
    as ``"<role>:<email>"`` and uniqueness is enforced on (email, role).
    The display name is kept in ``first_name``.
    """
    ROLE_DONOR = 'donor'
    ROLE_HOSPITAL = 'hospital'
    ROLE_ADMIN = 'admin'
    ROLE_CHOICES = [
        (ROLE_DONOR, 'Donor/Patient'),
        (ROLE_HOSPITAL, 'Hospital'),
        (ROLE_ADMIN, 'Administrator'),
    ]
    role = models.CharField(max_length=10, choices=ROLE_CHOICES, default=ROLE_DONOR, db_index=True)
    # Set once the e-mail one-time code has been confirmed
    is_verified = models.BooleanField(default=False)

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=['email', 'role'], name='uniq_user_email_per_role'),
        ]

    @staticmethod
    def username_for(role: str, email: str) -> str:
        return f"{role}:{email.strip().lower()}"

    @property
    def display_name(self) -> str:
        return self.get_full_name() or self.email or self.username

    def __str__(self) -> str:
        return f"{self.email} ({self.role})"


class DonorProfile(models.Model):
    """Donor/patient specific data kept apart from :class:`User`."""
    user = models.OneToOneField(User, on_delete=models.CASCADE, related_name='donor_profile')
    blood_group = models.CharField(max_length=3, choices=BLOOD_GROUP_CHOICES, db_index=True)
    phone = models.CharField(max_length=20, blank=True)
    latitude = models.FloatField(null=True, blank=True)
    longitude = models.FloatField(null=True, blank=True)
    # Donors toggle this themselves; matching skips unavailable donors
    available = models.BooleanField(default=True, db_index=True)
    donation_count = models.PositiveIntegerField(default=0)
    last_donation_date = models.DateField(null=True, blank=True)

    def __str__(self) -> str:
        return f"{self.user.email} [{self.blood_group}]"


class HospitalProfile(models.Model):
    """Hospital specific data.

    ``is_approved`` is granted by a platform administrator and is
    separate from e-mail verification on the user; both are required
    before the hospital may create requests.
    """
    user = models.OneToOneField(User, on_delete=models.CASCADE, related_name='hospital_profile')
    hospital_name = models.CharField(max_length=100)
    license_number = models.CharField(max_length=64, unique=True)
    address = models.CharField(max_length=200)
    contact_number = models.CharField(max_length=20, blank=True)
    latitude = models.FloatField(null=True, blank=True)
    longitude = models.FloatField(null=True, blank=True)
    is_approved = models.BooleanField(default=False, db_index=True)
    approved_at = models.DateTimeField(null=True, blank=True)

    def __str__(self) -> str:
        return f"{self.hospital_name} ({self.license_number})"


class OneTimeCode(models.Model):
    """A six digit e-mail verification code for one (email, role) pair."""
    email = models.EmailField()
    role = models.CharField(max_length=10, choices=User.ROLE_CHOICES)
    code = models.CharField(max_length=6)
    issued_at = models.DateTimeField(default=timezone.now)
    expires_at = models.DateTimeField()
    consumed_at = models.DateTimeField(null=True, blank=True)
    # Set when a newer code is issued for the same pair
    revoked = models.BooleanField(default=False)

    class Meta:
        indexes = [
            models.Index(fields=['email', 'role', 'issued_at'], name='otp_email_role_issued_idx'),
        ]

    def is_expired(self, now: datetime) -> bool:
        return now > self.expires_at

    def __str__(self) -> str:
        return f"otp {self.role}:{self.email} @ {self.issued_at:%F %T}"


class BloodRequest(models.Model):
    """A hospital's request for blood units and its lifecycle state."""
    STATUS_PENDING = 'pending'
    STATUS_ACCEPTED = 'accepted'
    STATUS_ON_THE_WAY = 'on_the_way'
    STATUS_CONFIRMED = 'confirmed'
    STATUS_COMPLETED = 'completed'
    STATUS_CANCELLED = 'cancelled'
    STATUS_CHOICES = [
        (STATUS_PENDING, 'Pending'),
        (STATUS_ACCEPTED, 'Accepted'),
        (STATUS_ON_THE_WAY, 'On the way'),
        (STATUS_CONFIRMED, 'Confirmed'),
        (STATUS_COMPLETED, 'Completed'),
        (STATUS_CANCELLED, 'Cancelled'),
    ]
    TERMINAL_STATUSES = frozenset({STATUS_COMPLETED, STATUS_CANCELLED})

    URGENCY_CHOICES = [
        ('low', 'Low'),
        ('medium', 'Medium'),
        ('high', 'High'),
        ('normal', 'Normal'),
        ('critical', 'Critical'),
    ]

    hospital = models.ForeignKey(User, on_delete=models.CASCADE, related_name='blood_requests')
    patient_name = models.CharField(max_length=100, blank=True)
    blood_group = models.CharField(max_length=3, choices=BLOOD_GROUP_CHOICES)
    units_needed = models.PositiveSmallIntegerField(
        default=1, validators=[MinValueValidator(1), MaxValueValidator(10)]
    )
    urgency = models.CharField(max_length=10, choices=URGENCY_CHOICES, default='medium', db_index=True)
    notes = models.TextField(blank=True, max_length=500)
    required_by = models.DateField(default=timezone.localdate)
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=STATUS_PENDING, db_index=True)
    # Bumped on every status change; used for compare-and-set updates
    version = models.PositiveIntegerField(default=0)
    accepted_at = models.DateTimeField(null=True, blank=True)
    confirmed_at = models.DateTimeField(null=True, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)
    cancel_reason = models.CharField(max_length=255, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        indexes = [
            models.Index(fields=['blood_group', 'status'], name='request_group_status_idx'),
            models.Index(fields=['hospital', 'created_at'], name='request_hospital_created_idx'),
        ]
        constraints = [
            models.CheckConstraint(condition=models.Q(units_needed__gte=1), name='blood_request_units_gte_1'),
        ]

    @property
    def is_terminal(self) -> bool:
        return self.status in self.TERMINAL_STATUSES

    def __str__(self) -> str:
        return f"request #{self.pk} {self.blood_group} x{self.units_needed} [{self.status}]"


class Acceptance(models.Model):
    """A donor's commitment to a request, with a snapshot of the donor."""
    blood_request = models.ForeignKey(BloodRequest, on_delete=models.CASCADE, related_name='acceptances')
    donor = models.ForeignKey(User, on_delete=models.CASCADE, related_name='acceptances')
    donor_name = models.CharField(max_length=150)
    donor_blood_group = models.CharField(max_length=3, choices=BLOOD_GROUP_CHOICES)
    donor_phone = models.CharField(max_length=20, blank=True)
    accepted_at = models.DateTimeField(default=timezone.now)

    class Meta:
        ordering = ['accepted_at', 'id']
        constraints = [
            models.UniqueConstraint(fields=['blood_request', 'donor'], name='uniq_acceptance_per_donor'),
        ]

    def __str__(self) -> str:
        return f"{self.donor_id} -> request #{self.blood_request_id}"


class RequestTransition(models.Model):
    """Records a status transition for a blood request."""
    blood_request = models.ForeignKey(BloodRequest, on_delete=models.CASCADE, related_name='transitions')
    from_status = models.CharField(max_length=20, null=True, blank=True)
    to_status = models.CharField(max_length=20)
    operator = models.ForeignKey(
        User, null=True, blank=True, on_delete=models.SET_NULL, related_name='request_transitions'
    )
    reason = models.CharField(max_length=255, blank=True)
    timestamp = models.DateTimeField(auto_now_add=True)

    def __str__(self) -> str:
        return f"{self.blood_request_id}: {self.from_status} → {self.to_status}"


class DirectDonation(models.Model):
    """A donation taken in person, outside the request/accept flow."""
    hospital = models.ForeignKey(User, on_delete=models.CASCADE, related_name='direct_donations')
    # Linked when the e-mail matches a registered donor account
    donor = models.ForeignKey(
        User, null=True, blank=True, on_delete=models.SET_NULL, related_name='direct_donations_given'
    )
    donor_name = models.CharField(max_length=150)
    donor_email = models.EmailField()
    donor_phone = models.CharField(max_length=20)
    blood_group = models.CharField(max_length=3, choices=BLOOD_GROUP_CHOICES)
    donated_at = models.DateTimeField(default=timezone.now)

    class Meta:
        indexes = [
            models.Index(fields=['hospital', 'donor_email'], name='direct_hospital_email_idx'),
        ]

    def __str__(self) -> str:
        return f"direct {self.donor_email} @ hospital {self.hospital_id}"


class AuditEvent(models.Model):
    user = models.ForeignKey(User, on_delete=models.SET_NULL, null=True, blank=True)
    action = models.CharField(max_length=64)
    object_type = models.CharField(max_length=64, blank=True, null=True)
    object_id = models.IntegerField(blank=True, null=True)
    detail = models.JSONField(default=dict, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        indexes = [
            models.Index(fields=['action', 'created_at'], name='audit_action_created_idx'),
            models.Index(fields=['object_type', 'object_id', 'created_at'], name='audit_object_created_idx'),
        ]
