"""
One-time e-mail verification codes.

A code is six digits, lives ``OTP_TTL_MINUTES`` and is single use.  Issuing
a code revokes every earlier live code for the same (email, role) pair, so
at most one code can be redeemed at any time.  Expiry is evaluated lazily
against the caller's clock; there is no background sweeper.
"""
from __future__ import annotations

import logging
import secrets
from datetime import datetime, timedelta
from typing import Optional

from django.conf import settings
from django.core.mail import send_mail
from django.db import transaction
from django.utils import timezone

from core.exceptions import CodeExpired, CodeMismatch, NoPendingVerification, TooManyCodes
from core.models import OneTimeCode

logger = logging.getLogger(__name__)

CODE_LENGTH = 6


def _ttl() -> timedelta:
    return timedelta(minutes=getattr(settings, 'OTP_TTL_MINUTES', 10))


def generate_code() -> str:
    return f"{secrets.randbelow(10 ** CODE_LENGTH):0{CODE_LENGTH}d}"


def live_codes(email: str, role: str):
    return OneTimeCode.objects.filter(email=email, role=role, consumed_at__isnull=True, revoked=False)


def issue_code(email: str, role: str, *, now: Optional[datetime] = None) -> OneTimeCode:
    """Revoke outstanding codes for the pair and store a fresh one.

    Raises ``TooManyCodes`` once ``OTP_MAX_ISSUES`` codes have been issued
    for the pair inside the current TTL window.
    """
    now = now or timezone.now()
    window_start = now - _ttl()
    recent = OneTimeCode.objects.filter(email=email, role=role, issued_at__gt=window_start).count()
    if recent >= getattr(settings, 'OTP_MAX_ISSUES', 5):
        raise TooManyCodes(email=email, role=role)
    with transaction.atomic():
        live_codes(email, role).update(revoked=True)
        return OneTimeCode.objects.create(
            email=email, role=role, code=generate_code(),
            issued_at=now, expires_at=now + _ttl(),
        )


def deliver_code(otp: OneTimeCode) -> bool:
    """E-mail the code.  Returns False (and logs) when delivery fails."""
    minutes = getattr(settings, 'OTP_TTL_MINUTES', 10)
    try:
        send_mail(
            subject='Your BloodBridge verification code',
            message=(
                f'Your verification code is {otp.code}.\n'
                f'It expires in {minutes} minutes.'
            ),
            from_email=settings.DEFAULT_FROM_EMAIL,
            recipient_list=[otp.email],
            fail_silently=False,
        )
    except Exception:
        logger.warning('otp delivery to %s (%s) failed', otp.email, otp.role, exc_info=True)
        return False
    return True


def delivery_payload(otp: OneTimeCode, delivered: bool) -> dict:
    """Response fragment describing where the code went."""
    payload = {'email': otp.email, 'role': otp.role, 'expiresAt': otp.expires_at.isoformat(),
               'delivered': delivered}
    if not delivered and getattr(settings, 'OTP_DEBUG_RESPONSE', False):
        payload['otp'] = otp.code
    return payload


def consume_code(email: str, role: str, code: str, *, now: Optional[datetime] = None) -> OneTimeCode:
    """Check ``code`` against the live code and mark it consumed.

    Must run inside a transaction; the live row is locked so two
    concurrent verifications cannot both redeem it.
    """
    now = now or timezone.now()
    otp = (
        live_codes(email, role)
        .select_for_update()
        .order_by('-issued_at', '-id')
        .first()
    )
    if otp is None:
        raise NoPendingVerification(email=email, role=role)
    if otp.is_expired(now):
        raise CodeExpired()
    if not secrets.compare_digest(otp.code, (code or '').strip()):
        raise CodeMismatch()
    otp.consumed_at = now
    otp.save(update_fields=['consumed_at'])
    return otp
