"""
Domain errors and the unified API exception handler.

Every failure a service can raise is an ``APIException`` subclass with a
stable ``default_code`` and an optional ``context`` dict (current and
attempted status, offending field, ...).  The handler renders all of them
as ``{'ok': False, 'error': {'code', 'message', **context}}``.
"""
from __future__ import annotations

import logging
from typing import Any, Optional

from django.core.exceptions import PermissionDenied as DjangoPermissionDenied
from django.http import Http404
from rest_framework import exceptions, status
from rest_framework.response import Response

logger = logging.getLogger(__name__)


class DomainError(exceptions.APIException):
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = 'Request could not be processed.'
    default_code = 'domain_error'

    def __init__(self, detail: Optional[str] = None, **context: Any):
        super().__init__(detail=detail, code=self.default_code)
        self.context = context


# Identity & verification
class DuplicateAccount(DomainError):
    status_code = status.HTTP_409_CONFLICT
    default_detail = 'An account with this email already exists.'
    default_code = 'duplicate_account'


class InvalidProfile(DomainError):
    default_detail = 'Profile is missing required fields or is malformed.'
    default_code = 'invalid_profile'


class CodeExpired(DomainError):
    default_detail = 'Verification code has expired. Request a new one.'
    default_code = 'code_expired'


class CodeMismatch(DomainError):
    default_detail = 'Verification code is incorrect.'
    default_code = 'code_mismatch'


class NoPendingVerification(DomainError):
    default_detail = 'No pending verification for this account.'
    default_code = 'no_pending_verification'


class TooManyCodes(DomainError):
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    default_detail = 'Too many verification codes requested. Try again later.'
    default_code = 'too_many_codes'


class InvalidCredential(DomainError):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_detail = 'Invalid email or password.'
    default_code = 'invalid_credential'


class NotVerified(DomainError):
    status_code = status.HTTP_403_FORBIDDEN
    default_detail = 'Account is not verified.'
    default_code = 'not_verified'


class AccountInactive(DomainError):
    status_code = status.HTTP_403_FORBIDDEN
    default_detail = 'Account has been deactivated.'
    default_code = 'account_inactive'


# Request lifecycle
class InvalidTransition(DomainError):
    status_code = status.HTTP_409_CONFLICT
    default_code = 'invalid_transition'

    def __init__(self, current: str, attempted: str, detail: Optional[str] = None):
        super().__init__(
            detail or f'Cannot move request from {current} to {attempted}.',
            current=current, attempted=attempted,
        )
        self.current = current
        self.attempted = attempted


class AlreadyFinalized(DomainError):
    status_code = status.HTTP_409_CONFLICT
    default_code = 'already_finalized'

    def __init__(self, current: str, detail: Optional[str] = None):
        super().__init__(detail or f'Request is already {current}.', current=current)
        self.current = current


# Access & lookup
class Forbidden(DomainError):
    status_code = status.HTTP_403_FORBIDDEN
    default_detail = 'You are not allowed to perform this action.'
    default_code = 'forbidden'


class InvalidBloodGroup(DomainError):
    default_code = 'invalid_blood_group'

    def __init__(self, value: Any, detail: Optional[str] = None):
        super().__init__(detail or f'Unknown blood group: {value!r}.', field='bloodGroup', value=str(value))


class NotFound(DomainError):
    status_code = status.HTTP_404_NOT_FOUND
    default_detail = 'Not found.'
    default_code = 'not_found'


def _message_from(data: Any) -> Any:
    if isinstance(data, dict):
        return data.get('detail') or data
    if isinstance(data, list) and len(data) == 1:
        return data[0]
    return data


def api_exception_handler(exc, context):
    if isinstance(exc, DomainError):
        body = {'code': exc.default_code, 'message': str(exc.detail), **exc.context}
        return Response({'ok': False, 'error': body}, status=exc.status_code)

    # rest_framework.views loads the authentication classes, which import this module
    from rest_framework.views import exception_handler as drf_exception_handler

    resp = drf_exception_handler(exc, context)
    if resp is None:
        view = context.get('view')
        logger.exception('unhandled error in %s', getattr(view, '__name__', None) or type(view).__name__)
        return Response(
            {'ok': False, 'error': {'code': 'server_error', 'message': 'Internal server error.'}},
            status=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )

    if isinstance(exc, exceptions.ValidationError):
        code = 'validation_error'
    elif isinstance(exc, (Http404, exceptions.NotFound)):
        code = 'not_found'
    elif isinstance(exc, (DjangoPermissionDenied, exceptions.PermissionDenied)):
        code = 'forbidden'
    elif isinstance(exc, exceptions.APIException):
        code = exc.default_code
    else:
        code = 'api_error'
    body = {'code': code, 'message': _message_from(resp.data)}
    if code == 'validation_error' and isinstance(resp.data, dict):
        body['fields'] = resp.data
    headers = {k: resp[k] for k in ('WWW-Authenticate', 'Retry-After') if resp.has_header(k)}
    return Response({'ok': False, 'error': body}, status=resp.status_code, headers=headers)
