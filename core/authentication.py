"""
Authentication for the API.

``Authorization: Token <key>`` resolves to a user together with their
donor or hospital profile.  ``Authorization: Bearer <jwt_access>`` is
accepted too, for clients that use the JWT pair issued at login.  The
activity flag is checked on every call, so deactivating an account
revokes its access from the next request on without having to hunt
down issued tokens.
"""
from __future__ import annotations

from rest_framework import authentication
from rest_framework import exceptions
from rest_framework_simplejwt import authentication as jwt_authentication

from core.exceptions import AccountInactive


class TokenAuthentication(authentication.TokenAuthentication):
    keyword = 'Token'

    def authenticate_credentials(self, key):
        model = self.get_model()
        try:
            token = model.objects.select_related(
                'user', 'user__donor_profile', 'user__hospital_profile'
            ).get(key=key)
        except model.DoesNotExist:
            raise exceptions.AuthenticationFailed('Invalid token.')

        if not token.user.is_active:
            raise AccountInactive()
        return (token.user, token)


class JWTAuthentication(jwt_authentication.JWTAuthentication):
    def get_user(self, validated_token):
        user = super().get_user(validated_token)
        if not user.is_active:
            raise AccountInactive()
        return user
