"""
JWT authentication for the API.

Subclasses simplejwt's ``JWTAuthentication`` so that a token minted for
an identity which is no longer verified is refused.  Keeping it apart
from the views avoids circular imports when DRF loads the
``DEFAULT_AUTHENTICATION_CLASSES`` setting.
"""
from __future__ import annotations

from rest_framework.exceptions import AuthenticationFailed
from rest_framework_simplejwt import authentication


class JWTAuthentication(authentication.JWTAuthentication):
    def get_user(self, validated_token):
        user = super().get_user(validated_token)
        if not getattr(user, 'is_verified', False) and not user.is_staff:
            raise AuthenticationFailed('User is not verified', code='user_not_verified')
        return user
