from typing import Any, Dict, Optional

from rest_framework_simplejwt.tokens import RefreshToken


def issue_session_token(user, claims: Optional[Dict[str, Any]] = None) -> Dict[str, str]:
    """Issue a signed access/refresh pair bound to ``user``.

    Extra ``claims`` are copied into both tokens.
    """
    refresh = RefreshToken.for_user(user)
    for key, value in (claims or {}).items():
        refresh[key] = value
    access = refresh.access_token
    return {'access': str(access), 'refresh': str(refresh)}
