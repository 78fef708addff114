# testme/auth/tokens.py
from __future__ import annotations

from typing import Optional
from itsdangerous import URLSafeTimedSerializer, BadSignature, SignatureExpired


# Token expiry: 8 hours absolute max
DEFAULT_MAX_AGE = 60 * 60 * 8  # 8 hours

def _serializer(secret_key: str) -> URLSafeTimedSerializer:
    return URLSafeTimedSerializer(secret_key, salt="testme-auth")


def create_access_token(*, secret_key: str, owner_id: str) -> str:
    return _serializer(secret_key).dumps({"owner_id": str(owner_id)})


def verify_access_token(
    *, secret_key: str, token: str, max_age_seconds: int = DEFAULT_MAX_AGE
) -> Optional[str]:
    """
    Verify a token and return the owner id, or None if invalid/expired.
    """
    try:
        data = _serializer(secret_key).loads(token, max_age=max_age_seconds)
    except SignatureExpired:
        return None
    except BadSignature:
        return None
    owner = data.get("owner_id") if isinstance(data, dict) else None
    return str(owner) if owner else None
