# testme/auth/decorators.py

from __future__ import annotations

from functools import wraps
from typing import Callable, Optional

from flask import request, jsonify, g, current_app

from .tokens import DEFAULT_MAX_AGE, verify_access_token


def get_bearer_token() -> Optional[str]:
    auth = request.headers.get("Authorization") or ""
    if auth.lower().startswith("bearer "):
        return auth.split(" ", 1)[1].strip()
    return None


def require_auth(fn: Callable):
    @wraps(fn)
    def wrapper(*args, **kwargs):
        token = get_bearer_token()
        if not token:
            return jsonify(error="unauthorized", message="missing Authorization: Bearer <token>"), 401

        owner_id = verify_access_token(
            secret_key=current_app.config["SECRET_KEY"],
            token=token,
            max_age_seconds=current_app.config.get("TOKEN_MAX_AGE_SECONDS", DEFAULT_MAX_AGE),
        )
        if not owner_id:
            return jsonify(error="unauthorized", message="invalid or expired token"), 401

        g.current_owner_id = owner_id
        return fn(*args, **kwargs)

    return wrapper


def current_owner_id() -> str:
    """Owner id of the authenticated caller."""
    return str(g.current_owner_id)
