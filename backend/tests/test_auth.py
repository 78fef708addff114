"""Bearer tokens and the require_auth decorator."""
import time

from flask import Flask, jsonify

from testme.auth.decorators import current_owner_id, require_auth
from testme.auth.tokens import create_access_token, verify_access_token


def test_token_round_trip():
    token = create_access_token(secret_key="s3cret", owner_id="owner-1")
    assert verify_access_token(secret_key="s3cret", token=token) == "owner-1"


def test_token_with_wrong_key_or_garbage():
    token = create_access_token(secret_key="s3cret", owner_id="owner-1")
    assert verify_access_token(secret_key="other", token=token) is None
    assert verify_access_token(secret_key="s3cret", token="not-a-token") is None


def test_expired_token(monkeypatch):
    token = create_access_token(secret_key="s3cret", owner_id="owner-1")
    real_time = time.time
    monkeypatch.setattr(time, "time", lambda: real_time() + 3600)
    assert verify_access_token(secret_key="s3cret", token=token, max_age_seconds=60) is None


def _protected_app():
    app = Flask(__name__)
    app.config["SECRET_KEY"] = "s3cret"

    @app.get("/me")
    @require_auth
    def me():
        return jsonify(owner=current_owner_id())

    return app


def test_require_auth():
    client = _protected_app().test_client()

    assert client.get("/me").status_code == 401
    assert client.get("/me", headers={"Authorization": "Basic abc"}).status_code == 401

    token = create_access_token(secret_key="s3cret", owner_id="owner-9")
    resp = client.get("/me", headers={"Authorization": f"Bearer {token}"})
    assert resp.status_code == 200
    assert resp.get_json() == {"owner": "owner-9"}
