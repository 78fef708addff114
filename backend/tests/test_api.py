"""HTTP surface: auth, JSON errors, and the domain → verify → scan flow."""
import pytest

from testme.scanner.executor import StepExecutor
from testme.verification import service as verification_service

from fakes import OTHER_OWNER, ScriptedVerifier, StaticCheck, make_steps, offline_context


@pytest.fixture
def offline_executor(app):
    executor = StepExecutor(
        steps=make_steps(3),
        checks={
            "cat0": StaticCheck("cat0", ["high"]),
            "cat1": StaticCheck("cat1", ["low", "info"]),
            "cat2": StaticCheck("cat2"),
        },
        context_factory=offline_context,
    )
    app.extensions["scan_orchestrator"].executor = executor
    app.extensions["scan_queue"].executor = executor
    return executor


@pytest.fixture
def verifier(monkeypatch):
    fake = ScriptedVerifier(verified=True)
    monkeypatch.setattr(verification_service, "get_verifier", lambda method, **kwargs: fake)
    return fake


def test_health(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.get_json() == {"status": "up and running"}


@pytest.mark.parametrize("path", ["/domains", "/scans", "/scans/steps"])
def test_requires_bearer_token(client, path):
    resp = client.get(path)
    assert resp.status_code == 401
    assert resp.get_json()["error"] == "unauthorized"


def test_rejects_tampered_token(client, auth_headers):
    headers = auth_headers()
    headers["Authorization"] += "x"
    assert client.get("/domains", headers=headers).status_code == 401


def test_unknown_route_is_json_404(client):
    resp = client.get("/nope")
    assert resp.status_code == 404
    assert resp.get_json()["error"] == "Not found"


def test_service_errors_render_as_json(client, auth_headers):
    resp = client.post("/domains", json={"domain": "localhost"}, headers=auth_headers())
    assert resp.status_code == 400
    body = resp.get_json()
    assert body["error"] == "Bad request"
    assert body["message"]

    resp = client.get("/domains/12345", headers=auth_headers())
    assert resp.status_code == 404


def test_domain_endpoints(client, auth_headers):
    resp = client.post("/domains", json={"domain": "https://Example.com/"}, headers=auth_headers())
    assert resp.status_code == 201
    created = resp.get_json()
    assert created["name"] == "example.com"
    assert created["isVerified"] is False
    assert set(created["instructions"]) == {"dns_txt", "html_file", "meta_tag"}

    listed = client.get("/domains", headers=auth_headers()).get_json()
    assert [d["id"] for d in listed] == [created["id"]]
    assert client.get("/domains", headers=auth_headers(OTHER_OWNER)).get_json() == []

    resp = client.get(f"/domains/{created['id']}", headers=auth_headers(OTHER_OWNER))
    assert resp.status_code == 403

    resp = client.post("/domains", json={"domain": "example.com"}, headers=auth_headers())
    assert resp.status_code == 409


def test_verify_endpoint(client, auth_headers, verifier):
    domain_id = client.post("/domains", json={"domain": "example.com"}, headers=auth_headers()).get_json()["id"]

    resp = client.post(f"/domains/{domain_id}/verify", json={"method": "carrier_pigeon"}, headers=auth_headers())
    assert resp.status_code == 400

    resp = client.post(f"/domains/{domain_id}/verify", json={"method": "dns_txt"}, headers=auth_headers())
    assert resp.status_code == 200
    assert resp.get_json()["verified"] is True

    detail = client.get(f"/domains/{domain_id}", headers=auth_headers()).get_json()
    assert detail["isVerified"] is True
    assert detail["verificationMethod"] == "dns_txt"
    assert "instructions" not in detail

    log = client.get(f"/domains/{domain_id}/verifications", headers=auth_headers()).get_json()
    assert [a["status"] for a in log] == ["verified"]


def test_failed_verification_reports_diagnostic(client, auth_headers, monkeypatch):
    fake = ScriptedVerifier(verified=False, diagnostic="TXT record not found at _testme-verify.example.com")
    monkeypatch.setattr(verification_service, "get_verifier", lambda method, **kwargs: fake)
    domain_id = client.post("/domains", json={"domain": "example.com"}, headers=auth_headers()).get_json()["id"]

    body = client.post(f"/domains/{domain_id}/verify", json={"method": "dns_txt"}, headers=auth_headers()).get_json()

    assert body["verified"] is False
    assert "not found" in body["diagnostic"]


def test_scan_requires_verified_domain_and_consent(client, auth_headers, offline_executor):
    domain_id = client.post("/domains", json={"domain": "example.com"}, headers=auth_headers()).get_json()["id"]

    resp = client.post("/scans", json={"domainId": domain_id, "consent": True}, headers=auth_headers())
    assert resp.status_code == 403

    resp = client.post("/scans", json={"consent": True}, headers=auth_headers())
    assert resp.status_code == 400

    resp = client.post("/scans", json={"domainId": "abc", "consent": True}, headers=auth_headers())
    assert resp.status_code == 400


def test_full_scan_flow(client, auth_headers, verifier, offline_executor):
    h = auth_headers()
    domain_id = client.post("/domains", json={"domain": "example.com"}, headers=h).get_json()["id"]
    client.post(f"/domains/{domain_id}/verify", json={"method": "dns_txt"}, headers=h)

    resp = client.post("/scans", json={"domainId": domain_id, "consent": "true"}, headers=h)
    assert resp.status_code == 400

    resp = client.post("/scans", json={"domainId": domain_id, "consent": True}, headers=h)
    assert resp.status_code == 201
    scan = resp.get_json()
    assert scan["status"] == "pending"
    assert scan["totalSteps"] == 3

    resp = client.post("/scans", json={"domainId": domain_id, "consent": True}, headers=h)
    assert resp.status_code == 409

    steps = []
    while True:
        resp = client.post(f"/scans/{scan['id']}/execute", headers=h)
        assert resp.status_code == 200
        out = resp.get_json()
        steps.append(out["currentStep"])
        if out["completed"]:
            break
    assert steps == [0, 1, 2]
    assert out["progress"] == 100
    assert out["nextStep"] is None
    assert [s["category"] for s in out["steps"]] == ["cat0", "cat1", "cat2"]

    detail = client.get(f"/scans/{scan['id']}", headers=h).get_json()
    assert detail["scan"]["status"] == "completed"
    assert [f["severity"] for f in detail["findings"]] == ["high", "low", "info"]
    assert detail["summary"]["overallScore"] == 88
    assert detail["summary"]["complete"] is True
    assert detail["summary"]["grade"] == "B"

    assert client.get(f"/scans/{scan['id']}", headers=auth_headers(OTHER_OWNER)).status_code == 403

    listed = client.get(f"/scans?domainId={domain_id}", headers=h).get_json()
    assert [s["id"] for s in listed] == [scan["id"]]
    assert client.get("/scans?domainId=x", headers=h).status_code == 400

    assert client.post(f"/scans/{scan['id']}/cancel", headers=h).status_code == 409
    assert client.delete(f"/scans/{scan['id']}", headers=h).status_code == 200
    assert client.get(f"/scans/{scan['id']}", headers=h).status_code == 404


def test_start_and_cancel(client, app, auth_headers, verifier, offline_executor):
    h = auth_headers()
    domain_id = client.post("/domains", json={"domain": "example.com"}, headers=h).get_json()["id"]
    client.post(f"/domains/{domain_id}/verify", json={"method": "dns_txt"}, headers=h)
    scan_id = client.post("/scans", json={"domainId": domain_id, "consent": True}, headers=h).get_json()["id"]

    resp = client.post(f"/scans/{scan_id}/start", headers=h)
    assert resp.status_code == 202
    assert resp.get_json()["status"] == "running"
    assert resp.get_json()["queued"] is True

    # deleting the domain is blocked while the scan is active
    assert client.delete(f"/domains/{domain_id}", headers=h).status_code == 409

    resp = client.post(f"/scans/{scan_id}/cancel", headers=h)
    assert resp.status_code == 200
    assert resp.get_json()["status"] == "cancelled"
    assert not app.extensions["scan_queue"].is_queued(scan_id)

    assert client.delete(f"/domains/{domain_id}", headers=h).status_code == 200
    assert client.get(f"/scans/{scan_id}", headers=h).status_code == 404


def test_steps_catalog(client, auth_headers):
    steps = client.get("/scans/steps", headers=auth_headers()).get_json()
    assert [s["category"] for s in steps][:2] == ["transport", "headers"]
    assert [s["index"] for s in steps] == list(range(len(steps)))
