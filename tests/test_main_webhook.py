import hmac
import hashlib
import json
from fastapi.testclient import TestClient

from steward.errors import GitHubAPIError
from steward.main import app
from steward.models import EligibilityDecision, Outcome, VetoReason

SECRET = "test-secret"


def sign(secret: str, body: bytes) -> str:
    mac = hmac.new(secret.encode("utf-8"), msg=body, digestmod=hashlib.sha256)
    return "sha256=" + mac.hexdigest()


def post(client, payload, event="check_suite", secret=SECRET):
    body = json.dumps(payload).encode("utf-8")
    return client.post(
        "/webhook",
        content=body,
        headers={
            "Content-Type": "application/json",
            "X-GitHub-Event": event,
            "X-Hub-Signature-256": sign(secret, body),
            "X-GitHub-Delivery": "d-1",
        },
    )


def check_suite_payload(action="completed"):
    return {
        "action": action,
        "check_suite": {
            "conclusion": "success",
            "pull_requests": [
                {
                    "number": 8,
                    "base": {"ref": "main", "repo": {"id": 1}},
                    "head": {"ref": "dependabot/pip/requests-2.32.0", "sha": "abc", "repo": {"id": 1}},
                }
            ],
        },
        "repository": {"name": "repo", "owner": {"login": "octo"}},
        "installation": {"id": 321},
    }


def test_health_and_metrics_endpoints():
    client = TestClient(app)
    assert client.get("/healthz").json()["status"] == "ok"
    assert client.get("/readyz").status_code == 200
    r = client.get("/metrics")
    assert r.status_code == 200
    assert "service_info" in r.text


def test_webhook_invalid_signature_401(monkeypatch):
    monkeypatch.setenv("WEBHOOK_SECRET", SECRET)
    client = TestClient(app)
    r = post(client, check_suite_payload(), secret="wrong")
    assert r.status_code == 401


def test_webhook_invalid_json_400(monkeypatch):
    monkeypatch.setenv("WEBHOOK_SECRET", SECRET)
    client = TestClient(app)
    body = b"{not json"
    r = client.post(
        "/webhook",
        content=body,
        headers={"X-GitHub-Event": "check_suite", "X-Hub-Signature-256": sign(SECRET, body)},
    )
    assert r.status_code == 400


def test_other_events_are_accepted_and_ignored(monkeypatch):
    from steward import main as mainmod

    monkeypatch.setenv("WEBHOOK_SECRET", SECRET)

    def fail(*args, **kwargs):
        raise AssertionError("should not evaluate")

    monkeypatch.setattr(mainmod, "process_check_suite", fail)
    client = TestClient(app)
    assert post(client, {"action": "opened"}, event="pull_request").status_code == 202
    assert post(client, check_suite_payload(action="requested")).status_code == 202


def test_check_suite_without_installation_400(monkeypatch):
    monkeypatch.setenv("WEBHOOK_SECRET", SECRET)
    payload = check_suite_payload()
    del payload["installation"]
    client = TestClient(app)
    assert post(client, payload).status_code == 400


def test_check_suite_completed_is_evaluated(monkeypatch):
    from steward import main as mainmod

    monkeypatch.setenv("WEBHOOK_SECRET", SECRET)
    seen = {}

    class FakeGH:
        def __init__(self, inst):
            seen["installation"] = inst

    def fake_process(gh, event):
        seen["pr"] = event.check_suite.pull_requests[0].number
        decision = EligibilityDecision(outcome=Outcome.VETO, veto_reason=VetoReason.NOT_FROM_BOT, pull_number=8)
        return decision, False

    monkeypatch.setattr(mainmod, "GitHubClient", FakeGH)
    monkeypatch.setattr(mainmod, "process_check_suite", fake_process)

    client = TestClient(app)
    r = post(client, check_suite_payload())
    assert r.status_code == 200
    assert r.json() == {"outcome": "veto", "reason": "not_from_bot", "pull_number": 8, "merged": False}
    assert seen == {"installation": 321, "pr": 8}


def test_fatal_error_answers_500(monkeypatch):
    from steward import main as mainmod

    monkeypatch.setenv("WEBHOOK_SECRET", SECRET)

    def fake_process(gh, event):
        raise GitHubAPIError(401, "GET /repos/{owner}/{repo}/pulls/{number}/reviews", "Bad credentials")

    monkeypatch.setattr(mainmod, "GitHubClient", lambda inst: object())
    monkeypatch.setattr(mainmod, "process_check_suite", fake_process)

    client = TestClient(app, raise_server_exceptions=False)
    assert post(client, check_suite_payload()).status_code == 500
