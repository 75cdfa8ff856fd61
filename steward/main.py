import hmac
import hashlib
import json
import os
import asyncio
import logging
from typing import Optional
from fastapi import FastAPI, Request, Response, Header, HTTPException
from pydantic import ValidationError

from .config import SETTINGS
from .errors import StewardError
from .github import GitHubClient
from .metrics import (
    metrics_response,
    webhook_requests_total,
    webhook_invalid_signatures_total,
    webhook_parse_failures_total,
    evaluation_errors_total,
)
from .models import CheckSuiteEvent
from .worker import process_check_suite

logging.basicConfig(
    level=SETTINGS.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Dependabot Steward", version=SETTINGS.service_version)


@app.get("/healthz")
async def healthz():
    return {"status": "ok", "version": SETTINGS.service_version}


@app.get("/readyz")
async def readyz():
    return {"status": "ready"}


@app.get("/metrics")
async def metrics():
    content_type, data = metrics_response()
    return Response(content=data, media_type=content_type)


def verify_signature(secret: str, body: bytes, signature256: Optional[str]) -> bool:
    if not signature256:
        return False
    try:
        algo, sig = signature256.split("=", 1)
        if algo != "sha256":
            return False
    except ValueError:
        return False
    mac = hmac.new(secret.encode("utf-8"), msg=body, digestmod=hashlib.sha256)
    expected = mac.hexdigest()
    return hmac.compare_digest(expected, sig)


@app.post("/webhook")
async def webhook(
    request: Request,
    x_github_event: Optional[str] = Header(None, alias="X-GitHub-Event"),
    x_github_delivery: Optional[str] = Header(None, alias="X-GitHub-Delivery"),
    x_hub_signature_256: Optional[str] = Header(None, alias="X-Hub-Signature-256"),
):
    event = x_github_event or "unknown"
    action = "unknown"
    body = await request.body()

    # Resolve the secret per request so environment overrides apply
    secret = (SETTINGS.webhook_secret or os.getenv("WEBHOOK_SECRET", "")).strip()
    if not secret or not verify_signature(secret, body, x_hub_signature_256):
        webhook_invalid_signatures_total.inc()
        webhook_requests_total.labels(event=event, action=action, code="401").inc()
        raise HTTPException(status_code=401, detail="Invalid signature")

    try:
        payload = json.loads(body.decode("utf-8"))
    except ValueError:
        webhook_parse_failures_total.labels(event=event).inc()
        webhook_requests_total.labels(event=event, action=action, code="400").inc()
        raise HTTPException(status_code=400, detail="Invalid JSON payload")

    action = payload.get("action", "unknown") if isinstance(payload, dict) else "unknown"
    if event != "check_suite" or action != "completed":
        webhook_requests_total.labels(event=event, action=action, code="202").inc()
        return Response(status_code=202)

    try:
        suite_event = CheckSuiteEvent.model_validate(payload)
    except ValidationError:
        webhook_parse_failures_total.labels(event=event).inc()
        webhook_requests_total.labels(event=event, action=action, code="400").inc()
        raise HTTPException(status_code=400, detail="Invalid check_suite payload")
    if suite_event.installation is None:
        webhook_parse_failures_total.labels(event=event).inc()
        webhook_requests_total.labels(event=event, action=action, code="400").inc()
        raise HTTPException(status_code=400, detail="Missing installation")

    logger.info(
        "Received check_suite.completed for %s/%s (delivery=%s)",
        suite_event.repository.owner.login,
        suite_event.repository.name,
        x_github_delivery,
    )
    gh = GitHubClient(suite_event.installation.id)
    try:
        decision, merged = await asyncio.to_thread(process_check_suite, gh, suite_event)
    except Exception as e:
        error = type(e).__name__ if isinstance(e, StewardError) else "unexpected"
        evaluation_errors_total.labels(error=error).inc()
        webhook_requests_total.labels(event=event, action=action, code="500").inc()
        logger.exception("Evaluation failed for delivery %s", x_github_delivery)
        raise HTTPException(status_code=500, detail="Evaluation failed")

    webhook_requests_total.labels(event=event, action=action, code="200").inc()
    return {
        "outcome": decision.outcome.value,
        "reason": decision.veto_reason.value if decision.veto_reason else None,
        "pull_number": decision.pull_number,
        "merged": merged,
    }
