import time
import logging
import threading
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import quote
import httpx
import jwt
from datetime import datetime, timedelta, timezone

from .config import SETTINGS
from .errors import GitHubAPIError
from .metrics import (
    github_api_requests_total,
    github_api_latency_seconds,
    github_rate_limit_remaining,
    github_rate_limit_reset,
    retries_total,
)

logger = logging.getLogger(__name__)

PER_PAGE = 100
# Refresh installation tokens this many seconds before they expire.
TOKEN_SAFETY_MARGIN_SECONDS = 120


def _safe_url(url: str) -> str:
    try:
        u = httpx.URL(url)
        # remove query to avoid leaking params
        return str(u.copy_with(query=None))
    except Exception:
        return url.split("?", 1)[0]


def _param_keys(d: Optional[Dict[str, Any]]) -> List[str]:
    return sorted((d or {}).keys())


def _error_message(resp: httpx.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        return resp.text
    if isinstance(body, dict):
        return str(body.get("message", ""))
    return str(body)


def _seg(value: str) -> str:
    # Branch names carry slashes (dependabot/npm_and_yarn/...); keep them in one path segment.
    return quote(value, safe="")


class GitHubClient:
    # installation_id -> (token, expiry epoch seconds), shared by all clients
    _tok_cache: Dict[int, Tuple[str, float]] = {}
    _tok_lock = threading.Lock()

    def __init__(self, installation_id: int):
        self.installation_id = installation_id
        self.base_url = SETTINGS.github_api_url
        self.app_id = SETTINGS.app_id
        self.private_key_pem = SETTINGS.app_private_key.encode("utf-8")

    def _app_jwt(self) -> str:
        now = datetime.now(tz=timezone.utc)
        payload = {
            "iat": int(now.timestamp()) - 60,
            "exp": int((now + timedelta(minutes=10)).timestamp()),
            "iss": self.app_id,
        }
        return jwt.encode(payload, self.private_key_pem, algorithm="RS256")

    def _token(self) -> str:
        with self._tok_lock:
            cached = self._tok_cache.get(self.installation_id)
            if cached and time.time() < cached[1] - TOKEN_SAFETY_MARGIN_SECONDS:
                return cached[0]
            token, expiry = self._exchange_token()
            self._tok_cache[self.installation_id] = (token, expiry)
            return token

    def _exchange_token(self) -> Tuple[str, float]:
        url = f"{self.base_url}/app/installations/{self.installation_id}/access_tokens"
        headers = {
            "Authorization": f"Bearer {self._app_jwt()}",
            "Accept": "application/vnd.github+json",
        }
        endpoint = "POST /app/installations/{id}/access_tokens"
        start = time.perf_counter()
        logger.debug(
            "github.request: method=POST path=%s installation=%s phase=token_exchange",
            _safe_url(url),
            self.installation_id,
        )
        resp = httpx.post(url, headers=headers, timeout=SETTINGS.github_timeout_seconds)
        duration = time.perf_counter() - start
        github_api_latency_seconds.labels(endpoint=endpoint).observe(duration)
        github_api_requests_total.labels(endpoint=endpoint, status=str(resp.status_code)).inc()
        logger.debug(
            "github.response: method=POST path=%s status=%s duration_ms=%d installation=%s phase=token_exchange",
            _safe_url(url),
            resp.status_code,
            int(duration * 1000),
            self.installation_id,
        )
        resp.raise_for_status()
        data = resp.json()
        expires_at = data.get("expires_at")  # e.g., 2024-01-01T00:00:00Z
        if expires_at:
            expiry = datetime.fromisoformat(expires_at.replace("Z", "+00:00")).timestamp()
        else:
            expiry = time.time() + 3600
        return data.get("token"), expiry

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"token {self._token()}",
            "Accept": "application/vnd.github+json",
            "User-Agent": "dependabot-steward/1.0",
        }

    def request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        data: Optional[Any] = None,
        endpoint: Optional[str] = None,
    ) -> httpx.Response:
        url = path if path.startswith("http") else f"{self.base_url.rstrip('/')}/{path.lstrip('/')}"
        endpoint = endpoint or f"{method} {path if path.startswith('/') else '/' + path}"
        # Merges and POSTs are never replayed; a duplicate approval or merge is worse than a failure.
        idempotent = method.upper() in ("GET", "PUT") and not endpoint.endswith("/merge")

        def should_retry(resp: Optional[httpx.Response], exc: Optional[Exception]) -> Optional[str]:
            if not idempotent:
                return None
            if exc is not None:
                return "transport"
            if resp is None:
                return None
            if resp.status_code >= 500:
                return "server_error"
            if resp.status_code in (429, 403) and method.upper() == "GET":
                return "rate_limit"
            return None

        attempts = 0
        while True:
            attempts += 1
            start = time.perf_counter()
            exc: Optional[Exception] = None
            resp: Optional[httpx.Response] = None
            logger.debug(
                "github.request: method=%s path=%s installation=%s params=%s attempt=%s",
                method.upper(),
                _safe_url(url),
                self.installation_id,
                _param_keys(params),
                attempts,
            )
            try:
                resp = httpx.request(
                    method,
                    url,
                    headers=self._headers(),
                    params=params,
                    json=data,
                    timeout=SETTINGS.github_timeout_seconds,
                )
            except (httpx.TimeoutException, httpx.TransportError) as e:
                exc = e
            duration = time.perf_counter() - start
            status_label = str(resp.status_code) if resp is not None else "exc"
            github_api_latency_seconds.labels(endpoint=endpoint).observe(duration)
            github_api_requests_total.labels(endpoint=endpoint, status=status_label).inc()
            if resp is not None:
                self._record_rate_limit(resp)
                logger.debug(
                    "github.response: method=%s path=%s status=%s duration_ms=%d installation=%s attempt=%s",
                    method.upper(),
                    _safe_url(url),
                    resp.status_code,
                    int(duration * 1000),
                    self.installation_id,
                    attempts,
                )
            else:
                logger.debug(
                    "github.response_error: method=%s path=%s error=%s duration_ms=%d installation=%s attempt=%s",
                    method.upper(),
                    _safe_url(url),
                    exc,
                    int(duration * 1000),
                    self.installation_id,
                    attempts,
                )
            reason = should_retry(resp, exc)
            if reason is None or attempts >= SETTINGS.github_max_attempts:
                if exc is not None:
                    raise exc
                return resp  # type: ignore[return-value]
            retries_total.labels(reason=reason).inc()
            sleep_s = min(
                SETTINGS.backoff_base_seconds * (SETTINGS.backoff_factor ** (attempts - 1)),
                SETTINGS.max_backoff_seconds,
            )
            logger.debug(
                "github.retry: method=%s path=%s reason=%s sleep_seconds=%s attempt=%s installation=%s",
                method.upper(),
                _safe_url(url),
                reason,
                sleep_s,
                attempts,
                self.installation_id,
            )
            time.sleep(sleep_s)

    def _record_rate_limit(self, resp: httpx.Response) -> None:
        remaining = resp.headers.get("X-RateLimit-Remaining")
        reset = resp.headers.get("X-RateLimit-Reset")
        installation = str(self.installation_id)
        if reset is not None and reset.isdigit():
            github_rate_limit_reset.labels(installation=installation).set(int(reset))
        if remaining is None or not remaining.isdigit():
            return
        github_rate_limit_remaining.labels(installation=installation).set(int(remaining))
        if int(remaining) <= SETTINGS.rate_limit_min_remaining:
            logger.warning(
                "github.rate_limit_low: installation=%s remaining=%s reset=%s",
                installation,
                remaining,
                reset,
            )

    def _expect(self, resp: httpx.Response, endpoint: str, ok: Tuple[int, ...] = (200,)) -> Any:
        if resp.status_code not in ok:
            raise GitHubAPIError(resp.status_code, endpoint, _error_message(resp))
        if resp.status_code == 204:
            return None
        try:
            return resp.json()
        except ValueError:
            raise GitHubAPIError(resp.status_code, endpoint, "response body is not JSON")

    def _list_all(self, path: str, endpoint: str, key: Optional[str] = None) -> List[Dict[str, Any]]:
        items: List[Dict[str, Any]] = []
        page = 1
        while True:
            params = {"per_page": PER_PAGE, "page": page}
            r = self.request("GET", path, params=params, endpoint=endpoint)
            body = self._expect(r, endpoint)
            batch = (body or {}).get(key, []) if key else (body or [])
            items.extend(batch)
            if len(batch) < PER_PAGE:
                return items
            page += 1

    # --- Typed calls ---
    def get_repo(self, owner: str, repo: str) -> Dict[str, Any]:
        endpoint = "GET /repos/{owner}/{repo}"
        return self._expect(self.request("GET", f"/repos/{owner}/{repo}", endpoint=endpoint), endpoint)

    def get_pr(self, owner: str, repo: str, number: int) -> Dict[str, Any]:
        endpoint = "GET /repos/{owner}/{repo}/pulls/{number}"
        r = self.request("GET", f"/repos/{owner}/{repo}/pulls/{number}", endpoint=endpoint)
        return self._expect(r, endpoint)

    def list_reviews(self, owner: str, repo: str, number: int) -> List[Dict[str, Any]]:
        return self._list_all(
            f"/repos/{owner}/{repo}/pulls/{number}/reviews",
            "GET /repos/{owner}/{repo}/pulls/{number}/reviews",
        )

    def list_issue_comments(self, owner: str, repo: str, number: int) -> List[Dict[str, Any]]:
        return self._list_all(
            f"/repos/{owner}/{repo}/issues/{number}/comments",
            "GET /repos/{owner}/{repo}/issues/{number}/comments",
        )

    def create_issue_comment(self, owner: str, repo: str, number: int, body: str) -> Dict[str, Any]:
        endpoint = "POST /repos/{owner}/{repo}/issues/{number}/comments"
        r = self.request(
            "POST", f"/repos/{owner}/{repo}/issues/{number}/comments", data={"body": body}, endpoint=endpoint
        )
        return self._expect(r, endpoint, ok=(200, 201))

    def get_content(self, owner: str, repo: str, path: str, ref: str) -> Any:
        """Raw contents API answer: a dict for files, symlinks and submodules, a list for directories."""
        endpoint = "GET /repos/{owner}/{repo}/contents/{path}"
        r = self.request("GET", f"/repos/{owner}/{repo}/contents/{path}", params={"ref": ref}, endpoint=endpoint)
        return self._expect(r, endpoint)

    def get_branch_rules(self, owner: str, repo: str, branch: str) -> List[Dict[str, Any]]:
        return self._list_all(
            f"/repos/{owner}/{repo}/rules/branches/{_seg(branch)}",
            "GET /repos/{owner}/{repo}/rules/branches/{branch}",
        )

    def list_check_suites(self, owner: str, repo: str, ref: str) -> List[Dict[str, Any]]:
        return self._list_all(
            f"/repos/{owner}/{repo}/commits/{_seg(ref)}/check-suites",
            "GET /repos/{owner}/{repo}/commits/{ref}/check-suites",
            key="check_suites",
        )

    def list_check_runs(self, check_runs_url: str) -> List[Dict[str, Any]]:
        return self._list_all(check_runs_url, "GET {check_runs_url}", key="check_runs")

    def create_review(self, owner: str, repo: str, number: int, event: str = "APPROVE") -> Dict[str, Any]:
        endpoint = "POST /repos/{owner}/{repo}/pulls/{number}/reviews"
        r = self.request(
            "POST", f"/repos/{owner}/{repo}/pulls/{number}/reviews", data={"event": event}, endpoint=endpoint
        )
        return self._expect(r, endpoint)

    def merge_pr(self, owner: str, repo: str, number: int, method: str) -> Tuple[bool, str]:
        endpoint = "PUT /repos/{owner}/{repo}/pulls/{number}/merge"
        r = self.request(
            "PUT", f"/repos/{owner}/{repo}/pulls/{number}/merge", data={"merge_method": method}, endpoint=endpoint
        )
        if r.status_code in (200, 201):
            return True, f"Merged PR #{number} via {method}"
        return False, f"Merge failed for PR #{number}: {r.status_code} {_error_message(r)}"
