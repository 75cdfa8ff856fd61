import logging
from typing import Tuple

import httpx

from .errors import ApprovalError, GitHubAPIError
from .github import GitHubClient
from .metrics import approvals_total, merge_attempts_total
from .models import MergeMethod

logger = logging.getLogger(__name__)


def approve(gh: GitHubClient, owner: str, repo: str, number: int) -> None:
    try:
        gh.create_review(owner, repo, number, event="APPROVE")
    except (GitHubAPIError, httpx.HTTPError) as e:
        approvals_total.labels(result="error").inc()
        raise ApprovalError(f"Failed to approve PR #{number} in {owner}/{repo}: {e}") from e
    approvals_total.labels(result="success").inc()
    logger.info("Approved PR #%s in %s/%s", number, owner, repo)


def execute_merge(gh: GitHubClient, owner: str, repo: str, number: int, method: MergeMethod) -> Tuple[bool, str]:
    """Approve, then merge.

    A failed approval raises ApprovalError and nothing is merged. A failed merge
    is only logged: conflicts and branch protection races clear up on their own
    and the next check suite event evaluates the pull request again.
    """
    approve(gh, owner, repo, number)
    try:
        ok, msg = gh.merge_pr(owner, repo, number, method.value)
    except httpx.HTTPError as e:
        ok, msg = False, f"Merge failed for PR #{number}: {e}"
    merge_attempts_total.labels(method=method.value, result="success" if ok else "error").inc()
    if ok:
        logger.info("Successfully merged pull request #%s using %s method.", number, method.value)
    else:
        logger.error("%s", msg)
    return ok, msg
