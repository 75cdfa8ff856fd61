import logging
from concurrent.futures import ThreadPoolExecutor
from enum import Enum
from typing import List, Sequence, Set, Tuple

from pydantic import BaseModel, ConfigDict

from .config import SETTINGS
from .github import GitHubClient
from .models import CheckRunResult, CheckSuiteSummary

logger = logging.getLogger(__name__)


class CheckStatus(str, Enum):
    PASS = "pass"
    PENDING = "pending"
    FAIL = "fail"


class CheckOutcome(BaseModel):
    model_config = ConfigDict(frozen=True)

    status: CheckStatus
    missing: Tuple[str, ...] = ()


def required_check_names(gh: GitHubClient, owner: str, repo: str, base_ref: str) -> List[str]:
    """Status check contexts the base branch rules require."""
    names: List[str] = []
    for rule in gh.get_branch_rules(owner, repo, base_ref):
        if rule.get("type") != "required_status_checks":
            continue
        params = rule.get("parameters") or {}
        for check in params.get("required_status_checks") or []:
            names.append(check["context"])
    return names


def passed_check_names(gh: GitHubClient, suites: Sequence[CheckSuiteSummary]) -> Set[str]:
    """Union of passing check run names across ``suites``.

    Suites are fetched concurrently and all of them are awaited; a failed
    fetch raises instead of contributing an empty set.
    """
    # A suite without a runs URL has nothing to contribute.
    suites = [s for s in suites if s.check_runs_url]
    if not suites:
        return set()
    workers = min(len(suites), SETTINGS.check_runs_max_workers)
    with ThreadPoolExecutor(max_workers=workers) as pool:
        futures = [pool.submit(gh.list_check_runs, suite.check_runs_url) for suite in suites]
        runs = [CheckRunResult.model_validate(run) for f in futures for run in f.result()]
    return {run.name for run in runs if run.passed}


def aggregate_checks(gh: GitHubClient, owner: str, repo: str, head_ref: str, base_ref: str) -> CheckOutcome:
    suites = [CheckSuiteSummary.model_validate(s) for s in gh.list_check_suites(owner, repo, head_ref)]
    if not suites:
        logger.debug("No check suites on %s in %s/%s", head_ref, owner, repo)
        return CheckOutcome(status=CheckStatus.PASS)

    valid = [s for s in suites if s.valid]
    if not valid:
        logger.debug("No check suite on %s in %s/%s has check runs", head_ref, owner, repo)
        return CheckOutcome(status=CheckStatus.PASS)

    if any(not s.completed for s in valid):
        return CheckOutcome(status=CheckStatus.PENDING)

    required = required_check_names(gh, owner, repo, base_ref)
    if not required:
        logger.debug("No required status checks on %s in %s/%s", base_ref, owner, repo)
        return CheckOutcome(status=CheckStatus.PASS)

    passed = passed_check_names(gh, valid)
    missing = tuple(name for name in required if name not in passed)
    if missing:
        logger.debug("Required checks not passed on %s: %s", head_ref, ", ".join(missing))
        return CheckOutcome(status=CheckStatus.FAIL, missing=missing)
    return CheckOutcome(status=CheckStatus.PASS)
