"""Merge eligibility policy.

A completed check suite is evaluated by running ``GUARDS`` in order. Each guard
returns None to let evaluation continue or a ``VetoReason`` to stop it; no
further API calls are made after a veto. Fatal conditions (unexpected API
failures, repositories without a merge method, branches with no known
ecosystem) are raised, never turned into vetoes.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

from .checks import CheckStatus, aggregate_checks
from .config import DEPENDABOT_USER_ID, STEWARD_USER_ID
from .errors import NoMergeMethodError, StewardError
from .github import GitHubClient
from .metrics import evaluations_total
from .models import (
    CheckSuiteEvent,
    EligibilityDecision,
    GuardRecord,
    MergeMethod,
    Outcome,
    PullRequestCandidate,
    RepositoryMergeCapability,
    VetoReason,
)
from .resolver import ResolutionState, enablement_veto, post_advisory_comment, resolve_config

logger = logging.getLogger(__name__)


@dataclass
class EvaluationContext:
    gh: GitHubClient
    owner: str
    repo: str
    candidate: Optional[PullRequestCandidate]
    pull_request: Dict[str, Any] = field(default_factory=dict)

    @property
    def pr(self) -> PullRequestCandidate:
        if self.candidate is None:
            raise StewardError("guard needs a pull request but none is attached")
        return self.candidate


Guard = Callable[[EvaluationContext], Optional[VetoReason]]


def guard_pull_request_attached(ctx: EvaluationContext) -> Optional[VetoReason]:
    if ctx.candidate is None:
        return VetoReason.NO_ASSOCIATED_PR
    return None


def guard_same_repository(ctx: EvaluationContext) -> Optional[VetoReason]:
    if ctx.pr.head_repo_id != ctx.pr.base_repo_id:
        return VetoReason.FORK_PR
    return None


def guard_not_reviewed(ctx: EvaluationContext) -> Optional[VetoReason]:
    reviews = ctx.gh.list_reviews(ctx.owner, ctx.repo, ctx.pr.number)
    if any((r.get("user") or {}).get("id") == STEWARD_USER_ID for r in reviews):
        return VetoReason.ALREADY_REVIEWED
    return None


def guard_not_merged(ctx: EvaluationContext) -> Optional[VetoReason]:
    ctx.pull_request = ctx.gh.get_pr(ctx.owner, ctx.repo, ctx.pr.number)
    if ctx.pull_request.get("merged"):
        return VetoReason.ALREADY_MERGED
    return None


def guard_from_dependabot(ctx: EvaluationContext) -> Optional[VetoReason]:
    if (ctx.pull_request.get("user") or {}).get("id") != DEPENDABOT_USER_ID:
        return VetoReason.NOT_FROM_BOT
    return None


def guard_config_enabled(ctx: EvaluationContext) -> Optional[VetoReason]:
    resolution = resolve_config(ctx.gh, ctx.owner, ctx.repo, ctx.pr.head_ref)
    if resolution.state is ResolutionState.INVALID and resolution.problem is not None:
        post_advisory_comment(ctx.gh, ctx.owner, ctx.repo, ctx.pr.number, resolution.problem)
    return enablement_veto(resolution, ctx.pr.head_ref)


def guard_checks_passed(ctx: EvaluationContext) -> Optional[VetoReason]:
    outcome = aggregate_checks(ctx.gh, ctx.owner, ctx.repo, ctx.pr.head_ref, ctx.pr.base_ref)
    if outcome.status is CheckStatus.PENDING:
        return VetoReason.CHECKS_PENDING
    if outcome.status is CheckStatus.FAIL:
        logger.info("PR #%s is missing required checks: %s", ctx.pr.number, ", ".join(outcome.missing))
        return VetoReason.CHECKS_FAILED
    return None


GUARDS: List[Tuple[str, Guard]] = [
    ("pull_request_attached", guard_pull_request_attached),
    ("same_repository", guard_same_repository),
    ("not_reviewed", guard_not_reviewed),
    ("not_merged", guard_not_merged),
    ("from_dependabot", guard_from_dependabot),
    ("config_enabled", guard_config_enabled),
    ("checks_passed", guard_checks_passed),
]


def resolve_merge_method(gh: GitHubClient, owner: str, repo: str) -> MergeMethod:
    capability = RepositoryMergeCapability.model_validate(gh.get_repo(owner, repo))
    method = capability.preferred_method()
    if method is None:
        raise NoMergeMethodError(f"No allowed merge method found for {owner}/{repo}")
    return method


def run_guards(
    ctx: EvaluationContext, guards: List[Tuple[str, Guard]] = GUARDS
) -> Tuple[Optional[VetoReason], Tuple[GuardRecord, ...]]:
    trail: List[GuardRecord] = []
    for name, guard in guards:
        reason = guard(ctx)
        trail.append(GuardRecord(guard=name, passed=reason is None))
        if reason is not None:
            return reason, tuple(trail)
    return None, tuple(trail)


def evaluate(gh: GitHubClient, event: CheckSuiteEvent) -> EligibilityDecision:
    """Decide whether the pull request behind ``event`` may be approved and merged."""
    owner = event.repository.owner.login
    repo = event.repository.name
    candidate = PullRequestCandidate.from_event(event)
    number = candidate.number if candidate else None
    logger.info("Evaluating check_suite.completed for %s/%s (pr=%s)", owner, repo, number)

    ctx = EvaluationContext(gh=gh, owner=owner, repo=repo, candidate=candidate)
    reason, trail = run_guards(ctx)

    if reason is VetoReason.CHECKS_PENDING:
        logger.info("PR #%s in %s/%s: check suites not yet completed; waiting for a later event", number, owner, repo)
        decision = EligibilityDecision(
            outcome=Outcome.PENDING, veto_reason=reason, pull_number=number, trail=trail
        )
    elif reason is not None:
        logger.warning("PR #%s in %s/%s: skipping auto-merge, reason=%s", number, owner, repo, reason.value)
        decision = EligibilityDecision(outcome=Outcome.VETO, veto_reason=reason, pull_number=number, trail=trail)
    else:
        method = resolve_merge_method(gh, owner, repo)
        decision = EligibilityDecision(
            outcome=Outcome.ALLOW, merge_method=method, pull_number=number, trail=trail
        )
    evaluations_total.labels(
        outcome=decision.outcome.value,
        reason=decision.veto_reason.value if decision.veto_reason else "",
    ).inc()
    return decision
