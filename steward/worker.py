import logging
from typing import Tuple

from .errors import StewardError
from .executor import execute_merge
from .github import GitHubClient
from .metrics import evaluation_seconds
from .models import CheckSuiteEvent, EligibilityDecision
from .policy import evaluate

logger = logging.getLogger(__name__)


def process_check_suite(gh: GitHubClient, event: CheckSuiteEvent) -> Tuple[EligibilityDecision, bool]:
    """Evaluate one check_suite.completed delivery and merge when allowed.

    Returns the decision and whether the merge went through.
    """
    owner = event.repository.owner.login
    repo = event.repository.name
    with evaluation_seconds.labels(phase="evaluate").time():
        decision = evaluate(gh, event)
    if not decision.allow:
        return decision, False
    if decision.pull_number is None or decision.merge_method is None:
        raise StewardError("allow decision without pull number or merge method")
    logger.debug("Merging PR #%s for %s/%s with method=%s", decision.pull_number, owner, repo, decision.merge_method.value)
    with evaluation_seconds.labels(phase="merge").time():
        merged, _ = execute_merge(gh, owner, repo, decision.pull_number, decision.merge_method)
    return decision, merged
