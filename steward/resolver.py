"""Resolution of the per-repository ``.steward.yml`` policy override.

The file is read from the pull request's head branch. A missing file means
the defaults apply. A file that exists but cannot be used is reported once on
the pull request with an advisory comment and vetoes the merge.
"""
import base64
import logging
from enum import Enum
from typing import Optional

import httpx
import yaml
from pydantic import BaseModel, ConfigDict, ValidationError

from .config import CONFIG_FILE_NAME, STEWARD_USER_ID
from .ecosystems import classify_branch
from .errors import GitHubAPIError
from .github import GitHubClient
from .metrics import advisory_comments_total, config_resolutions_total
from .models import RepoContent, StewardConfig, VetoReason

logger = logging.getLogger(__name__)


class ConfigProblem(str, Enum):
    NOT_A_FILE = "not_a_file"
    SCHEMA_ERROR = "schema_error"


ADVISORY_MESSAGES = {
    ConfigProblem.NOT_A_FILE: f"Configuration invalid: `{CONFIG_FILE_NAME}` must be a file.",
    ConfigProblem.SCHEMA_ERROR: f"Configuration invalid. Please check `{CONFIG_FILE_NAME}`.",
}


class ResolutionState(str, Enum):
    RESOLVED = "resolved"
    ABSENT = "absent"
    INVALID = "invalid"


class ConfigResolution(BaseModel):
    model_config = ConfigDict(frozen=True)

    state: ResolutionState
    config: Optional[StewardConfig] = None
    problem: Optional[ConfigProblem] = None

    @classmethod
    def resolved(cls, config: StewardConfig) -> "ConfigResolution":
        return cls(state=ResolutionState.RESOLVED, config=config)

    @classmethod
    def absent(cls) -> "ConfigResolution":
        return cls(state=ResolutionState.ABSENT)

    @classmethod
    def invalid(cls, problem: ConfigProblem) -> "ConfigResolution":
        return cls(state=ResolutionState.INVALID, problem=problem)


def decode_content(content: RepoContent) -> str:
    if content.encoding != "base64":
        raise ValueError(f"unsupported content encoding {content.encoding!r}")
    # The contents API wraps base64 at 60 columns.
    raw = (content.content or "").replace("\n", "")
    return base64.b64decode(raw, validate=True).decode("utf-8")


def parse_config(text: str) -> StewardConfig:
    """Parse YAML text into a StewardConfig.

    Raises ``yaml.YAMLError`` for malformed YAML and ``ValidationError`` when
    the document does not match the schema.
    """
    return StewardConfig.model_validate(yaml.safe_load(text))


def resolve_config(gh: GitHubClient, owner: str, repo: str, head_ref: str) -> ConfigResolution:
    try:
        raw = gh.get_content(owner, repo, CONFIG_FILE_NAME, head_ref)
    except GitHubAPIError as e:
        if not e.not_found:
            raise
        logger.info("%s not found on %s in %s/%s; using defaults", CONFIG_FILE_NAME, head_ref, owner, repo)
        config_resolutions_total.labels(result="absent").inc()
        return ConfigResolution.absent()

    # Directories come back as a list of entries.
    if not isinstance(raw, dict):
        return _invalid(ConfigProblem.NOT_A_FILE, owner, repo)
    try:
        content = RepoContent.model_validate(raw)
    except ValidationError:
        return _invalid(ConfigProblem.NOT_A_FILE, owner, repo)
    if content.type != "file":
        return _invalid(ConfigProblem.NOT_A_FILE, owner, repo)

    try:
        config = parse_config(decode_content(content))
    except (ValueError, yaml.YAMLError) as e:
        logger.debug("%s rejected in %s/%s: %s", CONFIG_FILE_NAME, owner, repo, e)
        return _invalid(ConfigProblem.SCHEMA_ERROR, owner, repo)
    config_resolutions_total.labels(result="resolved").inc()
    return ConfigResolution.resolved(config)


def _invalid(problem: ConfigProblem, owner: str, repo: str) -> ConfigResolution:
    logger.warning("%s invalid in %s/%s: %s", CONFIG_FILE_NAME, owner, repo, problem.value)
    config_resolutions_total.labels(result=f"invalid_{problem.value}").inc()
    return ConfigResolution.invalid(problem)


def enablement_veto(resolution: ConfigResolution, head_ref: str) -> Optional[VetoReason]:
    """Return the veto implied by a resolved config, or None when merging is enabled."""
    if resolution.state is ResolutionState.INVALID:
        return VetoReason.CONFIG_INVALID
    config = resolution.config
    if config is None:
        return None
    if not config.globally_enabled():
        logger.info("Steward is disabled by %s", CONFIG_FILE_NAME)
        return VetoReason.GLOBALLY_DISABLED
    ecosystem = classify_branch(head_ref)
    if not config.ecosystem_enabled(ecosystem):
        logger.info("Steward for %s is disabled by %s", ecosystem, CONFIG_FILE_NAME)
        return VetoReason.ECOSYSTEM_DISABLED
    return None


def post_advisory_comment(gh: GitHubClient, owner: str, repo: str, number: int, problem: ConfigProblem) -> bool:
    """Tell the pull request about an unusable config, once.

    Returns True when a comment was posted. Any API failure is logged and
    swallowed; the merge is vetoed either way.
    """
    try:
        comments = gh.list_issue_comments(owner, repo, number)
        if any((c.get("user") or {}).get("id") == STEWARD_USER_ID for c in comments):
            logger.debug("PR #%s already has a Steward comment; not commenting again", number)
            advisory_comments_total.labels(kind=problem.value, result="suppressed").inc()
            return False
        gh.create_issue_comment(owner, repo, number, ADVISORY_MESSAGES[problem])
    except (GitHubAPIError, httpx.HTTPError) as e:
        logger.warning("Failed to post advisory comment on PR #%s in %s/%s: %s", number, owner, repo, e)
        advisory_comments_total.labels(kind=problem.value, result="error").inc()
        return False
    advisory_comments_total.labels(kind=problem.value, result="posted").inc()
    return True
