from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, StrictBool, model_validator

from .ecosystems import is_known


# --- Inbound webhook payload ---


class RepoId(BaseModel):
    id: int


class BranchRef(BaseModel):
    ref: str
    sha: Optional[str] = None
    repo: RepoId


class SuitePullRequest(BaseModel):
    number: int
    head: BranchRef
    base: BranchRef


class CheckSuitePayload(BaseModel):
    id: Optional[int] = None
    head_sha: Optional[str] = None
    conclusion: Optional[str] = None
    pull_requests: List[SuitePullRequest] = Field(default_factory=list)


class Owner(BaseModel):
    login: str


class Repository(BaseModel):
    name: str
    owner: Owner


class Installation(BaseModel):
    id: int


class CheckSuiteEvent(BaseModel):
    action: str
    check_suite: CheckSuitePayload
    repository: Repository
    installation: Optional[Installation] = None


class PullRequestCandidate(BaseModel):
    number: int
    head_ref: str
    head_sha: Optional[str]
    head_repo_id: int
    base_ref: str
    base_repo_id: int

    @classmethod
    def from_event(cls, event: CheckSuiteEvent) -> Optional["PullRequestCandidate"]:
        # GitHub lists the suite's pull requests; the last one is evaluated.
        if not event.check_suite.pull_requests:
            return None
        pr = event.check_suite.pull_requests[-1]
        return cls(
            number=pr.number,
            head_ref=pr.head.ref,
            head_sha=pr.head.sha,
            head_repo_id=pr.head.repo.id,
            base_ref=pr.base.ref,
            base_repo_id=pr.base.repo.id,
        )


# --- Repository settings ---


class MergeMethod(str, Enum):
    MERGE = "merge"
    SQUASH = "squash"
    REBASE = "rebase"


class RepositoryMergeCapability(BaseModel):
    allow_merge_commit: bool = False
    allow_squash_merge: bool = False
    allow_rebase_merge: bool = False

    def preferred_method(self) -> Optional[MergeMethod]:
        if self.allow_merge_commit:
            return MergeMethod.MERGE
        if self.allow_squash_merge:
            return MergeMethod.SQUASH
        if self.allow_rebase_merge:
            return MergeMethod.REBASE
        return None


# --- .steward.yml ---


class EcosystemSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    enable: Optional[StrictBool] = None


class StewardConfig(BaseModel):
    """Parsed ``.steward.yml``.

    Top-level ``enable`` switches the app off for the repository. Each known
    ecosystem id may carry its own ``enable``. Unknown keys are ignored.
    """

    model_config = ConfigDict(frozen=True)

    enable: Optional[StrictBool] = None
    ecosystems: Dict[str, Optional[EcosystemSettings]] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def _split_document(cls, data: Any) -> Any:
        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ValueError("top-level value must be a mapping")
        return {
            "enable": data.get("enable"),
            "ecosystems": {k: v for k, v in data.items() if isinstance(k, str) and is_known(k)},
        }

    def globally_enabled(self) -> bool:
        return self.enable is not False

    def ecosystem_enabled(self, ecosystem: str) -> bool:
        settings = self.ecosystems.get(ecosystem)
        return settings is None or settings.enable is not False


class RepoContent(BaseModel):
    type: str
    content: Optional[str] = None
    encoding: Optional[str] = None


# --- Checks ---


PASSING_CONCLUSIONS = frozenset({"success", "skipped", "neutral"})


class CheckSuiteSummary(BaseModel):
    id: Optional[int] = None
    status: Optional[str] = None
    conclusion: Optional[str] = None
    latest_check_runs_count: int = 0
    check_runs_url: Optional[str] = None

    @property
    def valid(self) -> bool:
        # Suites created by integrations that never attach runs are noise.
        return self.latest_check_runs_count > 0

    @property
    def completed(self) -> bool:
        return self.status == "completed"


class CheckRunResult(BaseModel):
    name: str
    conclusion: Optional[str] = None

    @property
    def passed(self) -> bool:
        return self.conclusion in PASSING_CONCLUSIONS


# --- Decision ---


class Outcome(str, Enum):
    ALLOW = "allow"
    VETO = "veto"
    PENDING = "pending"


class VetoReason(str, Enum):
    NO_ASSOCIATED_PR = "no_associated_pr"
    FORK_PR = "fork_pr"
    ALREADY_REVIEWED = "already_reviewed"
    ALREADY_MERGED = "already_merged"
    NOT_FROM_BOT = "not_from_bot"
    GLOBALLY_DISABLED = "globally_disabled"
    ECOSYSTEM_DISABLED = "ecosystem_disabled"
    CONFIG_INVALID = "config_invalid"
    CHECKS_PENDING = "checks_pending"
    CHECKS_FAILED = "checks_failed"


class GuardRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    guard: str
    passed: bool


class EligibilityDecision(BaseModel):
    model_config = ConfigDict(frozen=True)

    outcome: Outcome
    veto_reason: Optional[VetoReason] = None
    merge_method: Optional[MergeMethod] = None
    pull_number: Optional[int] = None
    trail: Tuple[GuardRecord, ...] = ()

    @property
    def allow(self) -> bool:
        return self.outcome is Outcome.ALLOW
