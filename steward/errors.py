"""Fatal error types.

Policy vetoes are not errors; they are reported through ``EligibilityDecision``.
Everything raised from here aborts the evaluation of a delivery.
"""
from typing import Optional


class StewardError(Exception):
    """Base class for fatal evaluation errors."""


class GitHubAPIError(StewardError):
    def __init__(self, status_code: int, endpoint: str, message: Optional[str] = None):
        self.status_code = status_code
        self.endpoint = endpoint
        self.message = message or ""
        super().__init__(f"{endpoint} returned {status_code}: {self.message}")

    @property
    def not_found(self) -> bool:
        return self.status_code == 404


class NoMergeMethodError(StewardError):
    """The repository allows none of merge commits, squash or rebase."""


class UnknownEcosystemError(StewardError):
    """A Dependabot head branch embeds no known ecosystem id."""

    def __init__(self, head_ref: str):
        self.head_ref = head_ref
        super().__init__(f"No known ecosystem in head branch {head_ref!r}")


class ApprovalError(StewardError):
    """Submitting the approving review failed; merging is not attempted."""
