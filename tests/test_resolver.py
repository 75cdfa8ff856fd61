import base64

import pytest

from steward.config import STEWARD_USER_ID
from steward.errors import GitHubAPIError, UnknownEcosystemError
from steward.models import VetoReason
from steward.resolver import (
    ADVISORY_MESSAGES,
    ConfigProblem,
    ResolutionState,
    enablement_veto,
    post_advisory_comment,
    resolve_config,
)

from fakes import GHBase, file_content

BRANCH = "dependabot/npm_and_yarn/lodash-4.17.21"


def test_missing_file_is_absent():
    gh = GHBase()
    res = resolve_config(gh, "octo", "repo", BRANCH)
    assert res.state is ResolutionState.ABSENT
    assert gh.called("get_content") == [("get_content", ".steward.yml", BRANCH)]
    assert enablement_veto(res, BRANCH) is None


def test_absent_config_never_classifies_branch():
    res = resolve_config(GHBase(), "octo", "repo", "weird-branch")
    assert enablement_veto(res, "weird-branch") is None


def test_resolved_file():
    gh = GHBase()
    gh.content = file_content("enable: true\nnpm_and_yarn:\n  enable: true\n")
    res = resolve_config(gh, "octo", "repo", BRANCH)
    assert res.state is ResolutionState.RESOLVED
    assert res.config.globally_enabled()
    assert enablement_veto(res, BRANCH) is None


def test_globally_disabled():
    gh = GHBase()
    gh.content = file_content("enable: false\n")
    res = resolve_config(gh, "octo", "repo", BRANCH)
    assert enablement_veto(res, BRANCH) is VetoReason.GLOBALLY_DISABLED


def test_ecosystem_disabled_matches_branch_only():
    gh = GHBase()
    gh.content = file_content("npm_and_yarn:\n  enable: false\n")
    res = resolve_config(gh, "octo", "repo", BRANCH)
    assert enablement_veto(res, BRANCH) is VetoReason.ECOSYSTEM_DISABLED
    assert enablement_veto(res, "dependabot/cargo/serde-1.0.200") is None


def test_resolved_config_with_unknown_ecosystem_branch_is_fatal():
    gh = GHBase()
    gh.content = file_content("enable: true\n")
    res = resolve_config(gh, "octo", "repo", "feature/x")
    with pytest.raises(UnknownEcosystemError):
        enablement_veto(res, "feature/x")


def test_directory_is_not_a_file():
    gh = GHBase()
    gh.content = [{"type": "file", "name": "a.yml"}]
    res = resolve_config(gh, "octo", "repo", BRANCH)
    assert res.state is ResolutionState.INVALID
    assert res.problem is ConfigProblem.NOT_A_FILE
    assert enablement_veto(res, BRANCH) is VetoReason.CONFIG_INVALID


@pytest.mark.parametrize("kind", ["dir", "symlink", "submodule"])
def test_non_file_types(kind):
    gh = GHBase()
    gh.content = {"type": kind, "content": "", "encoding": "base64"}
    res = resolve_config(gh, "octo", "repo", BRANCH)
    assert res.problem is ConfigProblem.NOT_A_FILE


@pytest.mark.parametrize(
    "content",
    [
        file_content("enable: nope-not-bool"),
        file_content("[1, 2, 3]"),
        {"type": "file", "encoding": "base64", "content": "!!!not base64!!!"},
        {"type": "file", "encoding": "utf-8", "content": "enable: true"},
        {"type": "file", "encoding": "none", "content": ""},
        {"type": "file", "encoding": "base64", "content": base64.b64encode(b"\xff\xfe").decode()},
    ],
)
def test_schema_errors(content):
    gh = GHBase()
    gh.content = content
    res = resolve_config(gh, "octo", "repo", BRANCH)
    assert res.problem is ConfigProblem.SCHEMA_ERROR


def test_other_fetch_errors_propagate():
    class GHForbidden(GHBase):
        def get_content(self, owner, repo, path, ref):
            raise GitHubAPIError(403, "GET /repos/{owner}/{repo}/contents/{path}", "Resource not accessible")

    with pytest.raises(GitHubAPIError) as exc:
        resolve_config(GHForbidden(), "octo", "repo", BRANCH)
    assert exc.value.status_code == 403


def test_advisory_comment_posted_once():
    gh = GHBase()
    assert post_advisory_comment(gh, "octo", "repo", 5, ConfigProblem.NOT_A_FILE) is True
    assert post_advisory_comment(gh, "octo", "repo", 5, ConfigProblem.NOT_A_FILE) is False
    posted = gh.called("create_issue_comment")
    assert posted == [("create_issue_comment", 5, "Configuration invalid: `.steward.yml` must be a file.")]


def test_advisory_comment_wording():
    assert ADVISORY_MESSAGES[ConfigProblem.SCHEMA_ERROR] == "Configuration invalid. Please check `.steward.yml`."


def test_other_users_comments_do_not_suppress():
    gh = GHBase()
    gh.comments = [{"body": "lgtm", "user": {"id": 12345}}, {"body": "ghost", "user": None}]
    assert post_advisory_comment(gh, "octo", "repo", 5, ConfigProblem.SCHEMA_ERROR) is True


def test_existing_steward_comment_suppresses():
    gh = GHBase()
    gh.comments = [{"body": "earlier", "user": {"id": STEWARD_USER_ID}}]
    assert post_advisory_comment(gh, "octo", "repo", 5, ConfigProblem.SCHEMA_ERROR) is False
    assert gh.called("create_issue_comment") == []


def test_advisory_comment_failure_is_swallowed():
    class GHCommentFails(GHBase):
        def create_issue_comment(self, owner, repo, number, body):
            raise GitHubAPIError(500, "POST /repos/{owner}/{repo}/issues/{number}/comments", "boom")

    assert post_advisory_comment(GHCommentFails(), "octo", "repo", 5, ConfigProblem.NOT_A_FILE) is False
