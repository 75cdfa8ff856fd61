import base64

from steward.config import DEPENDABOT_USER_ID, STEWARD_USER_ID
from steward.errors import GitHubAPIError
from steward.models import CheckSuiteEvent


def file_content(text: str) -> dict:
    encoded = base64.b64encode(text.encode("utf-8")).decode("ascii")
    # The contents API wraps base64 at 60 columns
    wrapped = "\n".join(encoded[i : i + 60] for i in range(0, len(encoded), 60))
    return {"type": "file", "encoding": "base64", "content": wrapped + "\n"}


def make_event(
    head_ref="dependabot/npm_and_yarn/test/test-package-1.0.0",
    head_repo_id=1,
    base_repo_id=1,
    number=1,
    pull_requests=None,
) -> CheckSuiteEvent:
    if pull_requests is None:
        pull_requests = [
            {
                "number": number,
                "base": {"ref": "main", "sha": "base-sha", "repo": {"id": base_repo_id}},
                "head": {"ref": head_ref, "sha": "test-sha", "repo": {"id": head_repo_id}},
            }
        ]
    return CheckSuiteEvent.model_validate(
        {
            "action": "completed",
            "check_suite": {"conclusion": "success", "pull_requests": pull_requests},
            "repository": {"name": "test-repo", "owner": {"login": "test-owner"}},
            "installation": {"id": 99},
        }
    )


class GHBase:
    """Fake GitHubClient: a Dependabot PR with no config, no suites and no rules.

    Every call is recorded in ``calls`` as (method_name, args...).
    """

    def __init__(self):
        self.calls = []
        self.repo_settings = {"allow_merge_commit": True}
        self.reviews = []
        self.pr = {"merged": False, "user": {"id": DEPENDABOT_USER_ID}}
        self.comments = []
        self.content = None  # None -> 404
        self.rules = []
        self.suites = []
        self.runs = {}
        self.merge_result = (True, "merged")

    def get_repo(self, owner, repo):
        self.calls.append(("get_repo",))
        return self.repo_settings

    def list_reviews(self, owner, repo, number):
        self.calls.append(("list_reviews", number))
        return self.reviews

    def get_pr(self, owner, repo, number):
        self.calls.append(("get_pr", number))
        return self.pr

    def list_issue_comments(self, owner, repo, number):
        self.calls.append(("list_issue_comments", number))
        return self.comments

    def create_issue_comment(self, owner, repo, number, body):
        self.calls.append(("create_issue_comment", number, body))
        comment = {"body": body, "user": {"id": STEWARD_USER_ID}}
        self.comments.append(comment)
        return comment

    def get_content(self, owner, repo, path, ref):
        self.calls.append(("get_content", path, ref))
        if self.content is None:
            raise GitHubAPIError(404, "GET /repos/{owner}/{repo}/contents/{path}", "Not Found")
        return self.content

    def get_branch_rules(self, owner, repo, branch):
        self.calls.append(("get_branch_rules", branch))
        return self.rules

    def list_check_suites(self, owner, repo, ref):
        self.calls.append(("list_check_suites", ref))
        return self.suites

    def list_check_runs(self, check_runs_url):
        self.calls.append(("list_check_runs", check_runs_url))
        return self.runs.get(check_runs_url, [])

    def create_review(self, owner, repo, number, event="APPROVE"):
        self.calls.append(("create_review", number, event))
        self.reviews.append({"user": {"id": STEWARD_USER_ID}, "state": "APPROVED"})
        return {"id": 1}

    def merge_pr(self, owner, repo, number, method):
        self.calls.append(("merge_pr", number, method))
        ok, msg = self.merge_result
        if ok:
            self.pr = dict(self.pr, merged=True)
        return ok, msg

    def called(self, name):
        return [c for c in self.calls if c[0] == name]


def suite(status="completed", runs=1, url="https://api.github.com/check-suites/1/check-runs"):
    return {"status": status, "conclusion": "success", "latest_check_runs_count": runs, "check_runs_url": url}


def required_checks_rule(*contexts):
    return {
        "type": "required_status_checks",
        "parameters": {"required_status_checks": [{"context": c} for c in contexts]},
    }
