import json
import os
from urllib.parse import parse_qs

import pytest

import cancel_branch_runs as cbr

AMBIENT_VARS = (
    "GITHUB_ACTIONS",
    "GITHUB_EVENT_PATH",
    "GITHUB_OUTPUT",
    "GITHUB_REPOSITORY",
    "GITHUB_RUN_ID",
    "GITHUB_SERVER_URL",
    "GH_ENTERPRISE_TOKEN",
    "GH_HOST",
    "NO_COLOR",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Strip action inputs and runner variables inherited from the host."""
    for key in list(os.environ):
        if key.startswith("INPUT_") or key in AMBIENT_VARS:
            monkeypatch.delenv(key, raising=False)


class FakeGitHub:
    """Stands in for gh_api, serving runs and pull requests from memory."""

    def __init__(self):
        self.calls = []
        self.runs_by_status = {}
        self.pulls = {}
        self.failing_cancels = set()
        self.fail_listing = False

    def __call__(self, endpoint, token, method="GET"):
        self.calls.append((method, endpoint, token))
        path, _, query = endpoint.partition("?")
        parts = path.split("/")

        if parts[3:5] == ["actions", "runs"] and len(parts) == 5:
            if self.fail_listing:
                raise cbr.GitHubCLIError(f"gh api {endpoint}", "HTTP 500", 1)
            status = parse_qs(query)["status"][0]
            return json.dumps(
                {"workflow_runs": self.runs_by_status.get(status, [])}
            )

        if parts[3] == "pulls":
            number = int(parts[4])
            if number not in self.pulls:
                raise cbr.GitHubCLIError(
                    f"gh api {endpoint}", "HTTP 404: Not Found", 1
                )
            return json.dumps({"head": {"ref": self.pulls[number]}})

        if parts[-1] == "cancel" and method == "POST":
            run_id = int(parts[5])
            if run_id in self.failing_cancels:
                raise cbr.GitHubCLIError(
                    f"gh api -X POST {endpoint}",
                    "HTTP 409: Cannot cancel a workflow run that is completed.",
                    1,
                )
            return ""

        raise AssertionError(f"unexpected call: {method} {endpoint}")

    def queries(self):
        return [c for c in self.calls if c[0] == "GET" and "/actions/runs?" in c[1]]

    def cancels(self):
        return [c for c in self.calls if c[0] == "POST"]


@pytest.fixture
def github(monkeypatch):
    fake = FakeGitHub()
    monkeypatch.setattr(cbr, "gh_api", fake)
    return fake


def make_run(run_id, name="CI", run_number=1, status="in_progress"):
    return {"id": run_id, "name": name, "run_number": run_number, "status": status}
