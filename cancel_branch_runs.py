#!/usr/bin/env python3
"""
cancel-branch-runs — Cancel in-flight GitHub Actions runs for a branch.

Runs as a composite action step or straight from a terminal.
Uses the GitHub CLI (gh) for API access, authenticated with the given token.
"""

import argparse
import json
import os
import re
import subprocess
import sys
from typing import Dict, List, NamedTuple, Optional, Tuple
from urllib.parse import quote, urlparse

VERSION = "1.0.0"
PAGE_SIZE = 100
DEFAULT_STATUSES = "in_progress,queued"
OUTPUT_NAME = "cancelled-count"

RUN_STATUSES = (
    "queued",
    "in_progress",
    "completed",
    "waiting",
    "requested",
    "pending",
)

# Conclusions the runs endpoint also accepts as a status filter.
RUN_CONCLUSIONS = (
    "action_required",
    "cancelled",
    "failure",
    "neutral",
    "skipped",
    "stale",
    "success",
    "timed_out",
)


# ── Terminal Styling ──────────────────────────────────────────────────────


class Style:
    """ANSI styling with automatic detection. Respects NO_COLOR convention."""

    _enabled: bool = (
        hasattr(sys.stderr, "isatty")
        and sys.stderr.isatty()
        and os.environ.get("NO_COLOR") is None
    )

    BOLD = "\033[1m" if _enabled else ""
    RED = "\033[31m" if _enabled else ""
    GREEN = "\033[32m" if _enabled else ""
    YELLOW = "\033[33m" if _enabled else ""
    CYAN = "\033[36m" if _enabled else ""
    RESET = "\033[0m" if _enabled else ""

    @classmethod
    def success(cls, text: str) -> str:
        return f"{cls.GREEN}{text}{cls.RESET}"

    @classmethod
    def error(cls, text: str) -> str:
        return f"{cls.RED}{text}{cls.RESET}"

    @classmethod
    def warn(cls, text: str) -> str:
        return f"{cls.YELLOW}{text}{cls.RESET}"

    @classmethod
    def info(cls, text: str) -> str:
        return f"{cls.CYAN}{text}{cls.RESET}"

    @classmethod
    def bold(cls, text: str) -> str:
        return f"{cls.BOLD}{text}{cls.RESET}"


# ── Exceptions ────────────────────────────────────────────────────────────


class GitHubCLIError(Exception):
    """Raised when a gh CLI command fails."""

    def __init__(self, command: str, stderr: str, returncode: int):
        self.command = command
        self.stderr = stderr
        self.returncode = returncode
        super().__init__(f"gh failed (exit {returncode}): {stderr}")


class MissingInputError(ValueError):
    """Raised when a required action input is empty."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Input required and not supplied: {name}")


class WorkflowRun(NamedTuple):
    id: int
    name: str
    run_number: int


# ── Reporting ─────────────────────────────────────────────────────────────


def in_actions() -> bool:
    return os.environ.get("GITHUB_ACTIONS") == "true"


def escape_data(text: str) -> str:
    """Escape a workflow command payload (%, CR, LF)."""
    return text.replace("%", "%25").replace("\r", "%0D").replace("\n", "%0A")


def info(message: str) -> None:
    print(message, flush=True)


def debug(message: str) -> None:
    if in_actions():
        print(f"::debug::{escape_data(message)}", flush=True)


def warning(message: str) -> None:
    if in_actions():
        print(f"::warning::{escape_data(message)}", flush=True)
    else:
        print(Style.warn(f"warning: {message}"), file=sys.stderr)


def set_failed(message: str) -> int:
    """Report the invocation as failed. Returns the exit code to use."""
    if in_actions():
        print(f"::error::{escape_data(message)}", flush=True)
    else:
        print(Style.error(f"error: {message}"), file=sys.stderr)
    return 1


def set_output(name: str, value: object) -> None:
    """Publish a step output through $GITHUB_OUTPUT, or stdout outside Actions."""
    output_file = os.environ.get("GITHUB_OUTPUT")
    if output_file:
        with open(output_file, "a", encoding="utf-8") as f:
            f.write(f"{name}={value}\n")
    else:
        print(f"{name}={value}")


# ── Configuration ─────────────────────────────────────────────────────────


def get_input(name: str) -> str:
    """Read an action input from the INPUT_* environment, trimmed."""
    key = "INPUT_" + name.replace(" ", "_").upper()
    return os.environ.get(key, "").strip()


def load_event_payload(path: Optional[str] = None) -> Dict:
    """Load the triggering event payload; empty when unavailable."""
    path = path if path is not None else os.environ.get("GITHUB_EVENT_PATH", "")
    if not path or not os.path.isfile(path):
        return {}
    try:
        with open(path, encoding="utf-8") as f:
            payload = json.load(f)
    except (OSError, json.JSONDecodeError) as exc:
        warning(f"Could not read event payload {path}: {exc}")
        return {}
    return payload if isinstance(payload, dict) else {}


def current_run_id() -> int:
    try:
        return int(os.environ.get("GITHUB_RUN_ID", "0"))
    except ValueError:
        return 0


def enterprise_host() -> Optional[str]:
    """Host of the GitHub Enterprise Server running this job, if any."""
    host = urlparse(os.environ.get("GITHUB_SERVER_URL", "")).hostname
    if not host or host == "github.com":
        return None
    return host


# ── GitHub API Layer ──────────────────────────────────────────────────────


def gh_api(endpoint: str, token: str, method: str = "GET") -> str:
    """Execute a single gh api call authenticated with the given token."""
    cmd = ["gh", "api"]
    if method != "GET":
        cmd.extend(["-X", method])
    cmd.append(endpoint)

    env = dict(os.environ, GH_TOKEN=token)
    env.pop("GITHUB_TOKEN", None)
    host = enterprise_host()
    if host:
        env["GH_HOST"] = host
        env["GH_ENTERPRISE_TOKEN"] = token

    try:
        result = subprocess.run(
            cmd, capture_output=True, text=True, check=True, env=env
        )
    except FileNotFoundError as exc:
        raise GitHubCLIError(" ".join(cmd), "gh CLI not found on PATH", 127) from exc
    except subprocess.CalledProcessError as exc:
        raise GitHubCLIError(
            " ".join(cmd), (exc.stderr or "").strip(), exc.returncode
        ) from exc

    return result.stdout.strip()


def gh_api_json(endpoint: str, token: str) -> Dict:
    raw = gh_api(endpoint, token)
    try:
        return json.loads(raw) if raw else {}
    except json.JSONDecodeError as exc:
        raise GitHubCLIError(
            f"gh api {endpoint}", f"Invalid JSON response: {exc}", 0
        ) from exc


# ── Input Parsing ─────────────────────────────────────────────────────────


def parse_comma_separated(text: str) -> List[str]:
    """Split comma-separated input into trimmed, non-empty entries."""
    if not text or not text.strip():
        return []
    return [part.strip() for part in text.split(",") if part.strip()]


def parse_repo(repo_input: str) -> Tuple[str, str]:
    """Parse a GitHub repository identifier into (owner, repo).

    Accepts:
      - owner/repo
      - https://github.com/owner/repo
      - git@github.com:owner/repo.git
    """
    text = repo_input.strip()
    if text.startswith("git@"):
        path = text.split(":", 1)[-1]
    elif text.startswith(("http://", "https://")):
        path = urlparse(text).path
    else:
        path = text

    parts = path.strip("/").removesuffix(".git").split("/")
    if len(parts) != 2 or not all(parts):
        raise ValueError(
            f"Cannot parse repository: '{repo_input}'. "
            f"Expected 'owner/repo' or a GitHub URL."
        )

    owner, repo = parts
    valid_pattern = re.compile(r"^[a-zA-Z0-9._-]+$")
    if not valid_pattern.match(owner) or not valid_pattern.match(repo):
        raise ValueError(
            f"Invalid characters in repository: '{owner}/{repo}'. "
            f"Only alphanumerics, dots, hyphens, and underscores are allowed."
        )

    return owner, repo


def parse_pr_number(text: str) -> int:
    value = text.strip().lstrip("#")
    if not value.isdigit():
        raise ValueError(f"'{text}' is not a pull request number")
    return int(value)


# ── Branch Resolution ─────────────────────────────────────────────────────


def fetch_pr_branch(owner: str, repo: str, pr_number: int, token: str) -> str:
    """Fetch the head branch of a pull request."""
    pr = gh_api_json(f"repos/{owner}/{repo}/pulls/{pr_number}", token)
    ref = (pr.get("head") or {}).get("ref")
    if not ref:
        raise ValueError(f"pull request #{pr_number} has no head branch")
    return ref


def branch_from_event(event: Dict) -> Optional[str]:
    pull_request = event.get("pull_request") or {}
    return (pull_request.get("head") or {}).get("ref") or None


def resolve_branch(
    owner: str,
    repo: str,
    branch: Optional[str],
    pr_number: Optional[str],
    event: Dict,
    token: str,
) -> Optional[str]:
    """Resolve the target branch: explicit > pull request number > event.

    A failed pull request lookup is reported as a warning and yields None;
    the event payload is not consulted in that case.
    """
    if branch:
        return branch

    if pr_number:
        try:
            return fetch_pr_branch(owner, repo, parse_pr_number(pr_number), token)
        except (GitHubCLIError, ValueError) as exc:
            detail = exc.stderr if isinstance(exc, GitHubCLIError) else str(exc)
            warning(f"Failed to fetch PR #{pr_number.lstrip('#')}: {detail}")
            return None

    return branch_from_event(event)


# ── Run Discovery ─────────────────────────────────────────────────────────


def fetch_branch_runs(
    owner: str, repo: str, branch: str, status: str, token: str
) -> List[Dict]:
    """Fetch the first page of runs on a branch with the given status."""
    endpoint = (
        f"repos/{owner}/{repo}/actions/runs"
        f"?branch={quote(branch, safe='')}"
        f"&status={quote(status, safe='')}"
        f"&per_page={PAGE_SIZE}"
    )
    return gh_api_json(endpoint, token).get("workflow_runs", [])


def find_runs(
    owner: str,
    repo: str,
    branch: str,
    statuses: List[str],
    workflows: List[str],
    exclude_run_id: int,
    token: str,
) -> List[WorkflowRun]:
    """Collect cancellable runs across statuses, deduplicated by run id."""
    unique: Dict[int, WorkflowRun] = {}

    for status in statuses:
        for run in fetch_branch_runs(owner, repo, branch, status, token):
            if run["id"] == exclude_run_id:
                continue
            name = run.get("name") or "Unknown"
            if workflows and name not in workflows:
                continue
            unique[run["id"]] = WorkflowRun(
                id=run["id"], name=name, run_number=run.get("run_number", 0)
            )

    return list(unique.values())


# ── Cancellation ──────────────────────────────────────────────────────────


def cancel_run(owner: str, repo: str, run_id: int, token: str) -> None:
    """Request cancellation of a workflow run."""
    gh_api(
        f"repos/{owner}/{repo}/actions/runs/{run_id}/cancel",
        token,
        method="POST",
    )


def cancel_runs(
    owner: str,
    repo: str,
    runs: List[WorkflowRun],
    token: str,
    dry_run: bool = False,
) -> int:
    """Cancel each run independently. Returns the number cancelled."""
    cancelled = 0

    for run in runs:
        if dry_run:
            info(f"Would cancel: {run.name} (#{run.run_number})")
            continue
        try:
            cancel_run(owner, repo, run.id, token)
        except GitHubCLIError as exc:
            warning(f"Failed to cancel run {run.id}: {exc.stderr}")
            continue
        info(Style.success(f"Cancelled: {run.name} (#{run.run_number})"))
        cancelled += 1

    return cancelled


# ── CLI Argument Parser ───────────────────────────────────────────────────


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser; defaults come from the action inputs."""
    parser = argparse.ArgumentParser(
        prog="cancel-branch-runs",
        description="Cancel in-progress GitHub Actions runs for a branch.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""examples:
  %(prog)s --repository owner/repo --branch feat-x      Cancel active runs on feat-x
  %(prog)s --repository owner/repo --pr-number 42       Cancel runs for PR #42's branch
  %(prog)s -r owner/repo -b main -w CI --dry-run        Preview cancelling CI runs on main

inputs may also be given as INPUT_* environment variables (action mode).
""",
    )

    parser.add_argument(
        "--token",
        default=get_input("token"),
        help="Token used for the GitHub API (env: INPUT_TOKEN)",
    )
    parser.add_argument(
        "-r",
        "--repository",
        default=get_input("repository") or os.environ.get("GITHUB_REPOSITORY", ""),
        help="Repository as owner/repo (default: $GITHUB_REPOSITORY)",
    )
    parser.add_argument(
        "-b",
        "--branch",
        default=get_input("branch"),
        help="Branch whose runs are cancelled",
    )
    parser.add_argument(
        "--pr-number",
        default=get_input("pr-number"),
        help="Pull request whose head branch is used when --branch is absent",
    )
    parser.add_argument(
        "-w",
        "--workflows",
        default=get_input("workflows"),
        help="Comma-separated workflow names to restrict to. Omit for all.",
    )
    parser.add_argument(
        "-s",
        "--statuses",
        default=get_input("statuses") or DEFAULT_STATUSES,
        help=f"Comma-separated run statuses (default: {DEFAULT_STATUSES})",
    )
    parser.add_argument(
        "--dry-run",
        action=argparse.BooleanOptionalAction,
        default=get_input("dry-run").lower() == "true",
        help="List the runs that would be cancelled without cancelling them",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {VERSION}",
    )

    return parser


# ── Main ──────────────────────────────────────────────────────────────────


def run(args: argparse.Namespace) -> int:
    """Cancel matching runs. Returns the number of runs cancelled."""
    if not args.token:
        raise MissingInputError("token")

    owner, repo = parse_repo(args.repository)
    event = load_event_payload()

    branch = resolve_branch(
        owner, repo, args.branch, args.pr_number, event, args.token
    )
    if not branch:
        info("Could not determine branch, skipping workflow cancellation")
        return 0

    workflows = parse_comma_separated(args.workflows)
    statuses = parse_comma_separated(args.statuses)

    info(f"Cancelling workflows for branch: {Style.bold(branch)}")
    if workflows:
        info(f"Filtering by workflows: {', '.join(workflows)}")
    info(f"Filtering by statuses: {', '.join(statuses)}")

    unknown = [s for s in statuses if s not in RUN_STATUSES + RUN_CONCLUSIONS]
    if unknown:
        warning(f"Unrecognized run status(es) passed through: {', '.join(unknown)}")

    runs = find_runs(
        owner, repo, branch, statuses, workflows, current_run_id(), args.token
    )
    info(f"Found {len(runs)} workflow run(s) to cancel")

    cancelled = cancel_runs(owner, repo, runs, args.token, dry_run=args.dry_run)

    if args.dry_run:
        info(Style.info("Dry run complete. No runs were cancelled."))
    else:
        info(f"Successfully cancelled {cancelled} workflow run(s)")
    return cancelled


def main(argv: Optional[List[str]] = None) -> int:
    """Entry point. Returns exit code."""
    args = build_parser().parse_args(argv)

    try:
        cancelled = run(args)
        set_output(OUTPUT_NAME, cancelled)
    except (GitHubCLIError, ValueError, OSError) as exc:
        return set_failed(str(exc))
    except Exception as exc:
        debug(f"{type(exc).__name__}: {exc}")
        return set_failed("An unexpected error occurred")

    return 0


if __name__ == "__main__":
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        print(Style.warn("\nInterrupted."), file=sys.stderr)
        sys.exit(130)
