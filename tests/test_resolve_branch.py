import cancel_branch_runs as cbr

PR_EVENT = {"pull_request": {"number": 9, "head": {"ref": "from-event"}}}


def test_explicit_branch_wins(github):
    github.pulls[12] = "from-pr"
    branch = cbr.resolve_branch("o", "r", "feat-x", "12", PR_EVENT, "t")
    assert branch == "feat-x"
    assert github.calls == []


def test_pr_number_lookup(github):
    github.pulls[12] = "from-pr"
    assert cbr.resolve_branch("o", "r", "", "12", PR_EVENT, "t") == "from-pr"
    assert github.calls == [("GET", "repos/o/r/pulls/12", "t")]


def test_pr_number_with_hash(github):
    github.pulls[12] = "from-pr"
    assert cbr.resolve_branch("o", "r", None, "#12", {}, "t") == "from-pr"


def test_failed_pr_lookup_is_soft_and_skips_event(github, capsys):
    branch = cbr.resolve_branch("o", "r", "", "404", PR_EVENT, "t")

    assert branch is None
    err = capsys.readouterr().err
    assert "Failed to fetch PR #404" in err
    assert "Not Found" in err


def test_invalid_pr_number_is_soft(github, capsys):
    assert cbr.resolve_branch("o", "r", "", "abc", PR_EVENT, "t") is None
    assert "Failed to fetch PR #abc" in capsys.readouterr().err
    assert github.calls == []


def test_event_payload_fallback(github):
    assert cbr.resolve_branch("o", "r", "", "", PR_EVENT, "t") == "from-event"
    assert github.calls == []


def test_nothing_resolvable(github):
    assert cbr.resolve_branch("o", "r", "", "", {}, "t") is None
    assert cbr.resolve_branch("o", "r", "", "", {"pull_request": None}, "t") is None
    assert cbr.resolve_branch("o", "r", "", "", {"pull_request": {"head": {}}}, "t") is None
