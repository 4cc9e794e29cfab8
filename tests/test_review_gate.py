from __future__ import annotations

import random

from hypothesis import given, settings, strategies as st
import pytest

from pullmerge.github_gateway import GitHubApiError
from pullmerge.models import PullRequest, PullRequestFile
from pullmerge.observability import configure_logging
from pullmerge.review_gate import ProbabilityGate, ReviewGate

from tests.fakes import FakeHostingState, fake_gateways


class AlwaysGate(ProbabilityGate):
    def __init__(self, result: bool) -> None:
        super().__init__(100)
        self.result = result
        self.draws = 0

    def draw(self) -> bool:
        self.draws += 1
        return self.result


def _pr(state: FakeHostingState) -> PullRequest:
    return state.add_open_pull_request(7)


def _review_gate(state: FakeHostingState, *, enabled: bool, gate: ProbabilityGate) -> ReviewGate:
    return ReviewGate(
        fake_gateways(state), enabled=enabled, gate=gate, reviewer="forker", approver="upstream"
    )


@pytest.mark.parametrize("percent", [0, -5, 101])
def test_probability_gate_rejects_out_of_range(percent: int) -> None:
    with pytest.raises(ValueError, match="between 1 and 100"):
        ProbabilityGate(percent)


def test_probability_gate_at_100_always_fires() -> None:
    gate = ProbabilityGate(100, rng=random.Random(3))

    assert all(gate.draw() for _ in range(1000))


def test_probability_gate_draws_are_independent_of_previous_results() -> None:
    gate = ProbabilityGate(50, rng=random.Random(11))
    draws = [gate.draw() for _ in range(2000)]

    after_true = [draws[i + 1] for i in range(len(draws) - 1) if draws[i]]
    after_false = [draws[i + 1] for i in range(len(draws) - 1) if not draws[i]]
    assert abs(sum(after_true) / len(after_true) - sum(after_false) / len(after_false)) < 0.08


@settings(max_examples=15, deadline=None)
@given(st.integers(min_value=1, max_value=100), st.integers(min_value=0, max_value=2**32))
def test_probability_gate_frequency_tracks_percent(percent: int, seed: int) -> None:
    gate = ProbabilityGate(percent, rng=random.Random(seed))
    trials = 20000

    hits = sum(gate.draw() for _ in range(trials))

    assert abs(hits / trials - percent / 100) < 0.02


def test_disabled_review_never_draws() -> None:
    state = FakeHostingState()
    gate = AlwaysGate(True)

    assert _review_gate(state, enabled=False, gate=gate).maybe_review(_pr(state)) is False
    assert gate.draws == 0
    assert state.calls == []


def test_failed_draw_skips_review(capsys: pytest.CaptureFixture[str]) -> None:
    configure_logging(verbose=True)
    state = FakeHostingState()

    reviewed = _review_gate(state, enabled=True, gate=AlwaysGate(False)).maybe_review(_pr(state))

    assert reviewed is False
    assert state.reviews == []
    assert "event=review_skipped" in capsys.readouterr().err


def test_review_posts_comment_as_proposer_then_approval_as_approver() -> None:
    state = FakeHostingState(
        pr_files=(
            PullRequestFile(path="README.md", additions=12, deletions=0, changes=12),
            PullRequestFile(path="src/app.py", additions=80, deletions=3, changes=83),
            PullRequestFile(path="logo.png", additions=0, deletions=0, changes=1),
        )
    )

    reviewed = _review_gate(state, enabled=True, gate=AlwaysGate(True)).maybe_review(_pr(state))

    assert reviewed is True
    assert [(role, event) for role, _, _, event in state.reviews] == [
        ("proposer", "COMMENT"),
        ("approver", "APPROVE"),
    ]
    overview = state.reviews[0][2]
    assert "## Automated Code Review by forker" in overview
    assert "**File Review: README.md**" in overview
    assert "**File Review: src/app.py**" in overview
    assert "**Large Change**" in overview
    assert "logo.png" not in overview
    assert state.reviews[1][2].startswith("**Approved by upstream**")
    assert state.methods_for("proposer") == ["list_pull_request_files", "create_review"]
    assert state.methods_for("approver") == ["create_review"]


def test_review_failure_is_not_fatal(capsys: pytest.CaptureFixture[str]) -> None:
    configure_logging(verbose=True)
    state = FakeHostingState()
    state.failures[("approver", "create_review")] = GitHubApiError(
        "Can not approve your own pull request", status_code=422
    )

    reviewed = _review_gate(state, enabled=True, gate=AlwaysGate(True)).maybe_review(_pr(state))

    assert reviewed is False
    assert "event=review_failed" in capsys.readouterr().err
