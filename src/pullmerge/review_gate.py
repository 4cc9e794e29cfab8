from __future__ import annotations

import logging
import random

from pullmerge.content import (
    render_approval_body,
    render_file_review_note,
    render_review_overview,
)
from pullmerge.github_gateway import IdentityGateways
from pullmerge.models import PullRequest
from pullmerge.observability import log_event


LOGGER = logging.getLogger("pullmerge.review_gate")


class ProbabilityGate:
    """Independent Bernoulli trial: each draw fires with probability percent/100."""

    def __init__(self, percent: int, *, rng: random.Random | None = None) -> None:
        if percent < 1 or percent > 100:
            raise ValueError("percent must be between 1 and 100")
        self.percent = percent
        self._rng = rng if rng is not None else random.Random()

    def draw(self) -> bool:
        return self._rng.random() < self.percent / 100


class ReviewGate:
    def __init__(
        self,
        gateways: IdentityGateways,
        *,
        enabled: bool,
        gate: ProbabilityGate,
        reviewer: str,
        approver: str,
    ) -> None:
        self._gateways = gateways
        self._enabled = enabled
        self._gate = gate
        self._reviewer = reviewer
        self._approver = approver

    def maybe_review(self, pull_request: PullRequest) -> bool:
        if not self._enabled:
            return False
        if not self._gate.draw():
            log_event(
                LOGGER,
                "review_skipped",
                pr_number=pull_request.number,
                reason="probability_gate",
                probability_percent=self._gate.percent,
            )
            return False
        try:
            self._review(pull_request)
        except Exception as exc:  # noqa: BLE001
            log_event(
                LOGGER,
                "review_failed",
                level=logging.WARNING,
                pr_number=pull_request.number,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            return False
        log_event(
            LOGGER,
            "review_completed",
            pr_number=pull_request.number,
            reviewer=self._reviewer,
            approver=self._approver,
        )
        return True

    def _review(self, pull_request: PullRequest) -> None:
        proposer = self._gateways.proposer
        files = proposer.list_pull_request_files(pull_request.number)
        notes = tuple(
            note for note in (render_file_review_note(changed) for changed in files) if note
        )
        overview = render_review_overview(
            pull_request=pull_request,
            files=files,
            notes=notes,
            reviewer=self._reviewer,
        )
        proposer.create_review(pull_request.number, overview, "COMMENT")
        log_event(
            LOGGER,
            "review_comment_posted",
            pr_number=pull_request.number,
            file_count=len(files),
            note_count=len(notes),
        )
        self._gateways.approver.create_review(
            pull_request.number,
            render_approval_body(approver=self._approver),
            "APPROVE",
        )
        log_event(LOGGER, "review_approved", pr_number=pull_request.number)
