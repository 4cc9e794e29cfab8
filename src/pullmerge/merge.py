from __future__ import annotations

from datetime import datetime, timezone
import logging

from pullmerge.content import MERGE_COMMIT_TITLE, render_merge_comment
from pullmerge.errors import MergeError
from pullmerge.github_gateway import IdentityGateways
from pullmerge.models import MergeResult, PullRequest
from pullmerge.observability import log_event


LOGGER = logging.getLogger("pullmerge.merge")


class MergeExecutor:
    def __init__(self, gateways: IdentityGateways) -> None:
        self._gateways = gateways

    def merge(self, pull_request: PullRequest) -> MergeResult:
        try:
            result = self._gateways.approver.merge_pull_request(
                pull_request.number,
                commit_title=MERGE_COMMIT_TITLE,
                merge_method="squash",
            )
        except Exception as exc:  # noqa: BLE001
            raise MergeError(f"Could not merge pull request #{pull_request.number}: {exc}") from exc
        if not result.merged:
            raise MergeError(
                f"GitHub did not merge pull request #{pull_request.number}: "
                f"{result.message or '<no message>'}"
            )
        log_event(
            LOGGER,
            "pull_request_merged",
            pr_number=pull_request.number,
            merge_sha=result.sha,
            merge_method="squash",
        )

        # Notification failures never change the merge result.
        try:
            self._gateways.proposer.post_issue_comment(
                pull_request.number,
                render_merge_comment(merged_at=datetime.now(timezone.utc), merge_sha=result.sha),
            )
        except Exception as exc:  # noqa: BLE001
            log_event(
                LOGGER,
                "merge_comment_failed",
                level=logging.WARNING,
                pr_number=pull_request.number,
                error_type=type(exc).__name__,
                error=str(exc),
            )
        return result
