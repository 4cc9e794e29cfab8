from __future__ import annotations

import logging
import time

from pullmerge.errors import (
    MergeabilityCheckError,
    MergeabilityExhaustedError,
    MergeConflictError,
)
from pullmerge.github_gateway import GitHubGateway
from pullmerge.models import PullRequest
from pullmerge.observability import log_event


LOGGER = logging.getLogger("pullmerge.mergeability")


class MergeabilityPoller:
    """Waits for GitHub to decide whether a pull request can merge cleanly.

    GitHub computes `mergeable` asynchronously and reports null until it is done.
    The poller waits `initial_delay_seconds`, then fetches up to `max_attempts`
    times, sleeping `retry_interval_seconds` between fetches while the verdict is
    unknown. A conflicted verdict fails at once; running out of attempts fails the
    same way a conflict does.
    """

    def __init__(
        self,
        github: GitHubGateway,
        *,
        initial_delay_seconds: float,
        retry_interval_seconds: float,
        max_attempts: int,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self._github = github
        self._initial_delay_seconds = initial_delay_seconds
        self._retry_interval_seconds = retry_interval_seconds
        self._max_attempts = max_attempts

    def wait_until_mergeable(self, pr_number: int) -> PullRequest:
        time.sleep(self._initial_delay_seconds)
        for attempt in range(1, self._max_attempts + 1):
            try:
                pull_request = self._github.get_pull_request(pr_number)
            except Exception as exc:  # noqa: BLE001
                raise MergeabilityCheckError(
                    f"Could not check mergeability of pull request #{pr_number}: {exc}"
                ) from exc

            verdict = pull_request.verdict
            if verdict == "mergeable":
                log_event(
                    LOGGER,
                    "mergeability_decided",
                    pr_number=pr_number,
                    verdict=verdict,
                    attempts=attempt,
                )
                return pull_request
            if verdict == "conflicted":
                log_event(
                    LOGGER,
                    "mergeability_decided",
                    level=logging.WARNING,
                    pr_number=pr_number,
                    verdict=verdict,
                    attempts=attempt,
                )
                raise MergeConflictError(f"Pull request #{pr_number} has merge conflicts")

            log_event(
                LOGGER,
                "mergeability_pending",
                pr_number=pr_number,
                attempt=attempt,
                max_attempts=self._max_attempts,
            )
            if attempt < self._max_attempts:
                time.sleep(self._retry_interval_seconds)

        log_event(
            LOGGER,
            "mergeability_exhausted",
            level=logging.WARNING,
            pr_number=pr_number,
            attempts=self._max_attempts,
        )
        raise MergeabilityExhaustedError(
            f"Mergeability of pull request #{pr_number} still unknown after "
            f"{self._max_attempts} checks"
        )
