from __future__ import annotations

from datetime import datetime, timezone
import logging

from pullmerge.content import render_pull_request_body, render_pull_request_title
from pullmerge.errors import CreationError, DiscoveryError
from pullmerge.github_gateway import GitHubGateway
from pullmerge.models import PullRequest
from pullmerge.observability import log_event


LOGGER = logging.getLogger("pullmerge.pull_requests")


class PullRequestGateway:
    """Finds the open pull request for the working branch or opens one.

    Creation is not idempotent, so it is never retried; the lookup that runs right
    before it is the only duplicate guard.
    """

    def __init__(self, github: GitHubGateway, *, actor: str, file_path: str) -> None:
        self._github = github
        self._actor = actor
        self._file_path = file_path

    def find_or_create(
        self, branch_name: str, *, default_branch: str
    ) -> tuple[PullRequest, bool]:
        existing = self.find_open(branch_name, default_branch=default_branch)
        if existing is not None:
            log_event(
                LOGGER,
                "pull_request_reused",
                pr_number=existing.number,
                pr_url=existing.html_url,
                branch=branch_name,
            )
            return existing, True
        return self.create(branch_name, default_branch=default_branch), False

    def find_open(self, branch_name: str, *, default_branch: str) -> PullRequest | None:
        try:
            candidates = self._github.list_pull_requests(
                state="open", head=branch_name, base=default_branch
            )
        except Exception as exc:  # noqa: BLE001
            raise DiscoveryError(
                f"Could not list open pull requests for {branch_name}: {exc}"
            ) from exc
        if not candidates:
            return None
        if len(candidates) > 1:
            log_event(
                LOGGER,
                "pull_request_multiple_open",
                level=logging.WARNING,
                branch=branch_name,
                pr_numbers=tuple(sorted(pr.number for pr in candidates)),
            )
        return min(candidates, key=lambda pr: pr.number)

    def create(self, branch_name: str, *, default_branch: str) -> PullRequest:
        now = _utc_now()
        title = render_pull_request_title(
            file_path=self._file_path, branch=branch_name, timestamp=now
        )
        body = render_pull_request_body(
            file_path=self._file_path,
            actor=self._actor,
            branch=branch_name,
            repo_full_name=self._github.full_name,
            timestamp=now,
        )
        try:
            pull_request = self._github.create_pull_request(
                title, branch_name, default_branch, body
            )
        except Exception as exc:  # noqa: BLE001
            raise CreationError(
                f"Could not create pull request from {branch_name} into {default_branch}: {exc}"
            ) from exc
        log_event(
            LOGGER,
            "pull_request_created",
            pr_number=pull_request.number,
            pr_url=pull_request.html_url,
            branch=branch_name,
            base=default_branch,
        )
        return pull_request


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)
