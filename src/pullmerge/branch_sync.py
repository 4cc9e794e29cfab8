from __future__ import annotations

import logging

from pullmerge.errors import BranchError
from pullmerge.github_gateway import GitHubGateway, GitHubNotFoundError
from pullmerge.models import Branch
from pullmerge.observability import log_event


LOGGER = logging.getLogger("pullmerge.branch_sync")


class BranchSynchronizer:
    """Keeps the working branch pinned to the default branch head.

    The working branch is a disposable staging branch: when it already exists its
    head is force-reset, discarding any divergent history. All calls use the
    proposer identity.
    """

    def __init__(self, github: GitHubGateway) -> None:
        self._github = github

    def ensure_branch(self, branch_name: str, *, default_branch: str) -> Branch:
        try:
            existing: Branch | None = self._github.get_branch(branch_name)
        except GitHubNotFoundError:
            existing = None
        except Exception as exc:  # noqa: BLE001
            raise BranchError(f"Could not look up branch {branch_name}: {exc}") from exc

        try:
            default_head = self._github.get_branch(default_branch).head_sha
            if existing is None:
                self._github.create_ref(f"refs/heads/{branch_name}", default_head)
            else:
                self._github.update_ref(f"heads/{branch_name}", default_head, force=True)
        except Exception as exc:  # noqa: BLE001
            action = "create" if existing is None else "update"
            raise BranchError(f"Could not {action} branch {branch_name}: {exc}") from exc

        log_event(
            LOGGER,
            "branch_synced",
            branch=branch_name,
            default_branch=default_branch,
            created=existing is None,
            previous_head_sha=existing.head_sha if existing is not None else None,
            head_sha=default_head,
        )
        return Branch(name=branch_name, head_sha=default_head)
