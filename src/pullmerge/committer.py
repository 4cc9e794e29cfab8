from __future__ import annotations

from datetime import datetime, timezone
import logging

from pullmerge.content import render_commit_message, render_generated_section
from pullmerge.errors import CommitError
from pullmerge.github_gateway import GitHubGateway, GitHubNotFoundError
from pullmerge.models import CommitBundle, TreeEntry
from pullmerge.observability import log_event


LOGGER = logging.getLogger("pullmerge.committer")


class ChangeCommitter:
    def __init__(self, github: GitHubGateway, *, actor: str) -> None:
        self._github = github
        self._actor = actor

    def commit_change(
        self,
        branch_name: str,
        *,
        default_branch: str,
        file_path: str = "README.md",
    ) -> CommitBundle:
        # Base content always comes from the default branch so bot edits never stack.
        base_content = self._read_base_content(file_path, default_branch=default_branch)
        new_content = render_generated_section(
            timestamp=_utc_now(),
            actor=self._actor,
            branch=branch_name,
            existing_content=base_content,
        )
        message = render_commit_message(file_path=file_path, actor=self._actor, branch=branch_name)

        try:
            parent_sha = self._github.get_branch(branch_name).head_sha
            base_tree_sha = self._github.get_tree(parent_sha, recursive=True)
            tree_sha = self._github.create_tree(
                base_tree_sha, (TreeEntry(path=file_path, content=new_content),)
            )
            commit_sha = self._github.create_commit(message, tree_sha, (parent_sha,))
            self._github.update_ref(f"heads/{branch_name}", commit_sha, force=True)
        except Exception as exc:  # noqa: BLE001
            raise CommitError(f"Could not commit {file_path} to {branch_name}: {exc}") from exc

        bundle = CommitBundle(
            tree_sha=tree_sha,
            message=message,
            parent_sha=parent_sha,
            commit_sha=commit_sha,
        )
        log_event(
            LOGGER,
            "change_committed",
            branch=branch_name,
            file_path=file_path,
            parent_sha=parent_sha,
            commit_sha=commit_sha,
        )
        return bundle

    def _read_base_content(self, file_path: str, *, default_branch: str) -> str:
        try:
            raw = self._github.get_file_content(file_path, ref=default_branch)
        except GitHubNotFoundError:
            log_event(
                LOGGER,
                "base_content_missing",
                file_path=file_path,
                ref=default_branch,
            )
            return ""
        except Exception as exc:  # noqa: BLE001
            raise CommitError(f"Could not read {file_path} from {default_branch}: {exc}") from exc
        return raw.decode("utf-8", errors="replace")


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)
