from __future__ import annotations

from dataclasses import dataclass
from typing import Literal


IdentityRole = Literal["proposer", "approver"]
ReviewEvent = Literal["COMMENT", "APPROVE"]
MergeMethod = Literal["merge", "squash", "rebase"]
PullRequestState = Literal["open", "closed", "all"]
MergeableVerdict = Literal["mergeable", "conflicted", "unknown"]


@dataclass(frozen=True)
class RepositoryInfo:
    full_name: str
    default_branch: str


@dataclass(frozen=True)
class Branch:
    name: str
    head_sha: str


@dataclass(frozen=True)
class TreeEntry:
    path: str
    content: str
    mode: str = "100644"
    type: str = "blob"


@dataclass(frozen=True)
class CommitBundle:
    tree_sha: str
    message: str
    parent_sha: str
    commit_sha: str


@dataclass(frozen=True)
class PullRequest:
    number: int
    html_url: str
    title: str
    body: str
    head_ref: str
    base_ref: str
    author_login: str
    state: str
    mergeable: bool | None = None

    @property
    def verdict(self) -> MergeableVerdict:
        if self.mergeable is None:
            return "unknown"
        return "mergeable" if self.mergeable else "conflicted"


@dataclass(frozen=True)
class PullRequestFile:
    path: str
    additions: int
    deletions: int
    changes: int


@dataclass(frozen=True)
class Issue:
    number: int
    title: str
    html_url: str
    labels: tuple[str, ...]


@dataclass(frozen=True)
class MergeResult:
    merged: bool
    sha: str | None
    message: str


@dataclass(frozen=True)
class RunReport:
    success: bool
    failed_phase: str | None = None
    error: str | None = None
    remediation: str | None = None
    default_branch: str | None = None
    commit_sha: str | None = None
    pr_number: int | None = None
    pr_url: str | None = None
    pr_reused: bool = False
    reviewed: bool = False
    issue_number: int | None = None
    merge_sha: str | None = None
