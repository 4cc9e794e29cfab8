from __future__ import annotations

import base64
import binascii
from dataclasses import dataclass, field
import json
import logging
from typing import cast
from urllib.parse import quote, urlencode

from pullmerge.models import (
    Branch,
    IdentityRole,
    Issue,
    MergeMethod,
    MergeResult,
    PullRequest,
    PullRequestFile,
    PullRequestState,
    RepositoryInfo,
    ReviewEvent,
    TreeEntry,
)
from pullmerge.observability import log_event
from pullmerge.shell import run


LOGGER = logging.getLogger("pullmerge.github_gateway")
_PAGE_SIZE = 100


class GitHubApiError(RuntimeError):
    """A GitHub API call returned a non-success status or an unreadable response."""

    def __init__(self, message: str, *, status_code: int | None = None, path: str = "") -> None:
        super().__init__(message)
        self.status_code = status_code
        self.path = path


class GitHubNotFoundError(GitHubApiError):
    """The requested GitHub resource does not exist (HTTP 404)."""


@dataclass(frozen=True)
class GitHubGateway:
    owner: str
    name: str
    token: str = field(repr=False, compare=False)
    role: IdentityRole = "proposer"
    _etags_by_path: dict[str, str] = field(
        default_factory=dict,
        init=False,
        repr=False,
        compare=False,
    )
    _cached_get_payload_by_path: dict[str, object] = field(
        default_factory=dict,
        init=False,
        repr=False,
        compare=False,
    )

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.name}"

    @property
    def _repo_path(self) -> str:
        return f"/repos/{self.owner}/{self.name}"

    def get_repository(self) -> RepositoryInfo:
        payload_obj = _require_object(self._api_json("GET", self._repo_path), what="repository")
        info = RepositoryInfo(
            full_name=_as_string(payload_obj.get("full_name")) or self.full_name,
            default_branch=_as_string(payload_obj.get("default_branch")) or "main",
        )
        log_event(
            LOGGER,
            "github_read",
            endpoint="repository",
            role=self.role,
            default_branch=info.default_branch,
        )
        return info

    def get_branch(self, branch: str) -> Branch:
        path = f"{self._repo_path}/branches/{quote(branch, safe='/')}"
        payload_obj = _require_object(self._api_json("GET", path), what="branch")
        commit_obj = _as_object_dict(payload_obj.get("commit"))
        if commit_obj is None:
            raise GitHubApiError("Unexpected GitHub response: branch is missing commit", path=path)
        result = Branch(
            name=_as_string(payload_obj.get("name")) or branch,
            head_sha=_as_string(commit_obj.get("sha")),
        )
        log_event(
            LOGGER,
            "github_read",
            endpoint="branch",
            role=self.role,
            branch=branch,
            head_sha=result.head_sha,
        )
        return result

    def create_ref(self, ref: str, sha: str) -> None:
        self._api_write(
            "ref_create",
            "POST",
            f"{self._repo_path}/git/refs",
            payload={"ref": ref, "sha": sha},
            ref=ref,
            sha=sha,
        )

    def update_ref(self, ref: str, sha: str, *, force: bool) -> None:
        self._api_write(
            "ref_update",
            "PATCH",
            f"{self._repo_path}/git/refs/{quote(ref, safe='/')}",
            payload={"sha": sha, "force": force},
            ref=ref,
            sha=sha,
            force=force,
        )

    def get_file_content(self, path: str, *, ref: str) -> bytes:
        api_path = (
            f"{self._repo_path}/contents/{quote(path, safe='/')}?{urlencode({'ref': ref})}"
        )
        payload_obj = _require_object(self._api_json("GET", api_path), what="file content")
        encoding = _as_string(payload_obj.get("encoding")).strip().lower()
        raw_content = _as_string(payload_obj.get("content"))
        if encoding != "base64":
            raise GitHubApiError(
                f"Unexpected GitHub content encoding for {path}: {encoding or '<empty>'}",
                path=api_path,
            )
        try:
            content = base64.b64decode(raw_content, validate=False)
        except (binascii.Error, ValueError) as exc:
            raise GitHubApiError(f"Undecodable GitHub content for {path}", path=api_path) from exc
        log_event(
            LOGGER,
            "github_read",
            endpoint="file_content",
            role=self.role,
            file_path=path,
            ref=ref,
            size=len(content),
        )
        return content

    def get_tree(self, sha: str, *, recursive: bool) -> str:
        path = f"{self._repo_path}/git/trees/{sha}"
        if recursive:
            path = f"{path}?recursive=1"
        payload_obj = _require_object(self._api_json("GET", path), what="tree")
        tree_sha = _as_string(payload_obj.get("sha"))
        log_event(LOGGER, "github_read", endpoint="tree", role=self.role, tree_sha=tree_sha)
        return tree_sha

    def create_tree(self, base_tree_sha: str, entries: tuple[TreeEntry, ...]) -> str:
        payload_obj = _require_object(
            self._api_write(
                "tree_create",
                "POST",
                f"{self._repo_path}/git/trees",
                payload={
                    "base_tree": base_tree_sha,
                    "tree": [
                        {
                            "path": entry.path,
                            "mode": entry.mode,
                            "type": entry.type,
                            "content": entry.content,
                        }
                        for entry in entries
                    ],
                },
                base_tree_sha=base_tree_sha,
                entry_count=len(entries),
            ),
            what="tree",
        )
        return _as_string(payload_obj.get("sha"))

    def create_commit(self, message: str, tree_sha: str, parents: tuple[str, ...]) -> str:
        payload_obj = _require_object(
            self._api_write(
                "commit_create",
                "POST",
                f"{self._repo_path}/git/commits",
                payload={"message": message, "tree": tree_sha, "parents": list(parents)},
                tree_sha=tree_sha,
                parents=parents,
            ),
            what="commit",
        )
        return _as_string(payload_obj.get("sha"))

    def list_pull_requests(
        self,
        *,
        state: PullRequestState = "open",
        head: str,
        base: str | None = None,
    ) -> list[PullRequest]:
        if state not in {"open", "closed", "all"}:
            raise ValueError("state must be 'open', 'closed' or 'all'")
        qualified_head = head if ":" in head else f"{self.owner}:{head}"
        query_items: dict[str, str] = {
            "state": state,
            "head": qualified_head,
            "per_page": str(_PAGE_SIZE),
        }
        if base is not None:
            query_items["base"] = base
        path = f"{self._repo_path}/pulls?{urlencode(query_items)}"
        payload = self._api_json("GET", path)
        if not isinstance(payload, list):
            raise GitHubApiError(
                "Unexpected GitHub response: expected list for pull request lookup", path=path
            )

        pull_requests: list[PullRequest] = []
        for item in payload:
            item_obj = _as_object_dict(item)
            if item_obj is None:
                continue
            pull_requests.append(_parse_pull_request(item_obj))
        log_event(
            LOGGER,
            "github_read",
            endpoint="pull_request_lookup_by_head",
            role=self.role,
            head=qualified_head,
            base=base,
            state=state,
            count=len(pull_requests),
        )
        return pull_requests

    def get_pull_request(self, pr_number: int) -> PullRequest:
        path = f"{self._repo_path}/pulls/{pr_number}"
        payload_obj = _require_object(self._api_json("GET", path), what="pull request")
        pull_request = _parse_pull_request(payload_obj)
        log_event(
            LOGGER,
            "github_read",
            endpoint="pull_request",
            role=self.role,
            pr_number=pull_request.number,
            mergeable=pull_request.mergeable,
        )
        return pull_request

    def create_pull_request(self, title: str, head: str, base: str, body: str) -> PullRequest:
        payload_obj = _require_object(
            self._api_write(
                "pr_create",
                "POST",
                f"{self._repo_path}/pulls",
                payload={"title": title, "head": head, "base": base, "body": body},
                base=base,
                head=head,
            ),
            what="pull request",
        )
        pull_request = _parse_pull_request(payload_obj)
        log_event(
            LOGGER,
            "github_pr_created",
            repo_full_name=self.full_name,
            pr_number=pull_request.number,
            pr_url=pull_request.html_url,
        )
        return pull_request

    def merge_pull_request(
        self,
        pr_number: int,
        *,
        commit_title: str,
        merge_method: MergeMethod,
    ) -> MergeResult:
        payload_obj = _require_object(
            self._api_write(
                "pr_merge",
                "PUT",
                f"{self._repo_path}/pulls/{pr_number}/merge",
                payload={"commit_title": commit_title, "merge_method": merge_method},
                pr_number=pr_number,
                merge_method=merge_method,
            ),
            what="merge",
        )
        merged = payload_obj.get("merged")
        return MergeResult(
            merged=merged is True,
            sha=_as_optional_str(payload_obj.get("sha")),
            message=_as_string(payload_obj.get("message")),
        )

    def list_pull_request_files(self, pr_number: int) -> tuple[PullRequestFile, ...]:
        files: list[PullRequestFile] = []
        page = 1
        while True:
            query = urlencode({"per_page": _PAGE_SIZE, "page": page})
            path = f"{self._repo_path}/pulls/{pr_number}/files?{query}"
            payload = self._api_json("GET", path)
            if not isinstance(payload, list):
                raise GitHubApiError(
                    "Unexpected GitHub response: expected list of pull request files", path=path
                )
            for item in payload:
                item_obj = _as_object_dict(item)
                if item_obj is None:
                    continue
                filename = item_obj.get("filename")
                if not isinstance(filename, str) or not filename:
                    continue
                files.append(
                    PullRequestFile(
                        path=filename,
                        additions=_as_int(item_obj.get("additions", 0), field="additions"),
                        deletions=_as_int(item_obj.get("deletions", 0), field="deletions"),
                        changes=_as_int(item_obj.get("changes", 0), field="changes"),
                    )
                )
            if len(payload) < _PAGE_SIZE:
                break
            page += 1
        log_event(
            LOGGER,
            "github_read",
            endpoint="pull_request_files",
            role=self.role,
            pr_number=pr_number,
            count=len(files),
        )
        return tuple(files)

    def create_review(self, pr_number: int, body: str, event: ReviewEvent) -> int | None:
        if event not in {"COMMENT", "APPROVE"}:
            raise ValueError("event must be 'COMMENT' or 'APPROVE'")
        payload_obj = _as_object_dict(
            self._api_write(
                "review_create",
                "POST",
                f"{self._repo_path}/pulls/{pr_number}/reviews",
                payload={"body": body, "event": event},
                pr_number=pr_number,
                review_event=event,
            )
        )
        if payload_obj is None:
            return None
        return _as_optional_int(payload_obj.get("id"))

    def create_issue(self, title: str, body: str, labels: tuple[str, ...]) -> Issue:
        payload_obj = _require_object(
            self._api_write(
                "issue_create",
                "POST",
                f"{self._repo_path}/issues",
                payload={"title": title, "body": body, "labels": list(labels)},
                labels=labels,
            ),
            what="issue",
        )
        label_names: list[str] = []
        labels_obj = payload_obj.get("labels")
        if isinstance(labels_obj, list):
            for entry in labels_obj:
                entry_obj = _as_object_dict(entry)
                if entry_obj is None:
                    continue
                label = entry_obj.get("name")
                if isinstance(label, str):
                    label_names.append(label)
        return Issue(
            number=_as_int(payload_obj.get("number"), field="number"),
            title=_as_string(payload_obj.get("title")),
            html_url=_as_string(payload_obj.get("html_url")),
            labels=tuple(label_names),
        )

    def post_issue_comment(self, issue_number: int, body: str) -> None:
        self._api_write(
            "issue_comment",
            "POST",
            f"{self._repo_path}/issues/{issue_number}/comments",
            payload={"body": body},
            issue_number=issue_number,
        )

    def _api_write(
        self,
        operation: str,
        method: str,
        path: str,
        *,
        payload: dict[str, object],
        **fields: object,
    ) -> object:
        try:
            result = self._api_json(method, path, payload=payload)
        except Exception as exc:  # noqa: BLE001
            log_event(
                LOGGER,
                f"github_{operation}_failed",
                level=logging.WARNING,
                repo_full_name=self.full_name,
                role=self.role,
                error_type=type(exc).__name__,
                status_code=getattr(exc, "status_code", None),
                **fields,
            )
            raise
        log_event(
            LOGGER,
            "github_write",
            operation=operation,
            repo_full_name=self.full_name,
            role=self.role,
            **fields,
        )
        return result

    def _api_json(self, method: str, path: str, payload: dict[str, object] | None = None) -> object:
        method_upper = method.upper()
        is_get = method_upper == "GET"
        cmd = ["gh", "api", "--method", method_upper]
        if is_get:
            etag = self._etags_by_path.get(path)
            if etag:
                cmd.extend(["--header", f"If-None-Match: {etag}"])
        cmd.extend(["--include", path])
        stdin_payload: str | None = None
        if payload is not None:
            cmd.extend(["--input", "-"])
            stdin_payload = json.dumps(payload)

        raw = run(
            cmd,
            input_text=stdin_payload,
            env_overrides={"GH_TOKEN": self.token} if self.token else None,
            check=False,
        )
        try:
            status_code, headers, body = _parse_http_response(raw)
        except RuntimeError as exc:
            log_event(
                LOGGER,
                "github_request_failed",
                level=logging.WARNING,
                method=method_upper,
                path=path,
                role=self.role,
                error=str(exc),
                raw_preview=_preview_for_log(raw),
            )
            raise GitHubApiError(
                f"GitHub {method_upper} failed for path {path}: {exc}", path=path
            ) from exc

        if status_code == 304 and is_get:
            cached_payload = self._cached_get_payload_by_path.get(path)
            if cached_payload is None:
                raise GitHubApiError(
                    f"GitHub returned 304 for uncached path: {path}", status_code=304, path=path
                )
            return cached_payload

        if status_code < 200 or status_code >= 300:
            message = _error_message(body)
            error_cls = GitHubNotFoundError if status_code == 404 else GitHubApiError
            raise error_cls(
                f"GitHub API request failed with status {status_code}: {message}",
                status_code=status_code,
                path=path,
            )

        if not body.strip():
            return None
        try:
            payload_obj = json.loads(body)
        except json.JSONDecodeError as exc:
            raise GitHubApiError(
                f"GitHub returned malformed JSON for path {path}",
                status_code=status_code,
                path=path,
            ) from exc
        if is_get:
            etag = headers.get("etag")
            if etag:
                self._etags_by_path[path] = etag
                self._cached_get_payload_by_path[path] = payload_obj
        return payload_obj


@dataclass(frozen=True)
class IdentityGateways:
    """One gateway per credentialed identity.

    The proposer authors branches, commits, pull requests, comment reviews and
    post-merge comments. The approver approves and merges.
    """

    proposer: GitHubGateway
    approver: GitHubGateway

    def for_role(self, role: IdentityRole) -> GitHubGateway:
        if role == "proposer":
            return self.proposer
        if role == "approver":
            return self.approver
        raise ValueError(f"Unknown identity role: {role!r}")


def _parse_pull_request(payload_obj: dict[str, object]) -> PullRequest:
    head = _as_object_dict(payload_obj.get("head")) or {}
    base = _as_object_dict(payload_obj.get("base")) or {}
    user = _as_object_dict(payload_obj.get("user")) or {}
    return PullRequest(
        number=_as_int(payload_obj.get("number"), field="number"),
        html_url=_as_string(payload_obj.get("html_url")),
        title=_as_string(payload_obj.get("title")),
        body=_as_string(payload_obj.get("body")),
        head_ref=_as_string(head.get("ref")),
        base_ref=_as_string(base.get("ref")),
        author_login=_as_login(user.get("login")),
        state=_as_string(payload_obj.get("state")),
        mergeable=_as_optional_bool(payload_obj.get("mergeable")),
    )


def _parse_http_response(raw: str) -> tuple[int, dict[str, str], str]:
    normalized = raw.replace("\r\n", "\n")
    lines = normalized.split("\n")

    status_line_index = -1
    for index, line in enumerate(lines):
        if line.startswith("HTTP/"):
            status_line_index = index
            # "100 Continue" precedes the final status line on uploads.
            if line.split(" ", 2)[1:2] != ["100"]:
                break

    if status_line_index < 0:
        raise RuntimeError("Unexpected GitHub response: missing HTTP status line")

    status_line = lines[status_line_index]
    status_parts = status_line.split(" ", 2)
    if len(status_parts) < 2:
        raise RuntimeError(f"Unexpected GitHub response status line: {status_line!r}")

    try:
        status_code = int(status_parts[1])
    except ValueError as exc:
        raise RuntimeError(f"Unexpected GitHub response status line: {status_line!r}") from exc

    headers: dict[str, str] = {}
    body_start = len(lines)
    for index in range(status_line_index + 1, len(lines)):
        line = lines[index]
        if line == "":
            body_start = index + 1
            break
        if ":" not in line:
            continue
        key, value = line.split(":", 1)
        headers[key.strip().lower()] = value.strip()

    body = "\n".join(lines[body_start:])
    return status_code, headers, body


def _error_message(body: str) -> str:
    stripped = body.strip()
    if not stripped:
        return "<empty>"
    try:
        decoded = json.loads(stripped)
    except json.JSONDecodeError:
        return _preview_for_log(stripped)
    decoded_obj = _as_object_dict(decoded)
    if decoded_obj is not None and isinstance(decoded_obj.get("message"), str):
        return cast(str, decoded_obj["message"])
    return _preview_for_log(stripped)


def _preview_for_log(text: str, *, limit: int = 240) -> str:
    compact = text.replace("\n", "\\n").strip()
    if not compact:
        return "<empty>"
    if len(compact) <= limit:
        return compact
    return f"{compact[:limit]}..."


def _require_object(value: object, *, what: str) -> dict[str, object]:
    payload_obj = _as_object_dict(value)
    if payload_obj is None:
        raise GitHubApiError(f"Unexpected GitHub response: expected object for {what}")
    return payload_obj


def _as_object_dict(value: object) -> dict[str, object] | None:
    if not isinstance(value, dict):
        return None
    if not all(isinstance(key, str) for key in value.keys()):
        return None
    return cast(dict[str, object], value)


def _as_string(value: object) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    return str(value)


def _as_optional_str(value: object) -> str | None:
    if value is None:
        return None
    if isinstance(value, str):
        return value
    return str(value)


def _as_login(value: object) -> str:
    if not isinstance(value, str):
        return ""
    return value.strip().lower()


def _as_int(value: object, *, field: str) -> int:
    if isinstance(value, bool):
        raise GitHubApiError(f"Unexpected GitHub response type for {field}")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value)
        except ValueError as exc:
            raise GitHubApiError(f"Unexpected GitHub response value for {field}: {value}") from exc
    raise GitHubApiError(f"Unexpected GitHub response type for {field}")


def _as_optional_int(value: object) -> int | None:
    if value is None:
        return None
    return _as_int(value, field="optional int field")


def _as_optional_bool(value: object) -> bool | None:
    if value is None:
        return None
    if isinstance(value, bool):
        return value
    raise GitHubApiError("Unexpected GitHub response type for bool field")
