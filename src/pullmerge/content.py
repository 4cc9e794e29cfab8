from __future__ import annotations

from datetime import datetime

from pullmerge import __version__
from pullmerge.models import PullRequest, PullRequestFile


BOT_NAME = "Pull-Merge Bot"
MERGE_COMMIT_TITLE = "Auto-merged by bot with code review"
LARGE_CHANGE_ADDITIONS = 50
SOURCE_SUFFIXES = (".py", ".js", ".ts")
DOCUMENTATION_SUFFIXES = (".md", ".rst")


def format_timestamp(moment: datetime) -> str:
    return moment.isoformat(timespec="microseconds")


def render_generated_section(
    *, timestamp: datetime, actor: str, branch: str, existing_content: str
) -> str:
    stamp = format_timestamp(timestamp)
    section = f"""## Last Updated by Bot

This section was automatically updated by the pull-merge bot on {stamp}.

### Changes Made:
- Automated README update
- Timestamp: {stamp}
- Updated by: {actor}
- Branch: {branch}
"""
    return f"{section}\n{existing_content}"


def render_commit_message(*, file_path: str, actor: str, branch: str) -> str:
    return f"Update {file_path} - Automated edit by {actor} on {branch}"


def render_pull_request_title(*, file_path: str, branch: str, timestamp: datetime) -> str:
    return f"Automated PR: Update {file_path} from {branch} - {timestamp.date().isoformat()}"


def render_pull_request_body(
    *, file_path: str, actor: str, branch: str, repo_full_name: str, timestamp: datetime
) -> str:
    return f"""## Automated Pull Request

This PR was created automatically by the pull-merge bot.

### Changes Summary
- **Updated {file_path}** with timestamp and bot information
- **Automated commit** by {actor}
- **Branch:** {branch}
- **Created:** {format_timestamp(timestamp)}

### Bot Information
- **Bot Version:** {__version__}
- **Created by:** {actor}
- **Repository:** {repo_full_name}
- **Branch:** {branch}

---
*This PR will be automatically reviewed and merged by the bot.*"""


def is_reviewable_path(path: str) -> bool:
    return path.endswith(SOURCE_SUFFIXES) or path.endswith(DOCUMENTATION_SUFFIXES)


def render_file_review_note(changed_file: PullRequestFile) -> str | None:
    """Per-file review note, or None when the file is not worth a note."""

    if changed_file.changes <= 0 or not is_reviewable_path(changed_file.path):
        return None
    lines = [
        f"**File Review: {changed_file.path}**",
        "",
        f"- **Changes:** {changed_file.changes} lines",
        f"- **Additions:** {changed_file.additions} lines",
        f"- **Deletions:** {changed_file.deletions} lines",
        "",
    ]
    if changed_file.path.endswith(DOCUMENTATION_SUFFIXES):
        lines.append("**Documentation Update** - Good to see documentation being maintained!")
        lines.append(
            "**Suggestion:** Consider adding more context if this is a significant change."
        )
    else:
        lines.append("**Code Changes** - Code modifications detected.")
        if changed_file.additions > LARGE_CHANGE_ADDITIONS:
            lines.append(
                "**Large Change** - This is a substantial modification. "
                "Please ensure thorough testing."
            )
        lines.append("**Suggestion:** Consider adding unit tests for new functionality.")
    return "\n".join(lines)


def render_review_overview(
    *,
    pull_request: PullRequest,
    files: tuple[PullRequestFile, ...],
    notes: tuple[str, ...],
    reviewer: str,
) -> str:
    total_changes = sum(changed_file.changes for changed_file in files)
    review_notes = "\n\n".join(notes) if notes else "- No significant code changes detected"
    return f"""## Automated Code Review by {reviewer}

**PR Summary:**
- **Title:** {pull_request.title}
- **Author:** {pull_request.author_login or reviewer}
- **Files Changed:** {len(files)}
- **Total Changes:** {total_changes} lines

**Review Notes:**
{review_notes}

**Review Status:** Ready for Approval

---
*This review was performed automatically by the {BOT_NAME} for {reviewer}*"""


def render_approval_body(*, approver: str) -> str:
    return f"**Approved by {approver}** - Code review completed successfully."


def render_merge_comment(*, merged_at: datetime, merge_sha: str | None) -> str:
    return f"""## PR Successfully Merged!

**Merge Details:**
- **Status:** Merged successfully
- **Merged at:** {format_timestamp(merged_at)}
- **Merge method:** Squash merge
- **Merge commit:** {merge_sha or "<unknown>"}
- **Merged by:** {BOT_NAME}

---
*This PR was automatically created, reviewed, and merged by the {BOT_NAME} v{__version__}*"""


def render_issue_title(*, title: str, timestamp: datetime) -> str:
    return f"{title} - {timestamp.date().isoformat()}"


def render_issue_body(
    *,
    body: str,
    actor: str,
    issue_type: str,
    repo_full_name: str,
    branch: str,
    timestamp: datetime,
) -> str:
    return f"""{body}

---
**Issue Details:**
- Created by: {actor}
- Created on: {format_timestamp(timestamp)}
- Issue type: {issue_type}
- Automated by: {BOT_NAME}

**Additional Information:**
- Repository: {repo_full_name}
- Branch: {branch}
- Bot version: {__version__}"""


def issue_labels(issue_type: str) -> tuple[str, ...]:
    return (issue_type, "automated", "bot-created")
