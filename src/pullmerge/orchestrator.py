from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
import logging
import random

from pullmerge.branch_sync import BranchSynchronizer
from pullmerge.committer import ChangeCommitter
from pullmerge.config import RunConfig
from pullmerge.content import issue_labels, render_issue_body, render_issue_title
from pullmerge.errors import AccessError, LifecycleError
from pullmerge.github_gateway import GitHubNotFoundError, IdentityGateways
from pullmerge.merge import MergeExecutor
from pullmerge.mergeability import MergeabilityPoller
from pullmerge.models import Issue, RunReport
from pullmerge.observability import log_event
from pullmerge.pull_requests import PullRequestGateway
from pullmerge.review_gate import ProbabilityGate, ReviewGate


LOGGER = logging.getLogger("pullmerge.orchestrator")


@dataclass
class _RunProgress:
    default_branch: str | None = None
    commit_sha: str | None = None
    pr_number: int | None = None
    pr_url: str | None = None
    pr_reused: bool = False
    reviewed: bool = False
    issue_number: int | None = None
    merge_sha: str | None = None

    def report(
        self,
        *,
        success: bool,
        failed_phase: str | None = None,
        error: str | None = None,
        remediation: str | None = None,
    ) -> RunReport:
        return RunReport(
            success=success,
            failed_phase=failed_phase,
            error=error,
            remediation=remediation,
            default_branch=self.default_branch,
            commit_sha=self.commit_sha,
            pr_number=self.pr_number,
            pr_url=self.pr_url,
            pr_reused=self.pr_reused,
            reviewed=self.reviewed,
            issue_number=self.issue_number,
            merge_sha=self.merge_sha,
        )


class LifecycleOrchestrator:
    """Runs one forward-only pass of the branch, commit, review and merge lifecycle.

    Phases run strictly in order. A `LifecycleError` from any phase stops the run
    and nothing already done is rolled back; re-running is safe because every
    phase re-derives its state from the hosting service.
    """

    def __init__(
        self,
        config: RunConfig,
        *,
        gateways: IdentityGateways,
        rng: random.Random | None = None,
    ) -> None:
        self._config = config
        self._gateways = gateways
        self._gate = ProbabilityGate(config.features.probability_percent, rng=rng)
        self._branches = BranchSynchronizer(gateways.proposer)
        self._committer = ChangeCommitter(gateways.proposer, actor=config.proposer_login)
        self._pull_requests = PullRequestGateway(
            gateways.proposer,
            actor=config.proposer_login,
            file_path=config.repo.file_path,
        )
        self._review_gate = ReviewGate(
            gateways,
            enabled=config.features.enable_review,
            gate=self._gate,
            reviewer=config.proposer_login,
            approver=config.approver_login,
        )
        self._poller = MergeabilityPoller(
            gateways.proposer,
            initial_delay_seconds=config.runtime.mergeability_initial_delay_seconds,
            retry_interval_seconds=config.runtime.mergeability_retry_seconds,
            max_attempts=config.runtime.mergeability_max_attempts,
        )
        self._merger = MergeExecutor(gateways)

    def run(self) -> RunReport:
        config = self._config
        branch = config.repo.branch
        log_event(
            LOGGER,
            "run_started",
            repo_full_name=config.repo.full_name,
            proposer=config.proposer_login,
            branch=branch,
            create_issue=config.features.create_issue,
            enable_review=config.features.enable_review,
            probability_percent=config.features.probability_percent,
        )
        progress = _RunProgress()
        try:
            default_branch = self._validate_access()
            progress.default_branch = default_branch

            issue = self._maybe_create_issue()
            if issue is not None:
                progress.issue_number = issue.number

            self._branches.ensure_branch(branch, default_branch=default_branch)
            bundle = self._committer.commit_change(
                branch, default_branch=default_branch, file_path=config.repo.file_path
            )
            progress.commit_sha = bundle.commit_sha

            pull_request, reused = self._pull_requests.find_or_create(
                branch, default_branch=default_branch
            )
            progress.pr_number = pull_request.number
            progress.pr_url = pull_request.html_url
            progress.pr_reused = reused

            progress.reviewed = self._review_gate.maybe_review(pull_request)
            self._poller.wait_until_mergeable(pull_request.number)
            result = self._merger.merge(pull_request)
            progress.merge_sha = result.sha
        except LifecycleError as exc:
            log_event(
                LOGGER,
                "run_failed",
                level=logging.ERROR,
                phase=exc.phase,
                error_type=type(exc).__name__,
                error=str(exc),
                remediation=exc.remediation,
                pr_number=progress.pr_number,
            )
            return progress.report(
                success=False,
                failed_phase=exc.phase,
                error=str(exc),
                remediation=exc.remediation,
            )

        log_event(
            LOGGER,
            "run_completed",
            pr_number=progress.pr_number,
            pr_reused=progress.pr_reused,
            reviewed=progress.reviewed,
            merge_sha=progress.merge_sha,
        )
        return progress.report(success=True)

    def _validate_access(self) -> str:
        default_branch = ""
        for role in ("proposer", "approver"):
            github = self._gateways.for_role(role)
            try:
                info = github.get_repository()
            except GitHubNotFoundError as exc:
                raise AccessError(
                    f"The {role} identity cannot see {github.full_name}: {exc}"
                ) from exc
            except Exception as exc:  # noqa: BLE001
                raise AccessError(
                    f"Repository access check failed for the {role} identity: {exc}",
                    remediation="Check the token for this identity and the network, then retry.",
                ) from exc
            if role == "proposer":
                default_branch = info.default_branch
            log_event(LOGGER, "access_validated", role=role, repo_full_name=info.full_name)
        return default_branch

    def _maybe_create_issue(self) -> Issue | None:
        config = self._config
        if not config.features.create_issue:
            return None
        if not self._gate.draw():
            log_event(
                LOGGER,
                "issue_skipped",
                reason="probability_gate",
                probability_percent=config.features.probability_percent,
            )
            return None

        now = datetime.now(timezone.utc)
        try:
            issue = self._gateways.proposer.create_issue(
                render_issue_title(title=config.issue.title, timestamp=now),
                render_issue_body(
                    body=config.issue.body,
                    actor=config.proposer_login,
                    issue_type=config.issue.issue_type,
                    repo_full_name=config.repo.full_name,
                    branch=config.repo.branch,
                    timestamp=now,
                ),
                issue_labels(config.issue.issue_type),
            )
        except Exception as exc:  # noqa: BLE001
            log_event(
                LOGGER,
                "issue_creation_failed",
                level=logging.WARNING,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            return None
        log_event(LOGGER, "issue_created", issue_number=issue.number, issue_url=issue.html_url)
        return issue
