from __future__ import annotations


class LifecycleError(RuntimeError):
    """Fatal failure of one lifecycle phase; the run stops at the phase that raised it."""

    phase = "run"
    default_remediation: str | None = None

    def __init__(self, message: str, *, remediation: str | None = None) -> None:
        super().__init__(message)
        self.remediation = remediation if remediation is not None else self.default_remediation


class AccessError(LifecycleError):
    phase = "access"
    default_remediation = (
        "Check that both tokens have the 'repo' scope and that the proposer account "
        "has accepted its invitation to the repository."
    )


class BranchError(LifecycleError):
    phase = "branch_sync"


class CommitError(LifecycleError):
    phase = "commit"


class DiscoveryError(LifecycleError):
    phase = "pull_request_discovery"
    default_remediation = (
        "Pull request lookup failed; no pull request was created to avoid duplicates. "
        "Re-run once the hosting service is reachable."
    )


class CreationError(LifecycleError):
    phase = "pull_request_creation"


class MergeabilityCheckError(LifecycleError):
    phase = "mergeability"


class MergeabilityExhaustedError(LifecycleError):
    phase = "mergeability"
    default_remediation = (
        "GitHub did not decide mergeability in time. Check the pull request manually "
        "or raise runtime.mergeability_max_attempts."
    )


class MergeConflictError(LifecycleError):
    phase = "mergeability"
    default_remediation = "Cannot merge pull request due to conflicts. Please resolve manually."


class MergeError(LifecycleError):
    phase = "merge"
