from __future__ import annotations

import argparse
from contextlib import nullcontext
import os
from pathlib import Path
import sys

from dotenv import load_dotenv

from pullmerge import __version__
from pullmerge.config import (
    ConfigError,
    RunConfig,
    apply_overrides,
    describe_config,
    load_config,
    load_config_from_env,
)
from pullmerge.github_gateway import GitHubGateway, IdentityGateways
from pullmerge.models import RunReport
from pullmerge.observability import configure_logging
from pullmerge.orchestrator import LifecycleOrchestrator
from pullmerge.process_lock import ProcessLockError, branch_run_lock


DEFAULT_CONFIG_PATH = Path("pullmerge.toml")
DEFAULT_ENV_FILE = Path(".env")

CONFIG_TEMPLATE = """\
[repo]
owner = "upstream-owner"
name = "repository-name"
branch = "jonny"
file_path = "README.md"

[identities]
proposer_login = "fork-owner"
proposer_token_env = "TOKEN_A"
approver_token_env = "TOKEN_B"

[features]
create_issue = false
enable_review = false
probability_percent = 30

[issue]
type = "enhancement"
title = "Automated Issue Creation"
body = "This issue was created automatically by the pull-merge bot."

[runtime]
state_dir = "~/.local/state/pullmerge"
mergeability_initial_delay_seconds = 2.0
mergeability_retry_seconds = 3.0
mergeability_max_attempts = 20
use_run_lock = true
"""

ENV_TEMPLATE = """\
# Proposer token (account that pushes the branch and opens the pull request)
TOKEN_A=
# Approver token (repository owner that approves and merges)
TOKEN_B=

# Used only when no TOML config file is present
REPO_OWNER=
FORK_OWNER=
REPO_NAME=
BRANCH_NAME=jonny
CREATE_ISSUE=false
ISSUE_TYPE=enhancement
ISSUE_TITLE=Automated Issue Creation
ISSUE_BODY=This issue was created automatically by the pull-merge bot.
ENABLE_CODE_REVIEW=false
RANDOM_CHANCE_PERCENTAGE=30
"""


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="pullmerge")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    subparsers = parser.add_subparsers(dest="command", required=True)

    run_parser = subparsers.add_parser(
        "run", help="Sync the branch, commit, open or reuse a pull request, and merge it"
    )
    _add_common_arguments(run_parser)
    run_parser.add_argument("--branch", type=str, help="Override the working branch name")
    run_parser.add_argument(
        "--create-issue",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Override whether an issue may be opened before the run",
    )
    run_parser.add_argument(
        "--enable-review",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Override whether the pull request may be reviewed before merging",
    )
    run_parser.add_argument(
        "--probability",
        type=int,
        help="Override the percent chance (1-100) used for issue creation and review",
    )
    run_parser.add_argument(
        "--no-lock",
        action="store_true",
        help="Skip the per-branch run lock even when a state dir is configured",
    )

    config_parser = subparsers.add_parser(
        "config", help="Print the resolved configuration with tokens masked"
    )
    _add_common_arguments(config_parser)

    subparsers.add_parser("setup", help="Print starter config and .env templates")

    return parser


def _add_common_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help=f"TOML config file (default: {DEFAULT_CONFIG_PATH} when present)",
    )
    parser.add_argument(
        "--env-file",
        type=Path,
        default=DEFAULT_ENV_FILE,
        help="Load environment variables from this file when it exists",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        nargs="?",
        const="high",
        choices=("low", "high"),
        default=None,
        help="Log to stderr; 'low' keeps only lifecycle milestones",
    )


def main() -> None:
    args = build_parser().parse_args()

    if args.command == "setup":
        _cmd_setup()
        return

    if args.env_file.is_file():
        load_dotenv(args.env_file, override=False)
    try:
        config = _load_run_config(args.config)
        if args.command == "run":
            config = apply_overrides(
                config,
                branch=args.branch,
                create_issue=args.create_issue,
                enable_review=args.enable_review,
                probability_percent=args.probability,
            )
    except ConfigError as exc:
        raise SystemExit(f"Configuration error: {exc}") from exc

    configure_logging(args.verbose, state_dir=config.runtime.state_dir)

    if args.command == "config":
        _cmd_config(config)
        return
    if args.command == "run":
        _cmd_run(config, use_lock=not args.no_lock)
        return

    raise RuntimeError(f"Unknown command: {args.command}")


def _load_run_config(path: Path | None) -> RunConfig:
    if path is not None:
        if not path.is_file():
            raise ConfigError(f"Config file not found: {path}")
        return load_config(path, environ=os.environ)
    if DEFAULT_CONFIG_PATH.is_file():
        return load_config(DEFAULT_CONFIG_PATH, environ=os.environ)
    return load_config_from_env(os.environ)


def _build_gateways(config: RunConfig) -> IdentityGateways:
    repo = config.repo
    return IdentityGateways(
        proposer=GitHubGateway(
            repo.owner, repo.name, config.credentials.proposer_token, role="proposer"
        ),
        approver=GitHubGateway(
            repo.owner, repo.name, config.credentials.approver_token, role="approver"
        ),
    )


def _cmd_run(config: RunConfig, *, use_lock: bool) -> None:
    orchestrator = LifecycleOrchestrator(config, gateways=_build_gateways(config))
    state_dir = config.runtime.state_dir
    if use_lock and config.runtime.use_run_lock and state_dir is not None:
        lock = branch_run_lock(
            base_dir=state_dir,
            repo_full_name=config.repo.full_name,
            branch=config.repo.branch,
        )
    else:
        lock = nullcontext()

    try:
        with lock:
            report = orchestrator.run()
    except ProcessLockError as exc:
        raise SystemExit(str(exc)) from exc

    _print_report(report)
    if not report.success:
        raise SystemExit(1)


def _print_report(report: RunReport) -> None:
    if report.success:
        verb = "Reused" if report.pr_reused else "Opened"
        print(f"{verb} pull request #{report.pr_number}: {report.pr_url}")
        if report.issue_number is not None:
            print(f"Opened issue #{report.issue_number}")
        print(f"Reviewed: {'yes' if report.reviewed else 'no'}")
        print(f"Merged: {report.merge_sha}")
        return

    print(f"Run failed during {report.failed_phase}: {report.error}", file=sys.stderr)
    if report.pr_number is not None:
        print(f"Pull request: #{report.pr_number} {report.pr_url}", file=sys.stderr)
    if report.remediation:
        print(f"Next step: {report.remediation}", file=sys.stderr)


def _cmd_config(config: RunConfig) -> None:
    for key, value in describe_config(config):
        print(f"{key}={value}")


def _cmd_setup() -> None:
    print(f"# {DEFAULT_CONFIG_PATH}")
    print(CONFIG_TEMPLATE)
    print(f"# {DEFAULT_ENV_FILE}")
    print(ENV_TEMPLATE, end="")
