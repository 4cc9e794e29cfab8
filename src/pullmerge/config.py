from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from pathlib import Path
import tomllib
from typing import cast


DEFAULT_BRANCH_NAME = "jonny"
DEFAULT_FILE_PATH = "README.md"
DEFAULT_PROBABILITY_PERCENT = 30
DEFAULT_PROPOSER_TOKEN_ENV = "TOKEN_A"
DEFAULT_APPROVER_TOKEN_ENV = "TOKEN_B"


@dataclass(frozen=True)
class Credentials:
    proposer_token: str = field(repr=False)
    approver_token: str = field(repr=False)


@dataclass(frozen=True)
class RepoConfig:
    owner: str
    name: str
    branch: str = DEFAULT_BRANCH_NAME
    file_path: str = DEFAULT_FILE_PATH

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.name}"


@dataclass(frozen=True)
class FeatureConfig:
    create_issue: bool = False
    enable_review: bool = False
    probability_percent: int = DEFAULT_PROBABILITY_PERCENT


@dataclass(frozen=True)
class IssueConfig:
    issue_type: str = "enhancement"
    title: str = "Automated Issue Creation"
    body: str = "This issue was created automatically by the pull-merge bot."


@dataclass(frozen=True)
class RuntimeConfig:
    state_dir: Path | None = None
    mergeability_initial_delay_seconds: float = 2.0
    mergeability_retry_seconds: float = 3.0
    mergeability_max_attempts: int = 20
    use_run_lock: bool = True


@dataclass(frozen=True)
class RunConfig:
    credentials: Credentials
    repo: RepoConfig
    proposer_login: str
    features: FeatureConfig = field(default_factory=FeatureConfig)
    issue: IssueConfig = field(default_factory=IssueConfig)
    runtime: RuntimeConfig = field(default_factory=RuntimeConfig)

    @property
    def approver_login(self) -> str:
        return self.repo.owner


class ConfigError(ValueError):
    pass


def load_config(path: Path, *, environ: Mapping[str, str]) -> RunConfig:
    with path.open("rb") as fh:
        try:
            data = tomllib.load(fh)
        except tomllib.TOMLDecodeError as exc:
            raise ConfigError(f"{path} is not valid TOML: {exc}") from exc

    repo_data = _require_table(data, "repo")
    identities_data = _optional_table(data, "identities") or {}
    features_data = _optional_table(data, "features") or {}
    issue_data = _optional_table(data, "issue") or {}
    runtime_data = _optional_table(data, "runtime") or {}

    repo = RepoConfig(
        owner=_require_str(repo_data, "owner"),
        name=_require_str(repo_data, "name"),
        branch=_str_with_default(repo_data, "branch", DEFAULT_BRANCH_NAME),
        file_path=_str_with_default(repo_data, "file_path", DEFAULT_FILE_PATH),
    )
    proposer_token_env = _str_with_default(
        identities_data, "proposer_token_env", DEFAULT_PROPOSER_TOKEN_ENV
    )
    approver_token_env = _str_with_default(
        identities_data, "approver_token_env", DEFAULT_APPROVER_TOKEN_ENV
    )
    config = RunConfig(
        credentials=Credentials(
            proposer_token=_require_env(environ, proposer_token_env),
            approver_token=_require_env(environ, approver_token_env),
        ),
        repo=repo,
        proposer_login=_require_str(identities_data, "proposer_login"),
        features=FeatureConfig(
            create_issue=_bool_with_default(features_data, "create_issue", False),
            enable_review=_bool_with_default(features_data, "enable_review", False),
            probability_percent=_int_with_default(
                features_data, "probability_percent", DEFAULT_PROBABILITY_PERCENT
            ),
        ),
        issue=IssueConfig(
            issue_type=_str_with_default(issue_data, "type", IssueConfig.issue_type),
            title=_str_with_default(issue_data, "title", IssueConfig.title),
            body=_str_with_default(issue_data, "body", IssueConfig.body),
        ),
        runtime=RuntimeConfig(
            state_dir=_optional_path(runtime_data, "state_dir"),
            mergeability_initial_delay_seconds=_float_with_default(
                runtime_data, "mergeability_initial_delay_seconds", 2.0
            ),
            mergeability_retry_seconds=_float_with_default(
                runtime_data, "mergeability_retry_seconds", 3.0
            ),
            mergeability_max_attempts=_int_with_default(
                runtime_data, "mergeability_max_attempts", 20
            ),
            use_run_lock=_bool_with_default(runtime_data, "use_run_lock", True),
        ),
    )
    validate_config(config)
    return config


def load_config_from_env(environ: Mapping[str, str]) -> RunConfig:
    """Build a config from the flat variables used by `.env` based deployments."""

    missing = [
        key
        for key in (
            DEFAULT_PROPOSER_TOKEN_ENV,
            DEFAULT_APPROVER_TOKEN_ENV,
            "REPO_OWNER",
            "FORK_OWNER",
            "REPO_NAME",
        )
        if not environ.get(key)
    ]
    if missing:
        raise ConfigError(f"Missing required configuration: {', '.join(missing)}")

    state_dir = environ.get("STATE_DIR")
    config = RunConfig(
        credentials=Credentials(
            proposer_token=environ[DEFAULT_PROPOSER_TOKEN_ENV],
            approver_token=environ[DEFAULT_APPROVER_TOKEN_ENV],
        ),
        repo=RepoConfig(
            owner=environ["REPO_OWNER"],
            name=environ["REPO_NAME"],
            branch=environ.get("BRANCH_NAME") or DEFAULT_BRANCH_NAME,
        ),
        proposer_login=environ["FORK_OWNER"],
        features=FeatureConfig(
            create_issue=_env_bool(environ, "CREATE_ISSUE"),
            enable_review=_env_bool(environ, "ENABLE_CODE_REVIEW"),
            probability_percent=_env_int(
                environ, "RANDOM_CHANCE_PERCENTAGE", DEFAULT_PROBABILITY_PERCENT
            ),
        ),
        issue=IssueConfig(
            issue_type=environ.get("ISSUE_TYPE") or IssueConfig.issue_type,
            title=environ.get("ISSUE_TITLE") or IssueConfig.title,
            body=environ.get("ISSUE_BODY") or IssueConfig.body,
        ),
        runtime=RuntimeConfig(state_dir=Path(state_dir).expanduser() if state_dir else None),
    )
    validate_config(config)
    return config


def apply_overrides(
    config: RunConfig,
    *,
    branch: str | None = None,
    create_issue: bool | None = None,
    enable_review: bool | None = None,
    probability_percent: int | None = None,
) -> RunConfig:
    repo = config.repo if branch is None else replace(config.repo, branch=branch)
    features = config.features
    if create_issue is not None:
        features = replace(features, create_issue=create_issue)
    if enable_review is not None:
        features = replace(features, enable_review=enable_review)
    if probability_percent is not None:
        features = replace(features, probability_percent=probability_percent)
    updated = replace(config, repo=repo, features=features)
    validate_config(updated)
    return updated


def validate_config(config: RunConfig) -> None:
    probability = config.features.probability_percent
    if probability < 1 or probability > 100:
        raise ConfigError("features.probability_percent must be between 1 and 100")
    if not config.repo.branch.strip():
        raise ConfigError("repo.branch must be a non-empty string")
    if not config.credentials.proposer_token or not config.credentials.approver_token:
        raise ConfigError("Both proposer and approver tokens are required")
    if config.runtime.mergeability_max_attempts < 1:
        raise ConfigError("runtime.mergeability_max_attempts must be >= 1")
    if config.runtime.mergeability_initial_delay_seconds < 0:
        raise ConfigError("runtime.mergeability_initial_delay_seconds must be >= 0")
    if config.runtime.mergeability_retry_seconds < 0:
        raise ConfigError("runtime.mergeability_retry_seconds must be >= 0")


def describe_config(config: RunConfig) -> tuple[tuple[str, str], ...]:
    return (
        ("proposer_token", mask_secret(config.credentials.proposer_token)),
        ("approver_token", mask_secret(config.credentials.approver_token)),
        ("repo", config.repo.full_name),
        ("proposer_login", config.proposer_login),
        ("branch", config.repo.branch),
        ("file_path", config.repo.file_path),
        ("create_issue", _bool_text(config.features.create_issue)),
        ("issue_type", config.issue.issue_type),
        ("enable_review", _bool_text(config.features.enable_review)),
        ("probability_percent", str(config.features.probability_percent)),
        ("state_dir", str(config.runtime.state_dir) if config.runtime.state_dir else "<none>"),
        ("use_run_lock", _bool_text(config.runtime.use_run_lock)),
    )


def mask_secret(value: str) -> str:
    if not value:
        return "<not set>"
    return "***" + value[-4:]


def _bool_text(value: bool) -> str:
    return "true" if value else "false"


def _require_table(data: dict[str, object], key: str) -> dict[str, object]:
    value = data.get(key)
    if not isinstance(value, dict):
        raise ConfigError(f"[{key}] is required and must be a TOML table")
    if not all(isinstance(item, str) for item in value.keys()):
        raise ConfigError(f"[{key}] must have string keys")
    return cast(dict[str, object], value)


def _optional_table(data: dict[str, object], key: str) -> dict[str, object] | None:
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, dict):
        raise ConfigError(f"[{key}] must be a TOML table when provided")
    if not all(isinstance(item, str) for item in value.keys()):
        raise ConfigError(f"[{key}] must have string keys")
    return cast(dict[str, object], value)


def _require_str(data: dict[str, object], key: str) -> str:
    value = data.get(key)
    if not isinstance(value, str) or not value:
        raise ConfigError(f"{key} is required and must be a non-empty string")
    return value


def _optional_str(data: dict[str, object], key: str) -> str | None:
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, str) or not value:
        raise ConfigError(f"{key} must be a non-empty string if provided")
    return value


def _str_with_default(data: dict[str, object], key: str, default: str) -> str:
    value = data.get(key, default)
    if not isinstance(value, str) or not value:
        raise ConfigError(f"{key} must be a non-empty string")
    return value


def _int_with_default(data: dict[str, object], key: str, default: int) -> int:
    value = data.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigError(f"{key} must be an integer")
    return value


def _float_with_default(data: dict[str, object], key: str, default: float) -> float:
    value = data.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int | float):
        raise ConfigError(f"{key} must be a number")
    return float(value)


def _bool_with_default(data: dict[str, object], key: str, default: bool) -> bool:
    value = data.get(key, default)
    if not isinstance(value, bool):
        raise ConfigError(f"{key} must be a boolean")
    return value


def _optional_path(data: dict[str, object], key: str) -> Path | None:
    value = _optional_str(data, key)
    if value is None:
        return None
    return Path(value).expanduser()


def _require_env(environ: Mapping[str, str], key: str) -> str:
    value = environ.get(key, "")
    if not value:
        raise ConfigError(f"Environment variable {key} is required and must be non-empty")
    return value


def _env_bool(environ: Mapping[str, str], key: str) -> bool:
    return environ.get(key, "").strip().lower() == "true"


def _env_int(environ: Mapping[str, str], key: str, default: int) -> int:
    raw = environ.get(key, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ConfigError(f"{key} must be an integer, got {raw!r}") from exc
