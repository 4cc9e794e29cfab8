from __future__ import annotations

from pathlib import Path

from hypothesis import given, strategies as st
import pytest

from pullmerge.config import (
    ConfigError,
    Credentials,
    RepoConfig,
    RunConfig,
    apply_overrides,
    describe_config,
    load_config,
    load_config_from_env,
    mask_secret,
)


_TOKENS = {"TOKEN_A": "ghp_proposer1234", "TOKEN_B": "ghp_approver5678"}


def _write(tmp_path: Path, text: str) -> Path:
    path = tmp_path / "pullmerge.toml"
    path.write_text(text, encoding="utf-8")
    return path


def test_load_config_happy_path(tmp_path: Path) -> None:
    path = _write(
        tmp_path,
        """
[repo]
owner = "upstream"
name = "widgets"
branch = "bot-branch"
file_path = "docs/README.md"

[identities]
proposer_login = "forker"
proposer_token_env = "PROPOSER_TOKEN"
approver_token_env = "APPROVER_TOKEN"

[features]
create_issue = true
enable_review = true
probability_percent = 75

[issue]
type = "bug"
title = "Bot issue"
body = "Opened by the bot."

[runtime]
state_dir = "/tmp/pullmerge-state"
mergeability_initial_delay_seconds = 0
mergeability_retry_seconds = 1.5
mergeability_max_attempts = 4
use_run_lock = false
""",
    )

    cfg = load_config(path, environ={"PROPOSER_TOKEN": "aaaa", "APPROVER_TOKEN": "bbbb"})

    assert cfg.repo.full_name == "upstream/widgets"
    assert cfg.repo.branch == "bot-branch"
    assert cfg.repo.file_path == "docs/README.md"
    assert cfg.proposer_login == "forker"
    assert cfg.approver_login == "upstream"
    assert cfg.credentials.proposer_token == "aaaa"
    assert cfg.credentials.approver_token == "bbbb"
    assert cfg.features.create_issue is True
    assert cfg.features.enable_review is True
    assert cfg.features.probability_percent == 75
    assert cfg.issue.issue_type == "bug"
    assert cfg.runtime.state_dir == Path("/tmp/pullmerge-state")
    assert cfg.runtime.mergeability_initial_delay_seconds == 0.0
    assert cfg.runtime.mergeability_retry_seconds == 1.5
    assert cfg.runtime.mergeability_max_attempts == 4
    assert cfg.runtime.use_run_lock is False


def test_load_config_defaults(tmp_path: Path) -> None:
    path = _write(
        tmp_path,
        """
[repo]
owner = "upstream"
name = "widgets"

[identities]
proposer_login = "forker"
""",
    )

    cfg = load_config(path, environ=_TOKENS)

    assert cfg.repo.branch == "jonny"
    assert cfg.repo.file_path == "README.md"
    assert cfg.features.create_issue is False
    assert cfg.features.enable_review is False
    assert cfg.features.probability_percent == 30
    assert cfg.issue.issue_type == "enhancement"
    assert cfg.runtime.state_dir is None
    assert cfg.runtime.mergeability_initial_delay_seconds == 2.0
    assert cfg.runtime.mergeability_retry_seconds == 3.0
    assert cfg.runtime.use_run_lock is True


def test_load_config_requires_tokens_in_environment(tmp_path: Path) -> None:
    path = _write(
        tmp_path,
        """
[repo]
owner = "upstream"
name = "widgets"

[identities]
proposer_login = "forker"
""",
    )

    with pytest.raises(ConfigError, match="Environment variable TOKEN_B is required"):
        load_config(path, environ={"TOKEN_A": "a"})


@pytest.mark.parametrize(
    ("body", "message"),
    [
        ("", r"\[repo\] is required"),
        ('repo = "x"', r"\[repo\] is required"),
        ('[repo]\nname = "w"\n[identities]\nproposer_login = "f"', "owner is required"),
        ('[repo]\nowner = "o"\nname = "w"', "proposer_login is required"),
        (
            '[repo]\nowner = "o"\nname = "w"\n[identities]\nproposer_login = "f"\n'
            "[features]\nprobability_percent = 0",
            "between 1 and 100",
        ),
        (
            '[repo]\nowner = "o"\nname = "w"\n[identities]\nproposer_login = "f"\n'
            "[features]\nprobability_percent = 101",
            "between 1 and 100",
        ),
        (
            '[repo]\nowner = "o"\nname = "w"\n[identities]\nproposer_login = "f"\n'
            '[features]\ncreate_issue = "yes"',
            "create_issue must be a boolean",
        ),
        (
            '[repo]\nowner = "o"\nname = "w"\n[identities]\nproposer_login = "f"\n'
            "[runtime]\nmergeability_max_attempts = 0",
            "mergeability_max_attempts must be >= 1",
        ),
        (
            '[repo]\nowner = "o"\nname = "w"\n[identities]\nproposer_login = "f"\n'
            "[runtime]\nmergeability_retry_seconds = -1",
            "mergeability_retry_seconds must be >= 0",
        ),
        (
            '[repo]\nowner = "o"\nname = "w"\n[identities]\nproposer_login = "f"\n'
            "[features]\nprobability_percent = true",
            "probability_percent must be an integer",
        ),
        ('[repo]\nowner = "o"\nname = "w"\nbranch = ""', "branch must be a non-empty string"),
        ("[repo\n", "not valid TOML"),
    ],
)
def test_load_config_rejects_invalid_files(tmp_path: Path, body: str, message: str) -> None:
    path = _write(tmp_path, body)

    with pytest.raises(ConfigError, match=message):
        load_config(path, environ=_TOKENS)


def test_load_config_from_env_reads_flat_variables() -> None:
    cfg = load_config_from_env(
        {
            **_TOKENS,
            "REPO_OWNER": "upstream",
            "FORK_OWNER": "forker",
            "REPO_NAME": "widgets",
            "CREATE_ISSUE": "true",
            "ISSUE_TYPE": "docs",
            "ENABLE_CODE_REVIEW": "TRUE",
            "RANDOM_CHANCE_PERCENTAGE": "100",
            "STATE_DIR": "/tmp/state",
        }
    )

    assert cfg.repo.full_name == "upstream/widgets"
    assert cfg.repo.branch == "jonny"
    assert cfg.proposer_login == "forker"
    assert cfg.features.create_issue is True
    assert cfg.features.enable_review is True
    assert cfg.features.probability_percent == 100
    assert cfg.issue.issue_type == "docs"
    assert cfg.issue.title == "Automated Issue Creation"
    assert cfg.runtime.state_dir == Path("/tmp/state")


def test_load_config_from_env_lists_every_missing_variable() -> None:
    with pytest.raises(ConfigError) as exc_info:
        load_config_from_env({"TOKEN_A": "a", "REPO_NAME": "w"})

    assert str(exc_info.value) == (
        "Missing required configuration: TOKEN_B, REPO_OWNER, FORK_OWNER"
    )


def test_load_config_from_env_only_accepts_literal_true() -> None:
    cfg = load_config_from_env(
        {
            **_TOKENS,
            "REPO_OWNER": "o",
            "FORK_OWNER": "f",
            "REPO_NAME": "r",
            "CREATE_ISSUE": "yes",
            "ENABLE_CODE_REVIEW": "1",
        }
    )

    assert cfg.features.create_issue is False
    assert cfg.features.enable_review is False


def test_load_config_from_env_rejects_non_integer_probability() -> None:
    with pytest.raises(ConfigError, match="RANDOM_CHANCE_PERCENTAGE must be an integer"):
        load_config_from_env(
            {
                **_TOKENS,
                "REPO_OWNER": "o",
                "FORK_OWNER": "f",
                "REPO_NAME": "r",
                "RANDOM_CHANCE_PERCENTAGE": "half",
            }
        )


def _base_config() -> RunConfig:
    return RunConfig(
        credentials=Credentials(proposer_token="aaaa1111", approver_token="bbbb2222"),
        repo=RepoConfig(owner="upstream", name="widgets"),
        proposer_login="forker",
    )


def test_apply_overrides_replaces_only_given_values() -> None:
    base = _base_config()

    updated = apply_overrides(base, branch="other", enable_review=True, probability_percent=100)

    assert updated.repo.branch == "other"
    assert updated.repo.owner == "upstream"
    assert updated.features.enable_review is True
    assert updated.features.create_issue is False
    assert updated.features.probability_percent == 100
    assert apply_overrides(base) == base


def test_apply_overrides_validates_result() -> None:
    with pytest.raises(ConfigError, match="between 1 and 100"):
        apply_overrides(_base_config(), probability_percent=0)


@given(st.integers(min_value=1, max_value=100))
def test_apply_overrides_accepts_every_valid_probability(percent: int) -> None:
    updated = apply_overrides(_base_config(), probability_percent=percent)
    assert updated.features.probability_percent == percent


def test_describe_config_masks_tokens() -> None:
    described = dict(describe_config(_base_config()))

    assert described["proposer_token"] == "***1111"
    assert described["approver_token"] == "***2222"
    assert described["repo"] == "upstream/widgets"
    assert described["branch"] == "jonny"
    assert described["state_dir"] == "<none>"
    assert "aaaa1111" not in repr(_base_config())


def test_mask_secret() -> None:
    assert mask_secret("") == "<not set>"
    assert mask_secret("abcdefgh") == "***efgh"
