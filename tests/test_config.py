"""Tests for run parameter resolution (defaults, params file, environment, CLI)."""
from pathlib import Path
from unittest.mock import patch

import pytest

from repo_replace_pr import (
    ConfigError,
    build_run_parameters,
    main,
    normalize_repo_name,
    parse_args,
)

ENV = {
    "SEARCH_PATTERN": "map-migrated",
    "REPLACE_WITH": "mig-map-migrated",
    "GITHUB_PAT": "ghp_token",
    "GITHUB_USERNAME": "bot",
    "GITHUB_EMAIL": "bot@example.com",
}

CLI = ["-r", "infra", "-b", "mig-tags", "-m", "Prefix map-migrated tags"]


def test_build_run_parameters_from_cli_and_environment() -> None:
    params = build_run_parameters(parse_args(CLI), ENV)

    assert params.repository == "republik-io/infra"
    assert params.branch == "mig-tags"
    assert params.commit_message == "Prefix map-migrated tags"
    assert params.search_pattern.pattern == "map-migrated"
    assert params.replacement == "mig-map-migrated"
    assert params.credentials.username == "bot"
    assert params.credentials.token == "ghp_token"
    assert params.author_email == "bot@example.com"
    assert params.committer_name == "bot"
    assert params.base_branch == "main"
    assert params.clone_url == "https://github.com/republik-io/infra.git"
    assert params.repo_path == Path("../repos/infra")
    assert params.on_error == "continue"
    assert params.allow_empty_commit is True


def test_build_run_parameters_reports_all_missing_values() -> None:
    with pytest.raises(ConfigError) as excinfo:
        build_run_parameters(parse_args(["-r", "infra"]), {})

    message = str(excinfo.value)
    for name in ("branch", "commit message", "search pattern", "replacement", "GITHUB_PAT", "GITHUB_USERNAME", "GITHUB_EMAIL"):
        assert name in message
    assert "repository" not in message


def test_empty_replacement_is_allowed() -> None:
    params = build_run_parameters(parse_args(CLI), {**ENV, "REPLACE_WITH": ""})

    assert params.replacement == ""


def test_cli_overrides_environment() -> None:
    args = parse_args(CLI + ["--search", "old", "--replace", "new", "--on-error", "abort", "--skip-empty-commit"])

    params = build_run_parameters(args, ENV)

    assert params.search_pattern.pattern == "old"
    assert params.replacement == "new"
    assert params.on_error == "abort"
    assert params.allow_empty_commit is False


def test_params_file_supplies_values_and_environment_wins(tmp_path: Path) -> None:
    params_file = tmp_path / "params.yaml"
    params_file.write_text(
        "\n".join([
            "repo: acme/billing",
            "branch: from-file",
            "commit-message: From file",
            "search: stale",
            "replace: fresh",
            "token: file-token",
            "username: file-user",
            "email: file@example.com",
            "base_branch: qa2",
            "clone_dir: /tmp/clones",
            "exclude_file: \\.lock$",
            "",
        ]),
        encoding="utf-8",
    )

    params = build_run_parameters(
        parse_args(["--params-file", str(params_file)]), {"GITHUB_PAT": "env-token"}
    )

    assert params.repository == "acme/billing"
    assert params.commit_message == "From file"
    assert params.credentials.token == "env-token"
    assert params.credentials.username == "file-user"
    assert params.base_branch == "qa2"
    assert params.repo_path == Path("/tmp/clones/billing")
    assert params.exclude_file_pattern.pattern == r"\.lock$"


def test_params_file_must_be_a_mapping(tmp_path: Path) -> None:
    params_file = tmp_path / "params.yaml"
    params_file.write_text("- just\n- a list\n", encoding="utf-8")

    with pytest.raises(ConfigError, match="mapping"):
        build_run_parameters(parse_args(["--params-file", str(params_file)]), ENV)


def test_invalid_search_regex_is_a_config_error() -> None:
    with pytest.raises(ConfigError, match="search"):
        build_run_parameters(parse_args(CLI + ["--search", "("]), ENV)


def test_invalid_replacement_template_is_a_config_error() -> None:
    with pytest.raises(ConfigError, match="replacement"):
        build_run_parameters(parse_args(CLI + ["--replace", r"\9"]), ENV)


def test_named_group_replacement_is_accepted() -> None:
    params = build_run_parameters(parse_args(CLI + ["--search", r"(?P<tag>map)-migrated", "--replace", r"mig-\g<tag>"]), ENV)

    assert params.replacement == r"mig-\g<tag>"


def test_invalid_replacement_fails_before_cloning(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.chdir(tmp_path)
    for name, value in ENV.items():
        monkeypatch.setenv(name, value)
    clone_dir = tmp_path / "clones"

    with patch("repo_replace_pr.process_repository") as process:
        with pytest.raises(SystemExit) as excinfo:
            main(CLI + ["--replace", r"\9", "--clone-dir", str(clone_dir)])

    assert excinfo.value.code == 1
    process.assert_not_called()
    assert not clone_dir.exists()


def test_non_string_exclusion_from_params_file(tmp_path: Path) -> None:
    params_file = tmp_path / "params.yaml"
    params_file.write_text("exclude_dir: 5\nexclude_file: 7\n", encoding="utf-8")

    params = build_run_parameters(parse_args(CLI + ["--params-file", str(params_file)]), ENV)

    assert params.exclude_dir_pattern.pattern == "5"
    assert params.exclude_file_pattern.pattern == "7"


def test_invalid_on_error_from_file(tmp_path: Path) -> None:
    params_file = tmp_path / "params.yaml"
    params_file.write_text("on_error: ignore\n", encoding="utf-8")

    with pytest.raises(ConfigError, match="on_error"):
        build_run_parameters(parse_args(CLI + ["--params-file", str(params_file)]), ENV)


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("infra", "republik-io/infra"),
        ("acme/infra", "acme/infra"),
        ("https://github.com/acme/infra.git", "acme/infra"),
        ("git@github.com:acme/infra.git", "acme/infra"),
        ("https://github.com/acme/infra", "acme/infra"),
    ],
)
def test_normalize_repo_name(raw: str, expected: str) -> None:
    assert normalize_repo_name(raw) == expected


def test_normalize_repo_name_rejects_deep_paths() -> None:
    with pytest.raises(ConfigError):
        normalize_repo_name("a/b/c")


def test_org_flag_sets_owner() -> None:
    params = build_run_parameters(parse_args(CLI + ["--org", "acme"]), ENV)

    assert params.repository == "acme/infra"


def test_main_exits_non_zero_on_missing_configuration(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.chdir(tmp_path)
    for name in ENV:
        monkeypatch.delenv(name, raising=False)

    with pytest.raises(SystemExit) as excinfo:
        main(CLI)

    assert excinfo.value.code == 1


def test_main_reads_dotenv_from_working_directory(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.chdir(tmp_path)
    for name in ENV:
        monkeypatch.setenv(name, "placeholder")
        monkeypatch.delenv(name)
    (tmp_path / ".env").write_text(
        "".join(f"{name}={value}\n" for name, value in ENV.items()),
        encoding="utf-8",
    )
    result = {
        "repo": "republik-io/infra",
        "repo_path": tmp_path / "repos" / "infra",
        "status": "dry_run",
        "modified_files": [],
        "commit": None,
        "pr_url": None,
    }

    with patch("repo_replace_pr.process_repository", return_value=result) as process:
        main(CLI + ["--dry-run"])

    params = process.call_args[0][0]
    assert params.search_pattern.pattern == "map-migrated"
    assert params.replacement == "mig-map-migrated"
    assert params.credentials.token == "ghp_token"
    assert params.credentials.username == "bot"
    assert params.author_email == "bot@example.com"
    assert process.call_args[1] == {"dry_run": True}
