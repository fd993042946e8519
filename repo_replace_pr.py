#!/usr/bin/env python3
"""
Repo Replace PR - regex search/replace across a GitHub repository, delivered as a pull request

This script clones a single repository, creates a branch, applies a regex
search/replace to every eligible file, commits, pushes the branch and opens
a pull request through the GitHub REST API.

Requirements:
- git installed and on PATH
- Python 3.8+
- A GitHub personal access token (GITHUB_PAT) with access to the repository
"""

import argparse
import base64
import logging
import os
import re
import shutil
import stat
import subprocess
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterator, List, Mapping, Optional, Sequence, Tuple, Type

import requests
import yaml
from dotenv import find_dotenv, load_dotenv

# Import configuration from config.py
try:
    from config import (
        GITHUB_ORG,
        GITHUB_API_URL,
        GIT_URL_TEMPLATE,
        EXCLUDE_DIR_PATTERN,
        EXCLUDE_FILE_PATTERN,
        ON_ERROR,
        DEFAULT_BASE_BRANCH,
        DEFAULT_PR_TITLE,
        DEFAULT_PR_BODY,
        ALLOW_EMPTY_COMMIT,
        CLONE_ROOT,
        GIT_TIMEOUT,
        HTTP_TIMEOUT,
    )
except ImportError:
    logging.basicConfig(
        level=logging.ERROR,
        format='%(asctime)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )
    logging.getLogger(__name__).error("Configuration file 'config.py' not found next to repo_replace_pr.py")
    sys.exit(1)


# ============================================================================
# LOGGING SETUP
# ============================================================================

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(levelname)s - %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S'
)
logger = logging.getLogger(__name__)


# ============================================================================
# ERRORS
# ============================================================================

class ReplacePrError(Exception):
    """Base class for every failure that aborts a run."""


class ConfigError(ReplacePrError):
    """A required parameter is missing or invalid."""


class CloneFailed(ReplacePrError):
    pass


class BranchError(ReplacePrError):
    pass


class BranchExists(BranchError):
    pass


class NoCommits(BranchError):
    pass


class CommitFailed(ReplacePrError):
    pass


class NothingToCommit(CommitFailed):
    pass


class IdentityMissing(CommitFailed):
    pass


class PushFailed(ReplacePrError):
    pass


class PushRejected(PushFailed):
    """The remote refused the update (non-fast-forward or hook rejection)."""


class AuthFailed(PushFailed):
    pass


class FileIOFailed(ReplacePrError):
    """Reading or writing a file during the rewrite failed."""

    def __init__(self, path, message: str):
        self.path = Path(path)
        super().__init__(f"{path}: {message}")


class ReadFailed(FileIOFailed):
    pass


class WriteFailed(FileIOFailed):
    pass


class PullRequestFailed(ReplacePrError):
    pass


class ApiRejected(PullRequestFailed):
    """GitHub answered with a non-2xx status."""

    def __init__(self, status_code: int, body: str):
        self.status_code = status_code
        self.body = body
        super().__init__(f"GitHub API returned {status_code}: {body}")


class NetworkFailed(PullRequestFailed):
    pass


# ============================================================================
# RUN PARAMETERS
# ============================================================================

ON_ERROR_CHOICES = ("continue", "abort")

# Environment variables recognised for each parameter
ENV_VARS = {
    "search": "SEARCH_PATTERN",
    "replace": "REPLACE_WITH",
    "token": "GITHUB_PAT",
    "username": "GITHUB_USERNAME",
    "email": "GITHUB_EMAIL",
}

REQUIRED_PARAMS = {
    "repo": "repository (-r/--repo)",
    "branch": "branch (-b/--branch)",
    "commit_message": "commit message (-m/--commit-message)",
    "search": "search pattern (--search or SEARCH_PATTERN)",
    "replace": "replacement (--replace or REPLACE_WITH)",
    "token": "GitHub token (GITHUB_PAT)",
    "username": "GitHub username (GITHUB_USERNAME)",
    "email": "author email (GITHUB_EMAIL)",
}


@dataclass(frozen=True)
class Credentials:
    """Username/token pair sent to GitHub for git transport and the REST API."""
    username: str
    token: str = field(repr=False)

    def basic_auth_header(self) -> str:
        raw = f"{self.username}:{self.token}".encode("utf-8")
        return "Authorization: Basic " + base64.b64encode(raw).decode("ascii")


@dataclass(frozen=True)
class RunParameters:
    """Everything one run needs, resolved once at startup."""
    repository: str
    branch: str
    commit_message: str
    search_pattern: re.Pattern
    replacement: str
    credentials: Credentials
    author_email: str
    author_name: Optional[str] = None
    base_branch: Optional[str] = DEFAULT_BASE_BRANCH
    pr_title: str = DEFAULT_PR_TITLE
    pr_body: str = DEFAULT_PR_BODY
    remote_url: Optional[str] = None
    clone_root: Path = Path(CLONE_ROOT)
    exclude_dir_pattern: re.Pattern = re.compile(EXCLUDE_DIR_PATTERN)
    exclude_file_pattern: re.Pattern = re.compile(EXCLUDE_FILE_PATTERN)
    on_error: str = ON_ERROR
    allow_empty_commit: bool = ALLOW_EMPTY_COMMIT
    git_timeout: int = GIT_TIMEOUT
    http_timeout: int = HTTP_TIMEOUT
    api_url: str = GITHUB_API_URL

    @property
    def repo_name(self) -> str:
        return self.repository.split("/")[-1]

    @property
    def clone_url(self) -> str:
        if self.remote_url:
            return self.remote_url
        owner, repo = self.repository.split("/", 1)
        return GIT_URL_TEMPLATE.format(owner=owner, repo=repo)

    @property
    def repo_path(self) -> Path:
        return Path(self.clone_root) / self.repo_name

    @property
    def committer_name(self) -> str:
        return self.author_name or self.credentials.username


# ============================================================================
# HELPER FUNCTIONS
# ============================================================================

def _redact(text: str, secrets: Sequence[str]) -> str:
    for secret in secrets:
        if secret:
            text = text.replace(secret, "***")
    return text


def run_command(
    cmd: List[str],
    cwd: Optional[str] = None,
    env: Optional[Mapping[str, str]] = None,
    timeout: Optional[float] = GIT_TIMEOUT,
    secrets: Sequence[str] = ()
) -> Tuple[int, str, str]:
    """
    Execute a command and return the result.

    Args:
        cmd: Command to run as a list of strings
        cwd: Working directory for the command
        env: Environment for the child process (defaults to the current one)
        timeout: Seconds before the command is killed
        secrets: Strings replaced with *** wherever the command is logged

    Returns:
        Tuple of (exit_code, stdout, stderr); a non-zero exit code is left to the caller
    """
    printable = _redact(' '.join(cmd), secrets)
    logger.debug(f"Executing: {printable}")
    try:
        result = subprocess.run(
            cmd,
            cwd=cwd,
            check=False,
            capture_output=True,
            text=True,
            env=dict(env) if env is not None else None,
            timeout=timeout
        )
        return result.returncode, result.stdout, result.stderr
    except subprocess.TimeoutExpired:
        logger.error(f"Command timed out after {timeout}s: {printable}")
        raise


def run_git(
    args: List[str],
    cwd: Optional[Path] = None,
    credentials: Optional[Credentials] = None,
    timeout: Optional[float] = GIT_TIMEOUT,
    env_extra: Optional[Mapping[str, str]] = None,
    error_cls: Type[ReplacePrError] = ReplacePrError
) -> Tuple[int, str, str]:
    """
    Run a git subcommand with captured output.

    Credentials travel as an HTTP Basic header for this invocation only, so the
    token never lands in .git/config. A timeout or a missing git binary is
    raised as ``error_cls``; a non-zero exit code is returned to the caller.
    """
    cmd = ["git"]
    secrets: List[str] = []
    if credentials is not None:
        header = credentials.basic_auth_header()
        cmd.extend(["-c", f"http.extraHeader={header}"])
        secrets = [header.split()[-1], credentials.token]
    cmd.extend(args)

    env = {**os.environ, "GIT_TERMINAL_PROMPT": "0", "LC_ALL": "C"}
    if env_extra:
        env.update(env_extra)

    try:
        return run_command(
            cmd,
            cwd=str(cwd) if cwd is not None else None,
            env=env,
            timeout=timeout,
            secrets=secrets
        )
    except subprocess.TimeoutExpired as e:
        raise error_cls(f"git {args[0]} timed out after {timeout}s") from e
    except OSError as e:
        raise error_cls(f"Could not run git: {e}") from e


def normalize_repo_name(repo: str, default_org: Optional[str] = GITHUB_ORG) -> str:
    """
    Normalize repository identifier to owner/repo format.

    Args:
        repo: Repository identifier (URL, owner/repo, or bare repo name)
        default_org: Owner used when only a repo name is given

    Returns:
        Normalized owner/repo string
    """
    repo = repo.strip()
    if 'github.com' in repo:
        match = re.search(r'github\.com[:/]([\w\-\.]+)/([\w\-\.]+?)(?:\.git)?(?:/|$)', repo)
        if match:
            return f"{match.group(1)}/{match.group(2)}"
        raise ConfigError(f"Could not parse GitHub URL: {repo}")

    parts = [part for part in repo.split('/') if part]
    if len(parts) == 2:
        return f"{parts[0]}/{parts[1]}"
    if len(parts) == 1:
        if not default_org:
            raise ConfigError(f"Repository {repo} has no owner and no default org is configured")
        return f"{default_org}/{parts[0]}"
    raise ConfigError(f"Invalid repository format: {repo} (expected repo or owner/repo)")


def step_progress(step_num: int, total: int, label: str, status: str = "...") -> None:
    """Print a single step progress line (e.g. '  [1/6] Clone ✓')."""
    logger.info(f"  [{step_num}/{total}] {label} {status}")


# ============================================================================
# CONFIGURATION
# ============================================================================

def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Apply a regex search/replace to a GitHub repository and open a pull request",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=(
            "Credentials and the search/replace pair are read from the environment "
            "(or a .env file): GITHUB_PAT, GITHUB_USERNAME, GITHUB_EMAIL, "
            "SEARCH_PATTERN, REPLACE_WITH."
        )
    )
    parser.add_argument("-r", "--repo", help="Repository name, owner/repo, or GitHub URL")
    parser.add_argument("-b", "--branch", help="Branch name to create")
    parser.add_argument("-m", "--commit-message", dest="commit_message", help="Commit message")
    parser.add_argument("--search", help="Regex to search for (overrides SEARCH_PATTERN)")
    parser.add_argument("--replace", help="Replacement text (overrides REPLACE_WITH)")
    parser.add_argument(
        "--base-branch",
        help=f"Branch to clone from and open the PR against (default: {DEFAULT_BASE_BRANCH or 'remote default branch'})"
    )
    parser.add_argument("--pr-title", help=f"PR title (default: {DEFAULT_PR_TITLE})")
    parser.add_argument("--pr-body", help=f"PR body (default: {DEFAULT_PR_BODY})")
    parser.add_argument("--org", help=f"Owner used when --repo has none (default: {GITHUB_ORG})")
    parser.add_argument("--remote-url", help="Clone from this URL instead of the GitHub URL")
    parser.add_argument("--clone-dir", help=f"Directory to clone into (default: {CLONE_ROOT})")
    parser.add_argument("--exclude-dir", help=f"Regex of paths to skip (default: {EXCLUDE_DIR_PATTERN})")
    parser.add_argument("--exclude-file", help=f"Regex of files to skip (default: {EXCLUDE_FILE_PATTERN})")
    parser.add_argument(
        "--on-error",
        choices=ON_ERROR_CHOICES,
        help=f"Unreadable/unwritable files during the rewrite (default: {ON_ERROR})"
    )
    parser.add_argument(
        "--skip-empty-commit",
        action="store_true",
        help="Fail instead of creating a commit when the rewrite changed nothing"
    )
    parser.add_argument(
        "--params-file",
        help="YAML file with parameters (keys match the long option names, plus token/username/email)"
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Clone, branch and rewrite only; do not commit, push or open a PR"
    )
    parser.add_argument(
        "--cleanup",
        action="store_true",
        help="Delete the cloned repository after a successful run"
    )
    parser.add_argument("--verbose", action="store_true", help="Enable verbose logging")
    return parser.parse_args(argv)


def load_params_file(params_file: str) -> Dict[str, Any]:
    """Read a YAML mapping of parameters; dashes in keys are accepted for underscores."""
    path = Path(params_file)
    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"Failed to read params file {path}: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Params file {path} must contain a mapping, got {type(data).__name__}")
    return {str(key).replace('-', '_'): value for key, value in data.items()}


def _compile(pattern: str, label: str) -> re.Pattern:
    try:
        return re.compile(pattern)
    except re.error as e:
        raise ConfigError(f"Invalid {label} regex {pattern!r}: {e}") from e


def _check_replacement(search_pattern: re.Pattern, replacement: str) -> None:
    # Templates are parsed before any match is attempted, so "" is enough to surface bad group references
    try:
        search_pattern.sub(replacement, "")
    except re.error as e:
        raise ConfigError(f"Invalid replacement {replacement!r}: {e}") from e


def build_run_parameters(args: argparse.Namespace, environ: Optional[Mapping[str, str]] = None) -> RunParameters:
    """
    Resolve run parameters from config.py defaults, the params file, the
    environment and CLI flags, in that order of precedence (later wins).

    Raises:
        ConfigError: listing every missing required value, or naming an invalid one
    """
    environ = os.environ if environ is None else environ

    values: Dict[str, Any] = {}
    if getattr(args, "params_file", None):
        values.update(load_params_file(args.params_file))

    for key, env_name in ENV_VARS.items():
        if env_name in environ:
            values[key] = environ[env_name]

    for key, value in vars(args).items():
        if value is not None and value is not False:
            values[key] = value

    missing = []
    for key, description in REQUIRED_PARAMS.items():
        value = values.get(key)
        # An empty replacement is legitimate: it deletes every match
        if value is None or (key != "replace" and str(value).strip() == ""):
            missing.append(description)
    if missing:
        raise ConfigError("Missing required parameters: " + ", ".join(missing))

    on_error = values.get("on_error", ON_ERROR)
    if on_error not in ON_ERROR_CHOICES:
        raise ConfigError(f"on_error must be one of {', '.join(ON_ERROR_CHOICES)}, got {on_error!r}")

    allow_empty_commit = ALLOW_EMPTY_COMMIT and not values.get("skip_empty_commit", False)

    try:
        git_timeout = int(values.get("git_timeout", GIT_TIMEOUT))
        http_timeout = int(values.get("http_timeout", HTTP_TIMEOUT))
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Timeouts must be whole seconds: {e}") from e

    search_pattern = _compile(str(values["search"]), "search")
    replacement = str(values["replace"])
    _check_replacement(search_pattern, replacement)

    return RunParameters(
        repository=normalize_repo_name(str(values["repo"]), values.get("org") or GITHUB_ORG),
        branch=str(values["branch"]),
        commit_message=str(values["commit_message"]),
        search_pattern=search_pattern,
        replacement=replacement,
        credentials=Credentials(username=str(values["username"]), token=str(values["token"])),
        author_email=str(values["email"]),
        author_name=values.get("author_name"),
        base_branch=values.get("base_branch", DEFAULT_BASE_BRANCH),
        pr_title=values.get("pr_title", DEFAULT_PR_TITLE),
        pr_body=values.get("pr_body", DEFAULT_PR_BODY),
        remote_url=values.get("remote_url"),
        clone_root=Path(values.get("clone_dir", CLONE_ROOT)),
        exclude_dir_pattern=_compile(str(values.get("exclude_dir", EXCLUDE_DIR_PATTERN)), "exclude-dir"),
        exclude_file_pattern=_compile(str(values.get("exclude_file", EXCLUDE_FILE_PATTERN)), "exclude-file"),
        on_error=on_error,
        allow_empty_commit=allow_empty_commit,
        git_timeout=git_timeout,
        http_timeout=http_timeout,
        api_url=values.get("api_url", GITHUB_API_URL),
    )


# ============================================================================
# FILE MODIFICATION FUNCTIONS
# ============================================================================

def walk_files(
    root: Path,
    exclude_dir_pattern: re.Pattern,
    exclude_file_pattern: re.Pattern,
    on_error: str = ON_ERROR
) -> Iterator[Path]:
    """
    Yield every regular file under root whose full path matches neither pattern.

    Both patterns are searched against the whole path string, root included.
    Symlinks and other non-regular entries are skipped. Entries that cannot be
    listed or stat'ed are skipped when on_error is "continue" and raise
    ReadFailed when it is "abort".
    """
    def _handle(error: OSError) -> None:
        location = error.filename or root
        if on_error == "abort":
            raise ReadFailed(location, error.strerror or str(error)) from error
        logger.debug(f"Skipping unreadable entry {location}: {error}")

    for dirpath, _dirnames, filenames in os.walk(str(root), onerror=_handle):
        for name in filenames:
            path = os.path.join(dirpath, name)
            try:
                mode = os.lstat(path).st_mode
            except OSError as e:
                _handle(e)
                continue
            if not stat.S_ISREG(mode):
                continue
            if exclude_dir_pattern.search(path) or exclude_file_pattern.search(path):
                continue
            yield Path(path)


def rewrite_file(file_path: Path, search_pattern: re.Pattern, replacement: str) -> bool:
    """
    Replace every match of search_pattern in a text file.

    The file is only written when the substituted text differs from the original.
    Line endings are preserved as-is.

    Returns:
        True if the file was written
    """
    try:
        with open(file_path, 'r', encoding='utf-8', newline='') as f:
            content = f.read()
    except (OSError, UnicodeDecodeError) as e:
        raise ReadFailed(file_path, str(e)) from e

    try:
        new_content = search_pattern.sub(replacement, content)
    except re.error as e:
        raise ConfigError(f"Invalid replacement {replacement!r}: {e}") from e

    if new_content == content:
        return False

    try:
        with open(file_path, 'w', encoding='utf-8', newline='') as f:
            f.write(new_content)
    except OSError as e:
        raise WriteFailed(file_path, str(e)) from e
    return True


def apply_replacements(
    repo_path: Path,
    search_pattern: re.Pattern,
    replacement: str,
    exclude_dir_pattern: re.Pattern,
    exclude_file_pattern: re.Pattern,
    on_error: str = ON_ERROR
) -> List[str]:
    """
    Rewrite every eligible file in the working copy.

    Returns:
        Modified files, relative to repo_path
    """
    repo_path = Path(repo_path)
    modified_files = []

    for file_path in walk_files(repo_path, exclude_dir_pattern, exclude_file_pattern, on_error):
        try:
            modified = rewrite_file(file_path, search_pattern, replacement)
        except FileIOFailed as e:
            if on_error == "abort":
                raise
            logger.warning(f"Skipping {e}")
            continue

        if modified:
            relative = str(file_path.relative_to(repo_path))
            modified_files.append(relative)
            logger.info(f"Modified: {relative}")

    return modified_files


# ============================================================================
# GIT OPERATIONS
# ============================================================================

AUTH_FAILURE_MARKERS = (
    "authentication failed",
    "could not read username",
    "could not read password",
    "permission to",
    "returned error: 401",
    "returned error: 403",
)


def clone_repository(
    remote_url: str,
    destination: Path,
    credentials: Optional[Credentials] = None,
    base_branch: Optional[str] = None,
    timeout: Optional[float] = GIT_TIMEOUT
) -> Path:
    """
    Clone remote_url into destination.

    Args:
        remote_url: URL (or local path) of the remote repository
        destination: Directory to clone into; must be missing or empty
        credentials: Username/token for HTTPS remotes
        base_branch: Branch to check out instead of the remote default
        timeout: Seconds before the clone is abandoned

    Returns:
        Path to the working copy
    """
    destination = Path(destination)
    if destination.exists() and (not destination.is_dir() or any(destination.iterdir())):
        raise CloneFailed(f"Destination {destination} already exists and is not empty")
    destination.parent.mkdir(parents=True, exist_ok=True)

    cmd = ["clone"]
    if base_branch:
        cmd.extend(["--branch", base_branch])
    cmd.extend([remote_url, str(destination)])

    logger.info(f"Cloning {remote_url}...")
    exit_code, _, stderr = run_git(cmd, credentials=credentials, timeout=timeout, error_cls=CloneFailed)
    if exit_code != 0:
        raise CloneFailed(f"Failed to clone {remote_url}: {stderr.strip()}")
    logger.info(f"Cloned into {destination}")
    return destination


def current_branch(repo_path: Path) -> str:
    """Name of the branch HEAD points at."""
    exit_code, stdout, stderr = run_git(
        ["symbolic-ref", "--short", "HEAD"], cwd=repo_path, error_cls=BranchError
    )
    if exit_code != 0:
        raise BranchError(f"HEAD in {repo_path} is not on a branch: {stderr.strip()}")
    return stdout.strip()


def create_and_checkout_branch(
    repo_path: Path,
    branch_name: str,
    credentials: Optional[Credentials] = None,
    timeout: Optional[float] = GIT_TIMEOUT
) -> str:
    """
    Create branch_name at the current HEAD commit and force-check it out.

    Re-runs are rejected: a branch that already exists locally or on origin
    raises BranchExists before anything is modified.

    Returns:
        The commit id the branch was created from
    """
    exit_code, head, _ = run_git(
        ["rev-parse", "--verify", "--quiet", "HEAD^{commit}"], cwd=repo_path, error_cls=BranchError
    )
    if exit_code != 0 or not head.strip():
        raise NoCommits(f"Repository at {repo_path} has no commits; cannot create {branch_name}")
    head = head.strip()

    exit_code, _, _ = run_git(
        ["rev-parse", "--verify", "--quiet", f"refs/heads/{branch_name}"], cwd=repo_path, error_cls=BranchError
    )
    if exit_code == 0:
        raise BranchExists(f"Branch {branch_name} already exists locally")

    # ls-remote returns 0 with empty output when the ref is missing
    exit_code, stdout_remote, stderr = run_git(
        ["ls-remote", "--heads", "origin", f"refs/heads/{branch_name}"],
        cwd=repo_path,
        credentials=credentials,
        timeout=timeout,
        error_cls=BranchError
    )
    if exit_code != 0:
        raise BranchError(f"Failed to query origin for {branch_name}: {stderr.strip()}")
    if stdout_remote.strip():
        raise BranchExists(f"Branch {branch_name} already exists on origin")

    logger.info(f"Creating branch {branch_name} from {head[:12]}")
    exit_code, _, stderr = run_git(["checkout", "--force", "-b", branch_name], cwd=repo_path, error_cls=BranchError)
    if exit_code != 0:
        raise BranchError(f"Failed to create branch {branch_name}: {stderr.strip()}")
    return head


def commit_all(
    repo_path: Path,
    message: str,
    author_name: str,
    author_email: str,
    allow_empty: bool = ALLOW_EMPTY_COMMIT
) -> str:
    """
    Stage everything in the working copy and commit it on top of HEAD.

    With allow_empty (the default) a commit is created even when nothing
    changed; otherwise NothingToCommit is raised.

    Returns:
        The new commit id
    """
    if not author_name or not author_email:
        raise IdentityMissing("Commit author name and email are both required")

    identity = {
        "GIT_AUTHOR_NAME": author_name,
        "GIT_AUTHOR_EMAIL": author_email,
        "GIT_COMMITTER_NAME": author_name,
        "GIT_COMMITTER_EMAIL": author_email,
    }

    logger.info("Staging changes...")
    exit_code, _, stderr = run_git(["add", "-A"], cwd=repo_path, error_cls=CommitFailed)
    if exit_code != 0:
        raise CommitFailed(f"Failed to stage changes: {stderr.strip()}")

    _, stdout, _ = run_git(["status", "--porcelain"], cwd=repo_path, error_cls=CommitFailed)
    if not stdout.strip():
        if not allow_empty:
            raise NothingToCommit("No changes to commit")
        logger.info("No changes to commit, creating an empty commit")

    logger.info(f"Committing changes: {message}")
    cmd = ["-c", "commit.gpgsign=false", "commit", "--no-verify", "--quiet", "-m", message]
    if allow_empty:
        cmd.append("--allow-empty")
    exit_code, _, stderr = run_git(cmd, cwd=repo_path, env_extra=identity, error_cls=CommitFailed)
    if exit_code != 0:
        raise CommitFailed(f"Failed to commit: {stderr.strip()}")

    exit_code, stdout, stderr = run_git(["rev-parse", "HEAD"], cwd=repo_path, error_cls=CommitFailed)
    if exit_code != 0:
        raise CommitFailed(f"Commit created but HEAD is unreadable: {stderr.strip()}")
    return stdout.strip()


def push_branch(
    repo_path: Path,
    branch_name: str,
    credentials: Optional[Credentials] = None,
    timeout: Optional[float] = GIT_TIMEOUT
) -> None:
    """
    Push refs/heads/<branch> to the same ref on origin. Never forced, never retried.
    """
    refspec = f"refs/heads/{branch_name}:refs/heads/{branch_name}"
    logger.info(f"Pushing branch {branch_name} to origin...")
    exit_code, _, stderr = run_git(
        ["push", "origin", refspec],
        cwd=repo_path,
        credentials=credentials,
        timeout=timeout,
        error_cls=PushFailed
    )
    if exit_code == 0:
        return

    detail = stderr.strip()
    lowered = detail.lower()
    if "[rejected]" in lowered or "[remote rejected]" in lowered or "non-fast-forward" in lowered:
        raise PushRejected(f"origin rejected {branch_name}: {detail}")
    if any(marker in lowered for marker in AUTH_FAILURE_MARKERS):
        raise AuthFailed(f"Authentication failed pushing {branch_name}: {detail}")
    raise PushFailed(f"Failed to push {branch_name}: {detail}")


# ============================================================================
# GITHUB OPERATIONS
# ============================================================================

def create_pull_request(
    repo: str,
    head: str,
    base: str,
    title: str,
    body: str,
    token: str,
    api_url: str = GITHUB_API_URL,
    timeout: Optional[float] = HTTP_TIMEOUT
) -> str:
    """
    Open a pull request via the GitHub REST API.

    Args:
        repo: Repository identifier (owner/repo)
        head: Branch with the changes
        base: Branch the PR merges into
        title: PR title
        body: PR body
        token: GitHub token, sent as a bearer token
        api_url: REST API root
        timeout: Seconds before the request is abandoned

    Returns:
        The PR's html_url (empty if GitHub did not return one)
    """
    url = f"{api_url.rstrip('/')}/repos/{repo}/pulls"
    headers = {
        "Authorization": f"Bearer {token}",
        "Accept": "application/vnd.github+json",
        "User-Agent": "repo-replace-pr",
    }
    pr_data = {
        "title": title,
        "body": body,
        "head": head,
        "base": base,
    }

    logger.info(f"Creating pull request for {repo} ({head} -> {base})...")
    try:
        response = requests.post(url, headers=headers, json=pr_data, timeout=timeout)
    except requests.RequestException as e:
        raise NetworkFailed(f"Failed to reach {url}: {e}") from e

    if not 200 <= response.status_code < 300:
        raise ApiRejected(response.status_code, response.text)

    try:
        data = response.json()
    except ValueError:
        data = {}
    pr_url = data.get("html_url", "") if isinstance(data, dict) else ""
    logger.info(f"Successfully created PR for {repo}: {pr_url}")
    return pr_url


# ============================================================================
# MAIN PROCESSING FUNCTION
# ============================================================================

TOTAL_STEPS = 6


def _run_step(step_num: int, label: str, func, *args, **kwargs):
    step_progress(step_num, TOTAL_STEPS, label, "...")
    try:
        value = func(*args, **kwargs)
    except ReplacePrError:
        step_progress(step_num, TOTAL_STEPS, label, "✗ failed")
        raise
    step_progress(step_num, TOTAL_STEPS, label, "✓")
    return value


def process_repository(params: RunParameters, dry_run: bool = False) -> Dict[str, Any]:
    """
    Process the repository: clone, branch, rewrite, commit, push, and create PR.

    The first failing step raises and nothing already done is undone: a failed
    push leaves the commit and the clone on disk for inspection.

    Returns:
        Dictionary with processing results
    """
    result: Dict[str, Any] = {
        "repo": params.repository,
        "repo_path": params.repo_path,
        "status": "unknown",
        "modified_files": [],
        "commit": None,
        "pr_url": None,
    }

    logger.info("")
    logger.info(f"  ┌─ {params.repository}")

    # Step 1: Clone
    repo_path = _run_step(
        1, "Clone", clone_repository,
        params.clone_url, params.repo_path, params.credentials, params.base_branch, params.git_timeout
    )
    base_branch = params.base_branch or current_branch(repo_path)

    # Step 2: Branch
    _run_step(2, "Branch", create_and_checkout_branch, repo_path, params.branch, params.credentials, params.git_timeout)

    # Step 3: Changes
    modified_files = _run_step(
        3, "Changes", apply_replacements,
        repo_path,
        params.search_pattern,
        params.replacement,
        params.exclude_dir_pattern,
        params.exclude_file_pattern,
        params.on_error
    )
    result["modified_files"] = modified_files
    logger.info(f"      {len(modified_files)} file(s) modified")

    if dry_run:
        logger.info(f"[DRY RUN] Would commit with message: {params.commit_message}")
        logger.info(f"[DRY RUN] Would push branch {params.branch} to origin")
        logger.info(f"[DRY RUN] Would create PR {params.branch} -> {base_branch} for {params.repository}")
        result["status"] = "dry_run"
        logger.info("  └─ Dry run complete")
        return result

    # Step 4: Commit
    result["commit"] = _run_step(
        4, "Commit", commit_all,
        repo_path, params.commit_message, params.committer_name, params.author_email, params.allow_empty_commit
    )

    # Step 5: Push
    _run_step(5, "Push", push_branch, repo_path, params.branch, params.credentials, params.git_timeout)

    # Step 6: PR
    result["pr_url"] = _run_step(
        6, "PR", create_pull_request,
        params.repository,
        params.branch,
        base_branch,
        params.pr_title,
        params.pr_body,
        params.credentials.token,
        params.api_url,
        params.http_timeout
    )
    logger.info(f"      {result['pr_url']}")
    result["status"] = "success"
    logger.info("  └─ Done")
    return result


def cleanup_working_copy(repo_path: Path) -> None:
    logger.info(f"Cleaning up clone directory: {repo_path}")
    shutil.rmtree(repo_path, ignore_errors=True)


# ============================================================================
# MAIN FUNCTION
# ============================================================================

def main(argv: Optional[Sequence[str]] = None) -> None:
    """Main entry point."""
    load_dotenv(find_dotenv(usecwd=True))
    args = parse_args(argv)

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    if args.dry_run:
        logger.info("=" * 60)
        logger.info("DRY RUN MODE - Nothing will be committed, pushed or opened")
        logger.info("=" * 60)

    try:
        params = build_run_parameters(args, os.environ)
        result = process_repository(params, dry_run=args.dry_run)
    except ReplacePrError as e:
        logger.error(f"✗ {e}")
        sys.exit(1)

    logger.info("")
    logger.info("=" * 60)
    logger.info("SUMMARY REPORT")
    logger.info("=" * 60)
    logger.info(f"Repository: {result['repo']}")
    logger.info(f"Status: {result['status']}")
    if result["modified_files"]:
        logger.info(f"Modified files: {', '.join(result['modified_files'])}")
    else:
        logger.info("Modified files: none")
    if result["pr_url"]:
        logger.info(f"PR: {result['pr_url']}")

    if args.cleanup:
        cleanup_working_copy(result["repo_path"])


if __name__ == "__main__":
    main()
