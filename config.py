#!/usr/bin/env python3
"""
Configuration file for Repo Replace PR

This file contains the default settings for the search/replace PR script.
Modify the values below to customize the behavior of the script.
"""

# ============================================================================
# GITHUB CONFIGURATION
# ============================================================================

# Organization used when --repo is given without an owner (e.g. "my-service")
GITHUB_ORG = "republik-io"

# REST API root used for pull request creation
GITHUB_API_URL = "https://api.github.com"

# Clone URL template; {owner} and {repo} are filled from the repository identifier
GIT_URL_TEMPLATE = "https://github.com/{owner}/{repo}.git"

# ============================================================================
# SEARCH / REPLACE CONFIGURATION
# ============================================================================

# Regex tested against the full path of every file; matching files are skipped
EXCLUDE_DIR_PATTERN = r"node_modules|target|\.git"
EXCLUDE_FILE_PATTERN = r"\.lock|\.log|\.json|\.md"

# What to do when a file cannot be read or written during the rewrite:
# "continue" logs a warning and moves on, "abort" stops the run
ON_ERROR = "continue"

# ============================================================================
# GIT & PR CONFIGURATION
# ============================================================================

# Branch the work is cloned from and the PR is opened against
DEFAULT_BASE_BRANCH = "main"

# PR title and body
DEFAULT_PR_TITLE = "Map migrated tag adjustements"
DEFAULT_PR_BODY = "Use mig prefix for all aws map migrated tags"

# Commit even when the rewrite produced no changes (set False to fail instead)
ALLOW_EMPTY_COMMIT = True

# Clone directory; repositories are cloned into CLONE_ROOT/<repo>
CLONE_ROOT = "../repos"

# Timeouts in seconds for git network commands and the GitHub API
GIT_TIMEOUT = 300
HTTP_TIMEOUT = 30

# ============================================================================
# CONFIGURATION NOTES
# ============================================================================
#
# Required values (CLI flag, environment variable or params file key):
# - repository:     -r/--repo                  (params: repo)
# - branch:         -b/--branch                (params: branch)
# - commit message: -m/--commit-message        (params: commit_message)
# - search pattern: --search  / SEARCH_PATTERN (params: search)
# - replacement:    --replace / REPLACE_WITH   (params: replace)
# - token:          GITHUB_PAT                 (params: token)
# - username:       GITHUB_USERNAME            (params: username)
# - author email:   GITHUB_EMAIL               (params: email)
#
# Environment variables may also be placed in a .env file in the working directory.
#
# Precedence (later wins): config.py -> --params-file (YAML) -> environment -> CLI flags
#
# Replacement strings use Python regex syntax for group references: \1 or \g<name>
