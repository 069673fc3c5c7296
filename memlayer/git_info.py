from __future__ import annotations

import os
import subprocess
from collections.abc import Sequence
from pathlib import Path

UNKNOWN_PROJECT = "unknown"


def run_command(cmd: Sequence[str], cwd: str | None = None) -> str:
    """Run a command and return stripped stdout, or "" when it fails or is missing."""

    env = dict(os.environ, GIT_TERMINAL_PROMPT="0")
    try:
        out = subprocess.check_output(
            cmd, cwd=cwd, stderr=subprocess.DEVNULL, text=True, env=env
        )
        return out.strip()
    except (subprocess.CalledProcessError, FileNotFoundError, NotADirectoryError):
        return ""


def parse_git_remote(url: str) -> str:
    """Normalize a remote URL to ``owner/repo``.

    Handles scp-style ``git@host:owner/repo.git`` and ``scheme://host/owner/repo``
    forms; anything else is returned unchanged apart from a trailing ``.git``.
    """

    url = url.strip()
    if url.endswith(".git"):
        url = url[: -len(".git")]
    if url.startswith("git@") and ":" in url:
        return url.split(":", 1)[1]
    if "://" in url:
        parts = url.split("://", 1)[1].split("/")
        if len(parts) >= 3:
            return f"{parts[-2]}/{parts[-1]}"
    return url


def detect_project(explicit: str | None = None, cwd: str | None = None) -> str:
    if explicit and explicit.strip():
        return explicit.strip()
    env_project = os.getenv("MEMLAYER_PROJECT", "").strip()
    if env_project:
        return env_project
    remote = run_command(["git", "remote", "get-url", "origin"], cwd=cwd)
    if remote:
        project = parse_git_remote(remote)
        if project:
            return project
    repo_root = run_command(["git", "rev-parse", "--show-toplevel"], cwd=cwd)
    if repo_root and Path(repo_root).name:
        return Path(repo_root).name
    try:
        name = Path(cwd or os.getcwd()).name
    except OSError:
        name = ""
    return name or UNKNOWN_PROJECT
