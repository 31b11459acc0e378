"""Git integration via the git CLI."""

from __future__ import annotations

import subprocess
from pathlib import Path

import structlog

from cami.errors import GitError

log = structlog.get_logger()

UP_TO_DATE_MARKER = "Already up to date"


class GitClient:
    def __init__(self, executable: str = "git") -> None:
        self.executable = executable

    def clone(self, url: str, dest: Path) -> str:
        return self._git("clone", url, str(dest))

    def pull(self, repo: Path) -> str:
        return self._git("-C", str(repo), "pull")

    def status_porcelain(self, repo: Path) -> list[str]:
        """Uncommitted changes, one ``git status --porcelain`` line each."""
        stdout = self._git("-C", str(repo), "status", "--porcelain")
        return [line for line in stdout.splitlines() if line.strip()]

    def remote_url(self, repo: Path, remote: str = "origin") -> str:
        """URL of ``remote``, or an empty string when ``repo`` has none."""
        if not (repo / ".git").exists():
            return ""
        try:
            return self._git("-C", str(repo), "remote", "get-url", remote).strip()
        except GitError:
            return ""

    @staticmethod
    def is_up_to_date(pull_output: str) -> bool:
        return UP_TO_DATE_MARKER in pull_output

    def _git(self, *args: str) -> str:
        try:
            proc = subprocess.run(
                [self.executable, *args],
                capture_output=True,
                text=True,
                check=False,
            )
        except OSError as e:
            raise GitError(f"failed to run {self.executable}: {e}") from e

        if proc.returncode != 0:
            log.warning("git_error", args=args, stderr=proc.stderr.strip())
            detail = proc.stderr.strip() or proc.stdout.strip()
            raise GitError(f"git {' '.join(args)} failed: {detail}")
        return proc.stdout
