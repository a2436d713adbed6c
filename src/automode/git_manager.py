"""Git queries for the orchestration core.

Only two questions are ever asked of git: which local branches exist, and
which one is checked out.
"""

import asyncio
import subprocess
from pathlib import Path
from typing import Optional


DEFAULT_GIT_TIMEOUT = 30


class GitBranchOracle:
    """Answers branch queries by running the git CLI in the project directory."""

    def __init__(self, git_binary: str = "git", timeout: int = DEFAULT_GIT_TIMEOUT):
        self.git_binary = git_binary
        self.timeout = timeout

    def _run(self, project_path: str, *args: str, check: bool = True) -> subprocess.CompletedProcess:
        """Run a git command."""
        return subprocess.run(
            [self.git_binary, *args],
            cwd=Path(project_path),
            capture_output=True,
            text=True,
            check=check,
            timeout=self.timeout,
        )

    def is_git_repo(self, project_path: str) -> bool:
        """Check if the project is a git repository."""
        try:
            result = self._run(project_path, "rev-parse", "--git-dir", check=False)
        except (OSError, subprocess.TimeoutExpired):
            return False
        return result.returncode == 0

    def list_branches_sync(self, project_path: str) -> set[str]:
        """Local branch names.

        Raises:
            subprocess.CalledProcessError: If git fails (e.g. not a repository)
        """
        result = self._run(
            project_path, "for-each-ref", "--format=%(refname:short)", "refs/heads/"
        )
        return {line.strip() for line in result.stdout.splitlines() if line.strip()}

    def current_branch_sync(self, project_path: str) -> Optional[str]:
        """Checked-out branch name, or None when HEAD is detached."""
        result = self._run(project_path, "branch", "--show-current", check=False)
        if result.returncode != 0:
            return None
        return result.stdout.strip() or None

    async def list_branches(self, project_path: str) -> set[str]:
        return await asyncio.to_thread(self.list_branches_sync, project_path)

    async def current_branch(self, project_path: str) -> Optional[str]:
        return await asyncio.to_thread(self.current_branch_sync, project_path)
