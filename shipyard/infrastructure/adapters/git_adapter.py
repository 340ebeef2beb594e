"""
Git Adapter

Architectural Intent:
- Infrastructure adapter implementing RepositoryPort on top of the git CLI
- Each operation is one or more subprocess calls run in the default executor
- Failures are classified into the pipeline error taxonomy: a rejected push
  becomes PushRejected, anything that looks like a network failure becomes
  RemoteUnreachable, and the rest surfaces as a PipelineError with git's stderr
"""

import asyncio
import logging
import os
import subprocess
from typing import Sequence

from shipyard.domain.errors import PipelineError, PushRejected, RemoteUnreachable
from shipyard.domain.ports.repository_port import RepositoryPort

logger = logging.getLogger(__name__)

_REJECTED_MARKERS = (
    "[rejected]",
    "non-fast-forward",
    "fetch first",
    "failed to push some refs",
)
_NETWORK_MARKERS = (
    "could not resolve host",
    "could not read from remote repository",
    "connection refused",
    "connection timed out",
    "network is unreachable",
    "unable to access",
    "does not appear to be a git repository",
)


class GitCommandError(PipelineError):
    reason = "GitCommandError"


class GitAdapter(RepositoryPort):
    def __init__(
        self,
        author_name: str = "shipyard",
        author_email: str = "shipyard@localhost",
        remote: str = "origin",
        git_binary: str = "git",
    ) -> None:
        self.author_name = author_name
        self.author_email = author_email
        self.remote = remote
        self.git_binary = git_binary

    async def exists(self, workspace: str) -> bool:
        return os.path.isdir(os.path.join(workspace, ".git"))

    async def clone(self, url: str, workspace: str, branch: str) -> None:
        parent = os.path.dirname(os.path.abspath(workspace))
        os.makedirs(parent, exist_ok=True)
        await self._git(None, "clone", "--branch", branch, url, workspace)
        logger.info("Cloned %s@%s into %s", url, branch, workspace)

    async def pull(self, workspace: str, branch: str) -> None:
        await self._git(workspace, "fetch", self.remote, branch)
        await self._git(workspace, "checkout", branch)
        await self._git(workspace, "merge", "--ff-only", f"{self.remote}/{branch}")

    async def reset_to_remote(self, workspace: str, branch: str) -> None:
        await self._git(workspace, "fetch", self.remote, branch)
        await self._git(workspace, "reset", "--hard", f"{self.remote}/{branch}")
        logger.info("Reset %s to %s/%s", workspace, self.remote, branch)

    async def commit(self, workspace: str, files: Sequence[str], message: str) -> str:
        await self._git(workspace, "add", "--", *files)
        await self._git(
            workspace,
            "-c",
            f"user.name={self.author_name}",
            "-c",
            f"user.email={self.author_email}",
            "commit",
            "-m",
            message,
        )
        return await self.head(workspace)

    async def push(self, workspace: str, branch: str) -> None:
        await self._git(workspace, "push", self.remote, f"HEAD:{branch}")

    async def head(self, workspace: str) -> str:
        return (await self._git(workspace, "rev-parse", "HEAD")).strip()

    async def _git(self, workspace, *args: str) -> str:
        cmd = [self.git_binary, *args]

        def _run() -> str:
            try:
                result = subprocess.run(
                    cmd,
                    cwd=workspace,
                    capture_output=True,
                    text=True,
                    check=True,
                    env={**os.environ, "GIT_TERMINAL_PROMPT": "0"},
                )
                return result.stdout
            except FileNotFoundError:
                raise GitCommandError(f"'{self.git_binary}' not found on PATH")
            except subprocess.CalledProcessError as e:
                raise self._classify(args[0], e.stderr or "") from e

        logger.debug("git %s (cwd=%s)", " ".join(args), workspace)
        return await asyncio.get_running_loop().run_in_executor(None, _run)

    @staticmethod
    def _classify(command: str, stderr: str) -> PipelineError:
        text = stderr.lower()
        message = f"git {command} failed: {stderr.strip()}"
        if command == "push" and any(m in text for m in _REJECTED_MARKERS):
            return PushRejected(message)
        if any(m in text for m in _NETWORK_MARKERS):
            return RemoteUnreachable(message)
        return GitCommandError(message)
