"""
Version-Control Client

Architectural Intent:
- Shared utility for every write to the configuration repository
- sync(): clone when the workspace is missing, pull otherwise
- commit_and_push(): apply file mutations, commit, push; on a non-fast-forward
  push, rebase onto the remote head and reapply the same mutations
- The optimistic retry loop keeps writers in different workspaces or processes
  from losing each other's changes; writers sharing one workspace also hold
  workspace_lock() from sync() until the push
- A commit that could not be pushed is discarded, so a workspace is never left
  ahead of the remote

Retry Policy:
- RemoteUnreachable: exponential backoff, `sync_attempts` tries (default 3)
- PushRejected: rebase + reapply, `push_attempts` tries (default 5), then
  ConcurrentUpdateConflict
"""

import asyncio
import logging
from pathlib import Path
from typing import Awaitable, Callable, Mapping, TypeVar

from shipyard.domain.errors import (
    ConcurrentUpdateConflict,
    PushRejected,
    RemoteUnreachable,
)
from shipyard.domain.ports.repository_port import (
    CommitResult,
    RepositoryPort,
    RepositoryState,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

# old file content -> new file content; must be pure so it can be reapplied
FileMutation = Callable[[str], str]


class VersionControlClient:
    def __init__(
        self,
        repository: RepositoryPort,
        branch: str = "main",
        sync_attempts: int = 3,
        push_attempts: int = 5,
        backoff_seconds: float = 1.0,
    ):
        if sync_attempts < 1 or push_attempts < 1:
            raise ValueError("attempt counts must be at least 1")
        self.repository = repository
        self.branch = branch
        self.sync_attempts = sync_attempts
        self.push_attempts = push_attempts
        self.backoff_seconds = backoff_seconds
        self._locks: dict[str, asyncio.Lock] = {}
        # workspaces holding a commit that was neither pushed nor discarded
        self._unpushed: set[str] = set()

    def workspace_lock(self, workspace: str) -> asyncio.Lock:
        """Lock serializing every sync, read and write of one workspace."""
        key = _key(workspace)
        if key not in self._locks:
            self._locks[key] = asyncio.Lock()
        return self._locks[key]

    async def sync(self, repo_url: str, workspace: str) -> RepositoryState:
        async def _sync() -> RepositoryState:
            if await self.repository.exists(workspace):
                if _key(workspace) in self._unpushed:
                    await self.repository.reset_to_remote(workspace, self.branch)
                    self._unpushed.discard(_key(workspace))
                else:
                    await self.repository.pull(workspace, self.branch)
                cloned = False
            else:
                await self.repository.clone(repo_url, workspace, self.branch)
                cloned = True
            head = await self.repository.head(workspace)
            return RepositoryState(
                workspace=workspace, branch=self.branch, head=head, cloned=cloned
            )

        state = await self._with_backoff(_sync, f"sync {repo_url}")
        logger.info("Synced %s into %s at %s", repo_url, workspace, state.head)
        return state

    async def commit_and_push(
        self,
        workspace: str,
        mutations: Mapping[str, FileMutation],
        message: str,
    ) -> CommitResult:
        if not mutations:
            raise ValueError("commit_and_push needs at least one file mutation")

        for attempt in range(1, self.push_attempts + 1):
            changed = self._apply_mutations(workspace, mutations)
            if not changed:
                logger.info("Nothing to commit in %s (attempt %d)", workspace, attempt)
                head = await self.repository.head(workspace)
                return CommitResult(committed=False, sha=head, attempts=attempt)

            self._unpushed.add(_key(workspace))
            try:
                sha = await self.repository.commit(workspace, changed, message)
                await self._with_backoff(
                    lambda: self.repository.push(workspace, self.branch),
                    f"push {workspace}",
                )
            except PushRejected as e:
                logger.warning(
                    "Push of %s rejected (attempt %d/%d): %s",
                    sha,
                    attempt,
                    self.push_attempts,
                    e,
                )
                await self._with_backoff(
                    lambda: self.repository.reset_to_remote(workspace, self.branch),
                    f"rebase {workspace}",
                )
                self._unpushed.discard(_key(workspace))
                continue
            except Exception:
                await self._discard_unpushed(workspace)
                raise

            self._unpushed.discard(_key(workspace))
            logger.info("Pushed %s (%s) on attempt %d", sha, ", ".join(changed), attempt)
            return CommitResult(
                committed=True, sha=sha, attempts=attempt, files=tuple(changed)
            )

        raise ConcurrentUpdateConflict(
            f"Push to {self.branch} still rejected after {self.push_attempts} attempts"
        )

    async def _discard_unpushed(self, workspace: str) -> None:
        try:
            await self.repository.reset_to_remote(workspace, self.branch)
        except RemoteUnreachable as e:
            # still marked; the next sync() resets instead of pulling
            logger.warning("Could not discard unpushed commit in %s: %s", workspace, e)
            return
        self._unpushed.discard(_key(workspace))
        logger.info("Discarded unpushed commit in %s", workspace)

    def _apply_mutations(
        self, workspace: str, mutations: Mapping[str, FileMutation]
    ) -> list[str]:
        changed = []
        for relative_path, mutate in mutations.items():
            path = Path(workspace) / relative_path
            old = path.read_text() if path.exists() else ""
            new = mutate(old)
            if new != old:
                path.parent.mkdir(parents=True, exist_ok=True)
                path.write_text(new)
                changed.append(relative_path)
        return changed

    async def _with_backoff(
        self, operation: Callable[[], Awaitable[T]], description: str
    ) -> T:
        delay = self.backoff_seconds
        last_error: RemoteUnreachable | None = None
        for attempt in range(1, self.sync_attempts + 1):
            try:
                return await operation()
            except RemoteUnreachable as e:
                last_error = e
                logger.warning(
                    "%s failed (attempt %d/%d): %s",
                    description,
                    attempt,
                    self.sync_attempts,
                    e,
                )
                if attempt < self.sync_attempts:
                    await asyncio.sleep(delay)
                    delay *= 2

        raise RemoteUnreachable(
            f"{description}: remote unreachable after {self.sync_attempts} attempts "
            f"({last_error})"
        ) from last_error


def _key(workspace: str) -> str:
    return str(Path(workspace).resolve())
