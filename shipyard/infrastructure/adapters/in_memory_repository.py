"""
In-Memory Repository Adapter

Architectural Intent:
- RepositoryPort backed by an in-process remote instead of a git server
- Workspaces are real directories so the Tag Propagator reads and writes actual
  files; only history and the remote live in memory
- The remote enforces optimistic concurrency exactly like a git server: a push
  whose base revision is not the remote head is rejected

Used by the `memory` VCS backend and by tests that inject concurrent writers.
"""

import hashlib
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Sequence

from shipyard.domain.errors import PushRejected, RemoteUnreachable
from shipyard.domain.ports.repository_port import RepositoryPort

logger = logging.getLogger(__name__)

EMPTY_REVISION = "0" * 40


@dataclass(frozen=True)
class Revision:
    sha: str
    parent: str
    message: str
    files: dict[str, str] = field(default_factory=dict)


class InMemoryRemote:
    """A branch history shared by every workspace cloned from it."""

    def __init__(self, files: Optional[dict[str, str]] = None) -> None:
        self.history: list[Revision] = []
        self.unreachable_calls = 0
        if files:
            self.write(files, "Initial commit")

    @property
    def head(self) -> str:
        return self.history[-1].sha if self.history else EMPTY_REVISION

    @property
    def files(self) -> dict[str, str]:
        return dict(self.history[-1].files) if self.history else {}

    def read(self, path: str) -> Optional[str]:
        return self.files.get(path)

    def write(self, changes: dict[str, str], message: str) -> str:
        """Commits directly on the remote, as another writer would."""
        files = {**self.files, **changes}
        sha = _revision_sha(self.head, message, files)
        self.history.append(Revision(sha, self.head, message, files))
        return sha

    def fail_next(self, calls: int = 1) -> None:
        """Makes the next `calls` remote operations raise RemoteUnreachable."""
        self.unreachable_calls = calls

    def _check_reachable(self, operation: str) -> None:
        if self.unreachable_calls > 0:
            self.unreachable_calls -= 1
            raise RemoteUnreachable(f"{operation}: remote unreachable")


@dataclass
class _Checkout:
    url: str
    branch: str
    base: str
    head: str
    pending: dict[str, str] = field(default_factory=dict)
    message: str = ""


class InMemoryRepositoryAdapter(RepositoryPort):
    def __init__(self, remotes: Optional[dict[str, InMemoryRemote]] = None) -> None:
        self.remotes: dict[str, InMemoryRemote] = dict(remotes or {})
        self._checkouts: dict[str, _Checkout] = {}

    def remote(self, url: str) -> InMemoryRemote:
        if url not in self.remotes:
            self.remotes[url] = InMemoryRemote()
        return self.remotes[url]

    async def exists(self, workspace: str) -> bool:
        return _key(workspace) in self._checkouts and os.path.isdir(workspace)

    async def clone(self, url: str, workspace: str, branch: str) -> None:
        remote = self.remote(url)
        remote._check_reachable("clone")
        self._checkouts[_key(workspace)] = _Checkout(url, branch, remote.head, remote.head)
        _materialize(workspace, remote.files)
        logger.info("Cloned %s@%s into %s", url, branch, workspace)

    async def pull(self, workspace: str, branch: str) -> None:
        checkout = self._checkout(workspace)
        remote = self.remote(checkout.url)
        remote._check_reachable("pull")
        if checkout.pending:
            # ff-only: unpushed local work stays until a reset
            return
        checkout.base = checkout.head = remote.head
        _materialize(workspace, remote.files)

    async def reset_to_remote(self, workspace: str, branch: str) -> None:
        checkout = self._checkout(workspace)
        remote = self.remote(checkout.url)
        remote._check_reachable("fetch")
        remote_files = remote.files
        for path in checkout.pending:
            # files the discarded commit added, as git reset --hard removes them
            if path not in remote_files:
                (Path(workspace) / path).unlink(missing_ok=True)
        checkout.base = checkout.head = remote.head
        checkout.pending = {}
        checkout.message = ""
        _materialize(workspace, remote.files)

    async def commit(self, workspace: str, files: Sequence[str], message: str) -> str:
        checkout = self._checkout(workspace)
        for path in files:
            checkout.pending[path] = (Path(workspace) / path).read_text()
        checkout.message = message
        checkout.head = _revision_sha(checkout.base, message, checkout.pending)
        return checkout.head

    async def push(self, workspace: str, branch: str) -> None:
        checkout = self._checkout(workspace)
        remote = self.remote(checkout.url)
        remote._check_reachable("push")
        if not checkout.pending:
            return
        if remote.head != checkout.base:
            raise PushRejected(
                f"push to {checkout.url}@{branch} rejected: remote is at "
                f"{remote.head[:8]}, local base is {checkout.base[:8]}"
            )
        files = {**remote.files, **checkout.pending}
        remote.history.append(
            Revision(checkout.head, checkout.base, checkout.message, files)
        )
        checkout.base = checkout.head
        checkout.pending = {}

    async def head(self, workspace: str) -> str:
        return self._checkout(workspace).head

    def _checkout(self, workspace: str) -> _Checkout:
        try:
            return self._checkouts[_key(workspace)]
        except KeyError:
            raise FileNotFoundError(f"{workspace} is not a cloned workspace") from None


def _key(workspace: str) -> str:
    return os.path.abspath(workspace)


def _revision_sha(parent: str, message: str, files: dict[str, str]) -> str:
    digest = hashlib.sha1(parent.encode())
    digest.update(message.encode())
    for path in sorted(files):
        digest.update(path.encode())
        digest.update(files[path].encode())
    return digest.hexdigest()


def _materialize(workspace: str, files: dict[str, str]) -> None:
    root = Path(workspace)
    root.mkdir(parents=True, exist_ok=True)
    for path, text in files.items():
        target = root / path
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(text)
