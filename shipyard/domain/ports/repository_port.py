"""
Repository Port

Architectural Intent:
- Port interface for low-level operations against a version-controlled repository
- The conflict-safe retry policy lives above this port, in the VersionControlClient
- Implemented by GitAdapter (git CLI) and InMemoryRepositoryAdapter (dry runs, tests)

Failure Contract:
- Network failures raise RemoteUnreachable
- A push that is not a fast-forward raises PushRejected
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Sequence


@dataclass(frozen=True)
class RepositoryState:
    """Local workspace state after a sync."""
    workspace: str
    branch: str
    head: str
    cloned: bool = False


@dataclass(frozen=True)
class CommitResult:
    """Outcome of commit_and_push. committed=False means nothing changed."""
    committed: bool
    sha: str = ""
    attempts: int = 0
    files: tuple[str, ...] = ()


class RepositoryPort(ABC):
    """
    Port interface for repository operations on a local workspace.
    """

    @abstractmethod
    async def exists(self, workspace: str) -> bool:
        """
        Returns True if the workspace already holds a clone.
        """
        pass

    @abstractmethod
    async def clone(self, url: str, workspace: str, branch: str) -> None:
        """
        Clones the remote branch into a new workspace.
        """
        pass

    @abstractmethod
    async def pull(self, workspace: str, branch: str) -> None:
        """
        Brings the workspace up to date with the remote branch.
        """
        pass

    @abstractmethod
    async def reset_to_remote(self, workspace: str, branch: str) -> None:
        """
        Fetches the remote and discards local commits not on the remote branch.
        """
        pass

    @abstractmethod
    async def commit(self, workspace: str, files: Sequence[str], message: str) -> str:
        """
        Stages the given files, commits them and returns the new commit id.
        """
        pass

    @abstractmethod
    async def push(self, workspace: str, branch: str) -> None:
        """
        Pushes the local branch head to the remote.
        """
        pass

    @abstractmethod
    async def head(self, workspace: str) -> str:
        """
        Returns the commit id of the local head.
        """
        pass
