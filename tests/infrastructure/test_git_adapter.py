"""Tests for GitAdapter with subprocess mocked."""

import subprocess
import pytest
from unittest.mock import MagicMock, patch

from shipyard.domain.errors import PushRejected, RemoteUnreachable
from shipyard.infrastructure.adapters.git_adapter import GitAdapter, GitCommandError


def _completed(stdout=""):
    result = MagicMock()
    result.stdout = stdout
    return result


def _failure(cmd, stderr):
    return subprocess.CalledProcessError(128, cmd, stderr=stderr)


class TestGitAdapter:
    @pytest.mark.asyncio
    async def test_exists(self, tmp_path):
        adapter = GitAdapter()
        assert await adapter.exists(str(tmp_path)) is False
        (tmp_path / ".git").mkdir()
        assert await adapter.exists(str(tmp_path)) is True

    @pytest.mark.asyncio
    async def test_clone_command(self, tmp_path):
        workspace = str(tmp_path / "ws")
        with patch("subprocess.run", return_value=_completed()) as run:
            await GitAdapter().clone("git@x:org/cfg.git", workspace, "main")

        cmd = run.call_args.args[0]
        assert cmd == ["git", "clone", "--branch", "main", "git@x:org/cfg.git", workspace]
        assert run.call_args.kwargs["env"]["GIT_TERMINAL_PROMPT"] == "0"

    @pytest.mark.asyncio
    async def test_pull_is_fast_forward_only(self):
        with patch("subprocess.run", return_value=_completed()) as run:
            await GitAdapter().pull("/ws", "main")

        commands = [c.args[0][1:] for c in run.call_args_list]
        assert commands == [
            ["fetch", "origin", "main"],
            ["checkout", "main"],
            ["merge", "--ff-only", "origin/main"],
        ]
        assert all(c.kwargs["cwd"] == "/ws" for c in run.call_args_list)

    @pytest.mark.asyncio
    async def test_commit_sets_identity_and_returns_head(self):
        outputs = [_completed(), _completed(), _completed("abc123\n")]
        with patch("subprocess.run", side_effect=outputs) as run:
            sha = await GitAdapter("bot", "bot@example.com").commit(
                "/ws", ["k8s/deployment.yaml"], "Update image"
            )

        assert sha == "abc123"
        add, commit, _ = [c.args[0] for c in run.call_args_list]
        assert add == ["git", "add", "--", "k8s/deployment.yaml"]
        assert "user.name=bot" in commit
        assert "user.email=bot@example.com" in commit
        assert commit[-2:] == ["-m", "Update image"]

    @pytest.mark.asyncio
    async def test_reset_to_remote(self):
        with patch("subprocess.run", return_value=_completed()) as run:
            await GitAdapter(remote="upstream").reset_to_remote("/ws", "main")

        assert run.call_args.args[0] == ["git", "reset", "--hard", "upstream/main"]

    @pytest.mark.asyncio
    async def test_rejected_push(self):
        stderr = " ! [rejected]        HEAD -> main (fetch first)\nerror: failed to push some refs"
        with patch("subprocess.run", side_effect=_failure(["git"], stderr)):
            with pytest.raises(PushRejected):
                await GitAdapter().push("/ws", "main")

    @pytest.mark.asyncio
    async def test_network_failure(self):
        stderr = "ssh: Could not resolve host: example.com\nfatal: Could not read from remote repository."
        with patch("subprocess.run", side_effect=_failure(["git"], stderr)):
            with pytest.raises(RemoteUnreachable):
                await GitAdapter().pull("/ws", "main")

    @pytest.mark.asyncio
    async def test_other_failure(self):
        with patch("subprocess.run", side_effect=_failure(["git"], "fatal: bad revision")):
            with pytest.raises(GitCommandError, match="bad revision"):
                await GitAdapter().head("/ws")

    @pytest.mark.asyncio
    async def test_missing_binary(self):
        with patch("subprocess.run", side_effect=FileNotFoundError()):
            with pytest.raises(GitCommandError, match="not found"):
                await GitAdapter(git_binary="git-missing").head("/ws")
