"""Unit tests for RepositoryCheckout.

git itself is replaced by a mock; these tests cover working directory
layout, the credential helper, failure unwinding and cleanup.
"""

import asyncio
import os
import stat
import time
from unittest.mock import AsyncMock, patch

import pytest

from src.mentionbot.core.checkout import (
    CheckoutError,
    RepositoryCheckout,
    git_host_url,
    sweep_stale_credential_helpers,
)

from tests.mentionbot.factories import INSTALLATION_TOKEN, build_context


def run_async(coro):
    return asyncio.run(coro)


@pytest.fixture
def checkout(settings):
    return RepositoryCheckout(settings)


class TestGitHostUrl:
    @pytest.mark.parametrize(
        "api_url,expected",
        [
            ("https://api.github.com", "https://github.com"),
            ("https://api.github.com/", "https://github.com"),
            ("https://ghe.example.com/api/v3", "https://ghe.example.com"),
            ("https://git.internal", "https://git.internal"),
        ],
    )
    def test_mapping(self, api_url, expected):
        assert git_host_url(api_url) == expected


class TestCheckout:
    def test_successful_checkout_layout(self, checkout, settings):
        ctx = build_context(delivery_id="abc-123")

        with patch.object(RepositoryCheckout, "_git", new_callable=AsyncMock) as git:
            result = run_async(checkout.checkout(ctx, INSTALLATION_TOKEN))

        assert os.path.isdir(result.work_dir)
        assert os.path.dirname(result.work_dir) == settings.clone_base_dir
        assert os.path.basename(result.work_dir).startswith("abc-123-")

        helper = f"{result.work_dir}.cred.sh"
        assert stat.S_IMODE(os.stat(helper).st_mode) == 0o700
        with open(helper) as f:
            assert f"password={INSTALLATION_TOKEN}" in f.read()

        clone_args = git.await_args_list[0].args
        assert clone_args[0] == "clone"
        assert "--branch=main" in clone_args
        assert "https://github.com/acme/widgets.git" in clone_args
        assert all(INSTALLATION_TOKEN not in arg for call in git.await_args_list for arg in call.args)

    def test_pr_checks_out_head_branch(self, checkout):
        ctx = build_context(is_pr=True, head_branch="feature/x", base_branch="main")

        with patch.object(RepositoryCheckout, "_git", new_callable=AsyncMock) as git:
            run_async(checkout.checkout(ctx, INSTALLATION_TOKEN))

        assert "--branch=feature/x" in git.await_args_list[0].args

    def test_bot_identity_configured(self, checkout):
        with patch.object(RepositoryCheckout, "_git", new_callable=AsyncMock) as git:
            run_async(checkout.checkout(build_context(), INSTALLATION_TOKEN))

        config_calls = [call.args[2:] for call in git.await_args_list[1:]]
        assert ("config", "user.name", "mention-bot[bot]") in config_calls
        assert (
            "config",
            "user.email",
            "12345+mention-bot[bot]@users.noreply.github.com",
        ) in config_calls

    def test_cleanup_removes_workdir_and_helper_once(self, checkout):
        with patch.object(RepositoryCheckout, "_git", new_callable=AsyncMock):
            result = run_async(checkout.checkout(build_context(), INSTALLATION_TOKEN))

        run_async(result.cleanup())
        run_async(result.cleanup())

        assert not os.path.exists(result.work_dir)
        assert not os.path.exists(f"{result.work_dir}.cred.sh")

    def test_failed_clone_removes_partial_state(self, checkout, settings):
        with patch.object(
            RepositoryCheckout,
            "_git",
            new_callable=AsyncMock,
            side_effect=CheckoutError("git clone failed with exit code 128", returncode=128),
        ):
            with pytest.raises(CheckoutError):
                run_async(checkout.checkout(build_context(), INSTALLATION_TOKEN))

        assert os.listdir(settings.clone_base_dir) == []

    def test_missing_branch_raises(self, checkout, settings):
        ctx = build_context(is_pr=True, head_branch=None)

        with patch.object(RepositoryCheckout, "_git", new_callable=AsyncMock) as git:
            with pytest.raises(CheckoutError):
                run_async(checkout.checkout(ctx, INSTALLATION_TOKEN))

        git.assert_not_awaited()
        assert os.listdir(settings.clone_base_dir) == []


class TestGitCommand:
    def test_git_failure_message_has_no_stderr(self, checkout):
        process = AsyncMock()
        process.returncode = 128
        process.communicate.return_value = (b"", f"fatal: https://x:{INSTALLATION_TOKEN}@".encode())

        with patch("asyncio.create_subprocess_exec", return_value=process):
            with pytest.raises(CheckoutError) as exc_info:
                run_async(checkout._git("clone", "--depth=1", "https://github.com/a/b.git", "/tmp/x"))

        assert str(exc_info.value) == "git clone failed with exit code 128"
        assert exc_info.value.returncode == 128

    def test_missing_git_binary(self, checkout):
        with patch("asyncio.create_subprocess_exec", side_effect=FileNotFoundError("git")):
            with pytest.raises(CheckoutError):
                run_async(checkout._git("status"))


class TestSweepStaleHelpers:
    def test_only_old_helpers_removed(self, tmp_path):
        old = tmp_path / "d-1-abc.cred.sh"
        fresh = tmp_path / "d-2-def.cred.sh"
        other = tmp_path / "notes.txt"
        for path in (old, fresh, other):
            path.write_text("x")
        two_hours_ago = time.time() - 7200
        os.utime(old, (two_hours_ago, two_hours_ago))
        os.utime(other, (two_hours_ago, two_hours_ago))

        removed = sweep_stale_credential_helpers(str(tmp_path))

        assert removed == 1
        assert not old.exists()
        assert fresh.exists()
        assert other.exists()

    def test_missing_directory(self, tmp_path):
        assert sweep_stale_credential_helpers(str(tmp_path / "absent")) == 0
