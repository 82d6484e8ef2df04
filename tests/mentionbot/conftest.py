"""Shared fixtures for mention bot tests."""

from typing import Any

import pytest

from tests.mentionbot.factories import build_context, build_github, build_settings


@pytest.fixture
def github():
    return build_github()


@pytest.fixture
def make_context(github):
    def factory(**overrides: Any):
        overrides.setdefault("github", github)
        return build_context(**overrides)

    return factory


@pytest.fixture
def settings(tmp_path):
    return build_settings(clone_base_dir=str(tmp_path / "workspaces"))
