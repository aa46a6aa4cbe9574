from __future__ import annotations

import os

import pytest

from coding_agent_core.config import Config
from coding_agent_core.tools.base.registry import ToolRegistry
from tests.utils import CommandTool, EchoTool


@pytest.fixture(autouse=True)
def _isolate_env(monkeypatch):
    """Keep CODING_AGENT_* settings from the developer's shell out of tests."""
    for key in list(os.environ):
        if key.upper().startswith("CODING_AGENT_"):
            monkeypatch.delenv(key)


@pytest.fixture
def config(tmp_path) -> Config:
    return Config(target_dir=tmp_path)


@pytest.fixture
def echo_tool() -> EchoTool:
    return EchoTool()


@pytest.fixture
def command_tool() -> CommandTool:
    return CommandTool()


@pytest.fixture
def registry(echo_tool, command_tool) -> ToolRegistry:
    registry = ToolRegistry()
    registry.register_tool(echo_tool)
    registry.register_tool(command_tool)
    return registry
