from __future__ import annotations

import asyncio
import os
from collections.abc import Callable

from pydantic import BaseModel

from coding_agent_core.core.tool_calls import ToolCall, WaitingToolCall
from coding_agent_core.tools.base.tool_base import BaseTool, ToolError, ToolResult
from coding_agent_core.tools.common import (
    ToolConfirmationOutcome,
    ToolConfirmationPayload,
    ToolExecuteConfirmationDetails,
)


class EchoParams(BaseModel):
    text: str = ""
    delay: float = 0
    fail: bool = False
    raise_error: bool = False


class EchoTool(BaseTool[EchoParams, ToolResult]):
    """Never asks for confirmation; streams one partial update."""

    params_model = EchoParams

    def __init__(self, name: str = "echo"):
        super().__init__(
            name=name,
            display_name="Echo",
            description="Echoes its text.",
            parameter_schema=EchoParams.model_json_schema(),
            can_update_output=True,
        )
        self.executed: list[str] = []

    async def execute(self, params, signal=None, update_output=None):
        self.executed.append(params.text)
        if params.delay:
            await asyncio.sleep(params.delay)
        if params.raise_error:
            raise RuntimeError("boom")
        if update_output:
            update_output(f"partial {params.text}")
        if params.fail:
            return ToolResult(
                llm_content="failed",
                return_display="failed",
                error=ToolError(message="tool failed"),
            )
        return ToolResult(llm_content=params.text, return_display=f"echo: {params.text}")


class CommandParams(BaseModel):
    command: str


class CommandTool(BaseTool[CommandParams, ToolResult]):
    """Always asks, keyed by the first word of the command."""

    params_model = CommandParams

    def __init__(self):
        super().__init__(
            name="run_command",
            display_name="Command",
            description="Pretends to run a command.",
            parameter_schema=CommandParams.model_json_schema(),
        )
        self.executed: list[str] = []
        self.on_confirm_calls: list[ToolConfirmationOutcome] = []

    async def should_confirm_execute(self, params, abort_signal=None):
        root = params.command.split()[0]

        async def on_confirm(outcome, payload=None):
            self.on_confirm_calls.append(outcome)

        return ToolExecuteConfirmationDetails(
            title="Confirm command",
            command=params.command,
            root_command=root,
            root_commands=[root],
            on_confirm=on_confirm,
        )

    async def execute(self, params, signal=None, update_output=None):
        self.executed.append(params.command)
        return ToolResult(
            llm_content=f"ran {params.command}",
            return_display=f"ran {params.command}",
        )


class Recorder:
    """Collects everything the scheduler reports to its observers."""

    def __init__(self):
        self.updates: list[list[ToolCall]] = []
        self.completed: list[list[ToolCall]] = []
        self.outputs: list[tuple[str, str]] = []
        self.events: list[tuple[str, list[str]]] = []

    def on_update(self, calls):
        self.updates.append(calls)
        self.events.append(("update", [c.call_id for c in calls]))

    def on_complete(self, calls):
        self.completed.append(calls)
        self.events.append(("complete", [c.call_id for c in calls]))

    def on_output(self, call_id, output):
        self.outputs.append((call_id, output))

    def statuses(self, call_id: str) -> list[str]:
        """Status history of one call with consecutive repeats collapsed."""
        history: list[str] = []
        for snapshot in self.updates:
            for call in snapshot:
                if call.call_id == call_id and (
                    not history or history[-1] != call.status
                ):
                    history.append(call.status)
        return history

    def latest(self, call_id: str) -> ToolCall | None:
        for snapshot in reversed(self.updates):
            for call in snapshot:
                if call.call_id == call_id:
                    return call
        return None


class AutoResponder:
    """
    Answers each awaiting call once from a background task, the way a UI
    would. Calls mapped to None are left unanswered.
    """

    def __init__(
        self,
        default: ToolConfirmationOutcome | None = ToolConfirmationOutcome.PROCEED_ONCE,
        outcomes: dict[str, ToolConfirmationOutcome | None] | None = None,
        payloads: dict[str, ToolConfirmationPayload] | None = None,
        recorder: Recorder | None = None,
    ):
        self.default = default
        self.outcomes = outcomes or {}
        self.payloads = payloads or {}
        self.recorder = recorder
        self.seen: set[str] = set()
        self.tasks: list[asyncio.Task] = []

    def __call__(self, calls):
        if self.recorder is not None:
            self.recorder.on_update(calls)
        for call in calls:
            if not isinstance(call, WaitingToolCall) or call.call_id in self.seen:
                continue
            self.seen.add(call.call_id)
            outcome = self.outcomes.get(call.call_id, self.default)
            if outcome is None:
                continue
            self.tasks.append(
                asyncio.create_task(
                    call.confirmation_details.on_confirm(
                        outcome, self.payloads.get(call.call_id)
                    )
                )
            )


async def wait_for(predicate: Callable[[], bool], timeout: float = 5.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


def is_process_alive(pid: int) -> bool:
    """False for missing and zombie processes."""
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    try:
        with open(f"/proc/{pid}/stat", encoding="utf-8") as f:
            state = f.read().rsplit(")", 1)[1].split()[0]
    except (FileNotFoundError, IndexError):
        return True
    return state != "Z"
