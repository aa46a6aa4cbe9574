from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from coding_agent_core.core.cancellation import CancelSignal
from coding_agent_core.core.confirmation_policy import (
    ApprovalSession,
    ConfirmationPolicy,
)
from coding_agent_core.core.scheduler import CoreToolScheduler
from coding_agent_core.core.tool_calls import ToolCallRequestInfo, WaitingToolCall
from coding_agent_core.core.types import ApprovalMode, ToolErrorType
from coding_agent_core.tools.base.tool_base import FileDiff
from coding_agent_core.tools.common import (
    ToolConfirmationOutcome,
    ToolConfirmationPayload,
)
from coding_agent_core.tools.file.write_file import WriteFileTool
from tests.utils import AutoResponder, Recorder, wait_for


def request(call_id: str, name: str, **args) -> ToolCallRequestInfo:
    return ToolCallRequestInfo(call_id=call_id, name=name, args=args)


def make_scheduler(
    registry,
    recorder: Recorder,
    mode: ApprovalMode = ApprovalMode.DEFAULT,
    on_update=None,
    get_preferred_editor=None,
) -> CoreToolScheduler:
    return CoreToolScheduler(
        registry,
        ConfirmationPolicy(ApprovalSession(approval_mode=mode)),
        on_tool_calls_update=on_update or recorder.on_update,
        on_all_tool_calls_complete=recorder.on_complete,
        output_update_handler=recorder.on_output,
        get_preferred_editor=get_preferred_editor,
    )


def function_output(call) -> str:
    return call.response.response_parts[0]["functionResponse"]["response"]["output"]


def function_error(call) -> str:
    return call.response.response_parts[0]["functionResponse"]["response"]["error"]


@pytest.mark.asyncio
async def test_yolo_batch_runs_to_success(registry, echo_tool):
    recorder = Recorder()
    scheduler = make_scheduler(registry, recorder, ApprovalMode.YOLO)

    completed = await scheduler.schedule(
        [request("1", "echo", text="a"), request("2", "echo", text="b")],
        CancelSignal(),
    )

    assert [c.status for c in completed] == ["success", "success"]
    assert [function_output(c) for c in completed] == ["a", "b"]
    assert completed[0].response.result_display == "echo: a"
    assert echo_tool.executed == ["a", "b"]
    assert recorder.statuses("1") == [
        "validating",
        "scheduled",
        "executing",
        "success",
    ]
    assert [c.status for c in recorder.updates[0]] == ["validating", "validating"]
    assert len(recorder.completed) == 1
    assert [c.call_id for c in recorder.completed[0]] == ["1", "2"]


@pytest.mark.asyncio
async def test_live_output_is_forwarded_while_executing(registry):
    recorder = Recorder()
    scheduler = make_scheduler(registry, recorder, ApprovalMode.YOLO)

    await scheduler.schedule(request("1", "echo", text="a"))

    assert recorder.outputs == [("1", "partial a")]
    live = [
        c.live_output
        for snapshot in recorder.updates
        for c in snapshot
        if c.status == "executing"
    ]
    assert "partial a" in live


@pytest.mark.asyncio
async def test_single_request_is_accepted(registry):
    recorder = Recorder()
    scheduler = make_scheduler(registry, recorder, ApprovalMode.YOLO)

    completed = await scheduler.schedule(request("1", "echo", text="x"))

    assert len(completed) == 1
    assert completed[0].status == "success"


@pytest.mark.asyncio
async def test_empty_batch_completes_immediately(registry):
    recorder = Recorder()
    scheduler = make_scheduler(registry, recorder)

    completed = await scheduler.schedule([])

    assert completed == []
    assert recorder.completed == [[]]


@pytest.mark.asyncio
async def test_confirmation_then_execution(registry, command_tool):
    recorder = Recorder()
    responder = AutoResponder(recorder=recorder)
    scheduler = make_scheduler(registry, recorder, on_update=responder)

    completed = await scheduler.schedule(request("1", "run_command", command="ls -la"))

    call = completed[0]
    assert call.status == "success"
    assert call.outcome == ToolConfirmationOutcome.PROCEED_ONCE
    assert command_tool.on_confirm_calls == [ToolConfirmationOutcome.PROCEED_ONCE]
    assert command_tool.executed == ["ls -la"]
    assert recorder.statuses("1") == [
        "validating",
        "awaiting_approval",
        "scheduled",
        "executing",
        "success",
    ]


@pytest.mark.asyncio
async def test_cancel_outcome_cancels_the_call(registry, command_tool):
    recorder = Recorder()
    responder = AutoResponder(
        default=ToolConfirmationOutcome.CANCEL, recorder=recorder
    )
    scheduler = make_scheduler(registry, recorder, on_update=responder)

    completed = await scheduler.schedule(request("1", "run_command", command="rm -rf /"))

    call = completed[0]
    assert call.status == "cancelled"
    assert call.outcome == ToolConfirmationOutcome.CANCEL
    assert "User did not allow tool call" in function_error(call)
    assert command_tool.on_confirm_calls == [ToolConfirmationOutcome.CANCEL]
    assert command_tool.executed == []


@pytest.mark.asyncio
async def test_proceed_always_approves_matching_awaiting_calls(
    registry, command_tool
):
    recorder = Recorder()
    responder = AutoResponder(
        outcomes={
            "1": ToolConfirmationOutcome.PROCEED_ALWAYS,
            "2": None,
            "3": ToolConfirmationOutcome.PROCEED_ONCE,
        },
        recorder=recorder,
    )
    policy = ConfirmationPolicy()
    scheduler = CoreToolScheduler(
        registry,
        policy,
        on_tool_calls_update=responder,
        on_all_tool_calls_complete=recorder.on_complete,
    )

    completed = await scheduler.schedule(
        [
            request("1", "run_command", command="git status"),
            request("2", "run_command", command="git log"),
            request("3", "run_command", command="ls"),
        ]
    )

    assert [c.status for c in completed] == ["success", "success", "success"]
    assert completed[1].outcome == ToolConfirmationOutcome.PROCEED_ALWAYS
    assert policy.session.allowed_commands == {"git"}
    assert sorted(command_tool.executed) == ["git log", "git status", "ls"]
    assert command_tool.executed.index("git status") < command_tool.executed.index(
        "git log"
    )
    # The auto-approved call never reaches its own on_confirm.
    assert len(command_tool.on_confirm_calls) == 2


@pytest.mark.asyncio
async def test_allowlisted_root_skips_confirmation_in_later_batches(
    registry, command_tool
):
    recorder = Recorder()
    responder = AutoResponder(
        default=ToolConfirmationOutcome.PROCEED_ALWAYS, recorder=recorder
    )
    scheduler = make_scheduler(registry, recorder, on_update=responder)

    await scheduler.schedule(request("1", "run_command", command="npm test"))
    await scheduler.schedule(request("2", "run_command", command="npm run lint"))

    assert recorder.statuses("2") == ["validating", "scheduled", "executing", "success"]
    assert command_tool.on_confirm_calls == [ToolConfirmationOutcome.PROCEED_ALWAYS]


@pytest.mark.asyncio
async def test_abort_while_awaiting_cancels_without_on_confirm(
    registry, command_tool
):
    recorder = Recorder()
    scheduler = make_scheduler(registry, recorder)
    signal = CancelSignal()

    task = asyncio.create_task(
        scheduler.schedule(
            [
                request("1", "run_command", command="make"),
                request("2", "echo", text="queued"),
            ],
            signal,
        )
    )
    await wait_for(
        lambda: isinstance(recorder.latest("1"), WaitingToolCall)
    )
    signal.set("stopped by test")
    completed = await task

    assert [c.status for c in completed] == ["cancelled", "cancelled"]
    assert "[Operation Cancelled] Reason: stopped by test" in function_error(
        completed[0]
    )
    assert command_tool.on_confirm_calls == []
    assert command_tool.executed == []


@pytest.mark.asyncio
async def test_pre_aborted_batch_is_cancelled(registry, echo_tool):
    recorder = Recorder()
    scheduler = make_scheduler(registry, recorder, ApprovalMode.YOLO)
    signal = CancelSignal()
    signal.set()

    completed = await scheduler.schedule(
        [request("1", "echo", text="a"), request("2", "echo", text="b")], signal
    )

    assert [c.status for c in completed] == ["cancelled", "cancelled"]
    assert echo_tool.executed == []
    assert len(recorder.completed) == 1


@pytest.mark.asyncio
async def test_on_confirm_runs_at_most_once(registry, command_tool):
    recorder = Recorder()
    responder = AutoResponder(recorder=recorder)
    scheduler = make_scheduler(registry, recorder, on_update=responder)

    await scheduler.schedule(request("1", "run_command", command="ls"))
    waiting = next(
        c
        for snapshot in recorder.updates
        for c in snapshot
        if isinstance(c, WaitingToolCall)
    )
    # A late answer for a settled call is ignored.
    await waiting.confirmation_details.on_confirm(
        ToolConfirmationOutcome.CANCEL, None
    )

    assert command_tool.on_confirm_calls == [ToolConfirmationOutcome.PROCEED_ONCE]


@pytest.mark.parametrize("pass_snapshot_callback", [True, False])
@pytest.mark.asyncio
async def test_handle_confirmation_response_runs_tool_on_confirm(
    registry, command_tool, pass_snapshot_callback
):
    recorder = Recorder()
    signal = CancelSignal()
    answers: list[asyncio.Task] = []

    def on_update(calls):
        recorder.on_update(calls)
        for call in calls:
            if isinstance(call, WaitingToolCall) and not answers:
                on_confirm = (
                    call.confirmation_details.on_confirm
                    if pass_snapshot_callback
                    else None
                )
                answers.append(
                    asyncio.create_task(
                        scheduler.handle_confirmation_response(
                            call.call_id,
                            on_confirm,
                            ToolConfirmationOutcome.PROCEED_ONCE,
                            signal,
                        )
                    )
                )

    scheduler = make_scheduler(registry, recorder, on_update=on_update)

    completed = await asyncio.wait_for(
        scheduler.schedule(request("1", "run_command", command="ls"), signal), 5
    )
    await asyncio.wait_for(asyncio.gather(*answers), 5)

    assert [c.status for c in completed] == ["success"]
    assert command_tool.executed == ["ls"]
    assert command_tool.on_confirm_calls == [ToolConfirmationOutcome.PROCEED_ONCE]


@pytest.mark.asyncio
async def test_unknown_tool_is_an_invalid_params_error(registry):
    recorder = Recorder()
    scheduler = make_scheduler(registry, recorder, ApprovalMode.YOLO)

    completed = await scheduler.schedule(
        [request("1", "missing"), request("2", "echo", text="ok")]
    )

    assert completed[0].status == "error"
    assert completed[0].response.error_type == ToolErrorType.INVALID_TOOL_PARAMS
    assert completed[0].response.error == 'Tool "missing" not found in registry.'
    assert completed[1].status == "success"


@pytest.mark.asyncio
async def test_invalid_arguments_fail_validation(registry, echo_tool):
    recorder = Recorder()
    scheduler = make_scheduler(registry, recorder, ApprovalMode.YOLO)

    completed = await scheduler.schedule(request("1", "echo", fail="not-a-bool"))

    assert completed[0].status == "error"
    assert completed[0].response.error_type == ToolErrorType.INVALID_TOOL_PARAMS
    assert "Invalid parameters for echo" in completed[0].response.error
    assert echo_tool.executed == []


@pytest.mark.asyncio
async def test_failing_calls_do_not_stop_siblings(registry, echo_tool):
    recorder = Recorder()
    scheduler = make_scheduler(registry, recorder, ApprovalMode.YOLO)

    completed = await scheduler.schedule(
        [
            request("1", "echo", text="raises", raise_error=True),
            request("2", "echo", text="reports", fail=True),
            request("3", "echo", text="fine"),
        ]
    )

    assert [c.status for c in completed] == ["error", "error", "success"]
    assert completed[0].response.error == "boom"
    assert completed[0].response.error_type == ToolErrorType.EXECUTION_FAILED
    assert completed[1].response.error == "tool failed"
    assert completed[1].response.result_display == "failed"
    assert echo_tool.executed == ["raises", "reports", "fine"]


@pytest.mark.asyncio
async def test_batches_are_strictly_serialized(registry, echo_tool):
    recorder = Recorder()
    scheduler = make_scheduler(registry, recorder, ApprovalMode.YOLO)

    first = asyncio.create_task(
        scheduler.schedule(request("a1", "echo", text="a1", delay=0.05))
    )
    second = asyncio.create_task(scheduler.schedule(request("b1", "echo", text="b1")))
    await asyncio.gather(first, second)

    assert echo_tool.executed == ["a1", "b1"]
    first_done = recorder.events.index(("complete", ["a1"]))
    second_seen = next(
        i for i, (_, ids) in enumerate(recorder.events) if "b1" in ids
    )
    assert first_done < second_seen


@pytest.mark.asyncio
async def test_abort_during_execution_cancels_remaining(registry, echo_tool):
    recorder = Recorder()
    scheduler = make_scheduler(registry, recorder, ApprovalMode.YOLO)
    signal = CancelSignal()

    task = asyncio.create_task(
        scheduler.schedule(
            [
                request("1", "echo", text="slow", delay=0.2),
                request("2", "echo", text="never"),
            ],
            signal,
        )
    )
    await wait_for(lambda: echo_tool.executed == ["slow"])
    scheduler.cancel_all("cancel_all called")
    completed = await task

    assert [c.status for c in completed] == ["cancelled", "cancelled"]
    assert echo_tool.executed == ["slow"]
    assert "cancel_all called" in function_error(completed[1])


@pytest.mark.asyncio
async def test_cancelled_edit_keeps_the_proposed_diff(config, tmp_path):
    registry_ = _write_registry(config)
    recorder = Recorder()
    responder = AutoResponder(
        default=ToolConfirmationOutcome.CANCEL, recorder=recorder
    )
    scheduler = make_scheduler(registry_, recorder, on_update=responder)
    target = tmp_path / "notes.txt"

    completed = await scheduler.schedule(
        request("1", "write_file", file_path=str(target), content="hello\n")
    )

    display = completed[0].response.result_display
    assert completed[0].status == "cancelled"
    assert isinstance(display, FileDiff)
    assert display.file_name == "notes.txt"
    assert display.new_content == "hello\n"
    assert "+hello" in display.file_diff
    assert not target.exists()


@pytest.mark.asyncio
async def test_inline_payload_replaces_the_proposed_content(config, tmp_path):
    registry_ = _write_registry(config)
    recorder = Recorder()
    responder = AutoResponder(
        payloads={"1": ToolConfirmationPayload(new_content="edited\n")},
        recorder=recorder,
    )
    scheduler = make_scheduler(registry_, recorder, on_update=responder)
    target = tmp_path / "notes.txt"

    completed = await scheduler.schedule(
        request("1", "write_file", file_path=str(target), content="original\n")
    )

    assert completed[0].status == "success"
    assert target.read_text() == "edited\n"
    assert "User modified" in function_output(completed[0])


@pytest.mark.asyncio
async def test_modify_with_editor_updates_params(config, tmp_path, monkeypatch):
    async def fake_open_diff(old_path, new_path, editor):
        Path(new_path).write_text("from editor\n", encoding="utf-8")

    monkeypatch.setattr(
        "coding_agent_core.tools.base.modifiable_tool.open_diff", fake_open_diff
    )

    registry_ = _write_registry(config)
    recorder = Recorder()
    answers: list[str] = []
    tasks: list[asyncio.Task] = []

    def on_update(calls):
        recorder.on_update(calls)
        for call in calls:
            if not isinstance(call, WaitingToolCall):
                continue
            details = call.confirmation_details
            if details.is_modifying:
                continue
            if not answers:
                answers.append("modify")
                tasks.append(
                    asyncio.create_task(
                        details.on_confirm(
                            ToolConfirmationOutcome.MODIFY_WITH_EDITOR, None
                        )
                    )
                )
            elif len(answers) == 1 and details.new_content == "from editor\n":
                answers.append("proceed")
                tasks.append(
                    asyncio.create_task(
                        details.on_confirm(ToolConfirmationOutcome.PROCEED_ONCE, None)
                    )
                )

    scheduler = make_scheduler(
        registry_, recorder, on_update=on_update, get_preferred_editor=lambda: "vim"
    )
    target = tmp_path / "notes.txt"

    completed = await scheduler.schedule(
        request("1", "write_file", file_path=str(target), content="original\n")
    )
    await asyncio.gather(*tasks)

    assert answers == ["modify", "proceed"]
    assert completed[0].status == "success"
    assert target.read_text() == "from editor\n"
    modifying = [
        c.confirmation_details.is_modifying
        for snapshot in recorder.updates
        for c in snapshot
        if isinstance(c, WaitingToolCall)
    ]
    assert True in modifying


@pytest.mark.asyncio
async def test_modify_without_editor_keeps_the_call_waiting(config, tmp_path):
    registry_ = _write_registry(config)
    recorder = Recorder()
    tasks: list[asyncio.Task] = []

    async def answer(details):
        await details.on_confirm(ToolConfirmationOutcome.MODIFY_WITH_EDITOR, None)
        await details.on_confirm(ToolConfirmationOutcome.PROCEED_ONCE, None)

    def on_update(calls):
        recorder.on_update(calls)
        for call in calls:
            if isinstance(call, WaitingToolCall) and not tasks:
                tasks.append(asyncio.create_task(answer(call.confirmation_details)))

    scheduler = make_scheduler(registry_, recorder, on_update=on_update)
    target = tmp_path / "notes.txt"

    completed = await scheduler.schedule(
        request("1", "write_file", file_path=str(target), content="original\n")
    )
    await asyncio.gather(*tasks)

    assert completed[0].status == "success"
    assert target.read_text() == "original\n"


def _write_registry(config):
    from coding_agent_core.tools.base.registry import ToolRegistry

    registry = ToolRegistry(config)
    registry.register_tool(WriteFileTool(config))
    return registry
