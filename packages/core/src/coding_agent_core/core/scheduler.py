"""
Drives batches of tool calls through validation, confirmation, execution
and settlement.

Every batch runs through a small LangGraph state graph
(validate_tools -> wait_for_approval? -> execute_tools -> finalize). The
graph state only carries the batch id; the tool calls themselves live on
the scheduler so that observers always see one consistent snapshot.
Batches are strictly serialized: a batch starts only after the previous
one has fully settled.
"""

import asyncio
import itertools
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, TypedDict

from langgraph.graph import END, StateGraph

from coding_agent_core.core.cancellation import CancelSignal
from coding_agent_core.core.confirmation_policy import ConfirmationPolicy
from coding_agent_core.core.function_response import (
    convert_to_function_response,
    create_error_response,
)
from coding_agent_core.core.tool_calls import (
    CancelledToolCall,
    CompletedToolCall,
    ErroredToolCall,
    ExecutingToolCall,
    ScheduledToolCall,
    SuccessfulToolCall,
    ToolCall,
    ToolCallRequestInfo,
    ToolCallResponseInfo,
    ValidatingToolCall,
    WaitingToolCall,
    get_display_payload,
    is_completed,
)
from coding_agent_core.core.types import (
    ToolErrorType,
    ToolExecutionError,
    ToolParamsError,
)
from coding_agent_core.tools.base.modifiable_tool import (
    create_patch,
    is_modifiable_tool,
    modify_with_editor,
)
from coding_agent_core.tools.base.registry import ToolRegistry
from coding_agent_core.tools.base.tool_base import ToolResult
from coding_agent_core.tools.common import (
    OnConfirm,
    ToolConfirmationOutcome,
    ToolConfirmationPayload,
)
from coding_agent_core.utils.editor import EditorType

logger = logging.getLogger(__name__)

ToolCallsUpdateHandler = Callable[[list[ToolCall]], None]
AllToolCallsCompleteHandler = Callable[[list[CompletedToolCall]], None]
OutputUpdateHandler = Callable[[str, str], None]

DEFAULT_CANCEL_REASON = "User cancelled the operation."
USER_DENIED_REASON = "User did not allow tool call"

ALWAYS_OUTCOMES = frozenset(
    {
        ToolConfirmationOutcome.PROCEED_ALWAYS,
        ToolConfirmationOutcome.PROCEED_ALWAYS_SERVER,
        ToolConfirmationOutcome.PROCEED_ALWAYS_TOOL,
    }
)

_ALLOWED_TRANSITIONS: dict[str, frozenset[str]] = {
    "validating": frozenset(
        {"scheduled", "awaiting_approval", "error", "cancelled"}
    ),
    "awaiting_approval": frozenset(
        {"scheduled", "awaiting_approval", "cancelled", "error"}
    ),
    "scheduled": frozenset({"executing", "awaiting_approval", "cancelled"}),
    # executing -> executing carries live output updates
    "executing": frozenset({"executing", "success", "error", "cancelled"}),
}

_END_OF_OUTPUT = object()
_UNSET: Any = object()


class BatchState(TypedDict):
    batch_id: int
    phase: str


@dataclass
class _ConfirmationMessage:
    call_id: str
    outcome: ToolConfirmationOutcome
    payload: ToolConfirmationPayload | None
    on_confirm: OnConfirm | None
    signal: CancelSignal
    done: asyncio.Future


@dataclass
class _Batch:
    batch_id: int
    requests: list[ToolCallRequestInfo]
    signal: CancelSignal
    # insertion order is request order
    calls: dict[str, ToolCall] = field(default_factory=dict)
    schedule_order: list[str] = field(default_factory=list)
    original_on_confirm: dict[str, OnConfirm | None] = field(
        default_factory=dict
    )
    confirmed: set[str] = field(default_factory=set)
    confirmations: asyncio.Queue = field(default_factory=asyncio.Queue)

    def has_awaiting(self) -> bool:
        return any(
            isinstance(call, WaitingToolCall) for call in self.calls.values()
        )

    @property
    def cancel_reason(self) -> str:
        return self.signal.reason or DEFAULT_CANCEL_REASON


def _duration_ms(call: ToolCall) -> float | None:
    if call.start_time is None:
        return None
    return (time.time() - call.start_time) * 1000


class CoreToolScheduler:
    """
    Schedules tool calls requested by the model.

    Observers are plain callables invoked on the event loop:
    `on_tool_calls_update` receives a snapshot of the current batch after
    every state change, `on_all_tool_calls_complete` receives the settled
    batch exactly once, and `output_update_handler` receives live output
    as `(call_id, output)`.
    """

    def __init__(
        self,
        tool_registry: ToolRegistry,
        policy: ConfirmationPolicy | None = None,
        on_tool_calls_update: ToolCallsUpdateHandler | None = None,
        on_all_tool_calls_complete: AllToolCallsCompleteHandler | None = None,
        output_update_handler: OutputUpdateHandler | None = None,
        get_preferred_editor: Callable[[], EditorType | None] | None = None,
    ):
        self.tool_registry = tool_registry
        self.policy = policy or ConfirmationPolicy()
        self.on_tool_calls_update = on_tool_calls_update
        self.on_all_tool_calls_complete = on_all_tool_calls_complete
        self.output_update_handler = output_update_handler
        self.get_preferred_editor = get_preferred_editor

        self._gate = asyncio.Lock()
        self._batch_ids = itertools.count(1)
        self._batches: dict[int, _Batch] = {}
        self._active_batch: _Batch | None = None
        self._graph = self._build_graph()

    # --- Public API ---

    async def schedule(
        self,
        request: ToolCallRequestInfo | list[ToolCallRequestInfo],
        signal: CancelSignal | None = None,
    ) -> list[CompletedToolCall]:
        """
        Runs a batch of requests to completion and returns the settled calls
        in request order. A batch submitted while another is in flight waits
        for it to settle first.

        Confirmations must be answered from another task (typically one
        started by `on_tool_calls_update`), since this coroutine only
        returns once every call is terminal.
        """
        requests = request if isinstance(request, list) else [request]
        signal = signal or CancelSignal()

        async with self._gate:
            batch = _Batch(next(self._batch_ids), list(requests), signal)
            self._batches[batch.batch_id] = batch
            self._active_batch = batch
            logger.debug(
                f"Starting batch {batch.batch_id} with {len(requests)} call(s)"
            )
            try:
                await self._graph.ainvoke(
                    {"batch_id": batch.batch_id, "phase": "validating"}
                )
            finally:
                self._active_batch = None
                del self._batches[batch.batch_id]

        return list(batch.calls.values())

    async def handle_confirmation_response(
        self,
        call_id: str,
        on_confirm: OnConfirm | None,
        outcome: ToolConfirmationOutcome,
        signal: CancelSignal,
        payload: ToolConfirmationPayload | None = None,
    ) -> None:
        """
        Delivers the user's answer for an awaiting call. Returns once the
        batch loop has applied it. Answers for calls that are no longer
        awaiting approval are ignored.

        `on_confirm` may be the callable found on the call's confirmation
        details or None; either way the tool's own continuation is the one
        that runs, at most once.
        """
        batch = self._active_batch
        if batch is None or not isinstance(
            batch.calls.get(call_id), WaitingToolCall
        ):
            logger.debug(f"Ignoring confirmation for {call_id}: not awaiting")
            return

        message = _ConfirmationMessage(
            call_id=call_id,
            outcome=outcome,
            payload=payload,
            on_confirm=batch.original_on_confirm.get(call_id),
            signal=signal,
            done=asyncio.get_running_loop().create_future(),
        )
        batch.confirmations.put_nowait(message)
        await message.done

    def cancel_all(self, reason: str = DEFAULT_CANCEL_REASON) -> None:
        """Aborts the batch currently in flight, if any."""
        if self._active_batch is not None:
            self._active_batch.signal.set(reason)

    # --- State transitions ---

    def _notify(self, batch: _Batch) -> None:
        if self.on_tool_calls_update:
            self.on_tool_calls_update(list(batch.calls.values()))

    def _set_call(self, batch: _Batch, new_call: ToolCall) -> bool:
        call_id = new_call.call_id
        current = batch.calls.get(call_id)
        if current is not None:
            allowed = _ALLOWED_TRANSITIONS.get(current.status, frozenset())
            if new_call.status not in allowed:
                logger.warning(
                    f"Rejected transition {current.status} -> "
                    f"{new_call.status} for tool call {call_id}"
                )
                return False
            if current.status != new_call.status:
                logger.debug(
                    f"Tool call {call_id}: {current.status} -> {new_call.status}"
                )

        batch.calls[call_id] = new_call
        if call_id in batch.schedule_order:
            batch.schedule_order.remove(call_id)
        if new_call.status == "scheduled":
            batch.schedule_order.append(call_id)
        self._notify(batch)
        return True

    def _schedule_call(
        self,
        batch: _Batch,
        call: ToolCall,
        invocation: Any,
        outcome: ToolConfirmationOutcome | None = None,
    ) -> None:
        self._set_call(
            batch,
            ScheduledToolCall(
                request=call.request,
                tool=call.tool,
                start_time=call.start_time,
                outcome=outcome or call.outcome,
                invocation=invocation,
            ),
        )

    def _fail(
        self,
        batch: _Batch,
        call_id: str,
        error: BaseException | str,
        error_type: ToolErrorType,
        result_display: Any = _UNSET,
    ) -> None:
        call = batch.calls[call_id]
        response = create_error_response(call.request, error, error_type)
        if result_display is not _UNSET and result_display:
            response.result_display = result_display
        self._set_call(
            batch,
            ErroredToolCall(
                request=call.request,
                tool=call.tool,
                start_time=call.start_time,
                outcome=call.outcome,
                response=response,
                duration_ms=_duration_ms(call),
            ),
        )

    def _cancel(
        self,
        batch: _Batch,
        call_id: str,
        reason: str,
        result_display: Any = _UNSET,
    ) -> None:
        call = batch.calls[call_id]
        if result_display is _UNSET:
            result_display = get_display_payload(call)
        response = ToolCallResponseInfo(
            call_id=call_id,
            response_parts=[
                {
                    "functionResponse": {
                        "id": call_id,
                        "name": call.request.name,
                        "response": {
                            "error": f"[Operation Cancelled] Reason: {reason}"
                        },
                    }
                }
            ],
            result_display=result_display,
        )
        self._set_call(
            batch,
            CancelledToolCall(
                request=call.request,
                tool=call.tool,
                start_time=call.start_time,
                outcome=call.outcome,
                response=response,
                duration_ms=_duration_ms(call),
            ),
        )

    def _cancel_pending(self, batch: _Batch) -> None:
        for call_id, call in list(batch.calls.items()):
            if not is_completed(call) and call.status != "executing":
                self._cancel(batch, call_id, batch.cancel_reason)

    # --- Graph nodes ---

    async def _validate_tools_node(self, state: BatchState) -> dict[str, Any]:
        batch = self._batches[state["batch_id"]]
        now = time.time()
        for request in batch.requests:
            batch.calls[request.call_id] = ValidatingToolCall(
                request=request,
                tool=self.tool_registry.get_tool(request.name),
                start_time=now,
            )
        if batch.calls:
            self._notify(batch)

        for request in batch.requests:
            await self._validate_call(batch, request.call_id)
        return {"phase": "validated"}

    async def _validate_call(self, batch: _Batch, call_id: str) -> None:
        call = batch.calls[call_id]
        request = call.request

        if call.tool is None:
            self._fail(
                batch,
                call_id,
                f'Tool "{request.name}" not found in registry.',
                ToolErrorType.INVALID_TOOL_PARAMS,
            )
            return
        if batch.signal.is_set():
            self._cancel(batch, call_id, batch.cancel_reason)
            return

        try:
            invocation = call.tool.build(request.args)
        except ToolParamsError as e:
            self._fail(batch, call_id, e, ToolErrorType.INVALID_TOOL_PARAMS)
            return
        except Exception as e:
            logger.error(f"Building '{request.name}' failed: {e}")
            self._fail(batch, call_id, e, ToolErrorType.EXECUTION_FAILED)
            return

        try:
            details = await self.policy.decide(invocation, batch.signal)
        except Exception as e:
            logger.error(f"Confirmation check for '{request.name}' failed: {e}")
            self._fail(batch, call_id, e, ToolErrorType.EXECUTION_FAILED)
            return

        if batch.signal.is_set():
            self._cancel(batch, call_id, batch.cancel_reason)
            return

        if details is None:
            self._schedule_call(batch, call, invocation)
            return

        batch.original_on_confirm[call_id] = details.on_confirm
        self._set_call(
            batch,
            WaitingToolCall(
                request=request,
                tool=call.tool,
                start_time=call.start_time,
                invocation=invocation,
                confirmation_details=details.model_copy(
                    update={
                        "on_confirm": self._make_on_confirm(batch, call_id)
                    }
                ),
            ),
        )

    def _make_on_confirm(self, batch: _Batch, call_id: str) -> OnConfirm:
        async def on_confirm(
            outcome: ToolConfirmationOutcome,
            payload: ToolConfirmationPayload | None = None,
        ) -> None:
            await self.handle_confirmation_response(
                call_id,
                batch.original_on_confirm.get(call_id),
                outcome,
                batch.signal,
                payload,
            )

        return on_confirm

    def _should_wait_for_approval(self, state: BatchState) -> str:
        batch = self._batches[state["batch_id"]]
        if batch.has_awaiting():
            return "wait_for_approval"
        return "execute_tools"

    async def _wait_for_approval_node(
        self, state: BatchState
    ) -> dict[str, Any]:
        batch = self._batches[state["batch_id"]]
        try:
            while batch.has_awaiting():
                if batch.signal.is_set():
                    self._cancel_pending(batch)
                    break
                message = await self._next_confirmation(batch)
                if message is None:
                    continue
                try:
                    await self._apply_confirmation(batch, message)
                except Exception as e:
                    logger.error(
                        f"Applying confirmation for {message.call_id} failed: {e}"
                    )
                    call = batch.calls.get(message.call_id)
                    if call is not None and not is_completed(call):
                        self._fail(
                            batch,
                            message.call_id,
                            e,
                            ToolErrorType.EXECUTION_FAILED,
                        )
                    message.done.set_exception(e)
                else:
                    message.done.set_result(None)
        finally:
            # Answers that arrived after the last awaiting call settled.
            while not batch.confirmations.empty():
                leftover = batch.confirmations.get_nowait()
                if not leftover.done.done():
                    leftover.done.set_result(None)
        return {"phase": "approved"}

    async def _next_confirmation(
        self, batch: _Batch
    ) -> _ConfirmationMessage | None:
        get_task = asyncio.ensure_future(batch.confirmations.get())
        abort_task = asyncio.ensure_future(batch.signal.wait())
        try:
            await asyncio.wait(
                {get_task, abort_task}, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            for task in (get_task, abort_task):
                if not task.done():
                    task.cancel()
        if get_task.done() and not get_task.cancelled():
            return get_task.result()
        return None

    async def _invoke_on_confirm_once(
        self,
        batch: _Batch,
        message: _ConfirmationMessage,
    ) -> None:
        if message.on_confirm is None or message.call_id in batch.confirmed:
            return
        batch.confirmed.add(message.call_id)
        await message.on_confirm(message.outcome, message.payload)

    async def _apply_confirmation(
        self, batch: _Batch, message: _ConfirmationMessage
    ) -> None:
        call = batch.calls.get(message.call_id)
        if not isinstance(call, WaitingToolCall):
            return

        if message.signal.is_set() or batch.signal.is_set():
            self._cancel(batch, call.call_id, batch.cancel_reason)
            return

        outcome = message.outcome
        if outcome == ToolConfirmationOutcome.MODIFY_WITH_EDITOR:
            await self._modify_with_editor(batch, call)
            return

        await self._invoke_on_confirm_once(batch, message)
        call = batch.calls[call.call_id]
        if not isinstance(call, WaitingToolCall):
            return

        if outcome == ToolConfirmationOutcome.CANCEL:
            call = call.model_copy(update={"outcome": outcome})
            batch.calls[call.call_id] = call
            self._cancel(batch, call.call_id, USER_DENIED_REASON)
            return

        self.policy.record(call.confirmation_details, outcome, call.tool.name)

        invocation = call.invocation
        if message.payload is not None:
            invocation = await self._apply_inline_modify(
                batch, call, message.payload
            )
        self._schedule_call(batch, batch.calls[call.call_id], invocation, outcome)

        if outcome in ALWAYS_OUTCOMES:
            await self._auto_approve_compatible(batch)

    async def _modify_with_editor(
        self, batch: _Batch, call: WaitingToolCall
    ) -> None:
        editor = self.get_preferred_editor() if self.get_preferred_editor else None
        if not editor or not is_modifiable_tool(call.tool):
            logger.warning(
                f"Cannot modify '{call.request.name}' in an editor: "
                "no editor configured or tool is not modifiable"
            )
            return

        details = call.confirmation_details
        self._set_call(
            batch,
            call.model_copy(
                update={
                    "confirmation_details": details.model_copy(
                        update={"is_modifying": True}
                    )
                }
            ),
        )

        modify_context = call.tool.get_modify_context(batch.signal)
        result = await modify_with_editor(
            call.invocation.params, modify_context, editor, batch.signal
        )
        invocation = call.tool.build(
            result.updated_params.model_dump(exclude_none=True)
        )

        update: dict[str, Any] = {"is_modifying": False}
        if details.type == "edit":
            update["file_diff"] = result.updated_diff
            update["new_content"] = await modify_context.get_proposed_content(
                invocation.params
            )
        current = batch.calls[call.call_id]
        self._set_call(
            batch,
            current.model_copy(
                update={
                    "invocation": invocation,
                    "confirmation_details": details.model_copy(update=update),
                }
            ),
        )

    async def _apply_inline_modify(
        self,
        batch: _Batch,
        call: WaitingToolCall,
        payload: ToolConfirmationPayload,
    ) -> Any:
        if not is_modifiable_tool(call.tool):
            return call.invocation

        modify_context = call.tool.get_modify_context(batch.signal)
        params = call.invocation.params
        current_content = await modify_context.get_current_content(params)
        updated_params = modify_context.create_updated_params(
            current_content, payload.new_content, params
        )
        invocation = call.tool.build(
            updated_params.model_dump(exclude_none=True)
        )

        details = call.confirmation_details
        if details.type == "edit":
            self._set_call(
                batch,
                call.model_copy(
                    update={
                        "invocation": invocation,
                        "confirmation_details": details.model_copy(
                            update={
                                "file_diff": create_patch(
                                    details.file_name,
                                    current_content,
                                    payload.new_content,
                                ),
                                "new_content": payload.new_content,
                            }
                        ),
                    }
                ),
            )
        return invocation

    async def _auto_approve_compatible(self, batch: _Batch) -> None:
        """Schedules awaiting calls that the updated allow-list now covers."""
        for call in list(batch.calls.values()):
            if not isinstance(call, WaitingToolCall):
                continue
            if batch.signal.is_set():
                return
            try:
                details = await self.policy.decide(
                    call.invocation, batch.signal
                )
            except Exception as e:
                logger.warning(
                    f"Auto-approval check for {call.call_id} failed: {e}"
                )
                continue
            current = batch.calls[call.call_id]
            if details is None and isinstance(current, WaitingToolCall):
                logger.debug(f"Auto-approving tool call {call.call_id}")
                self._schedule_call(
                    batch,
                    current,
                    current.invocation,
                    ToolConfirmationOutcome.PROCEED_ALWAYS,
                )

    async def _execute_tools_node(self, state: BatchState) -> dict[str, Any]:
        batch = self._batches[state["batch_id"]]
        while True:
            call = next(
                (
                    batch.calls[call_id]
                    for call_id in batch.schedule_order
                    if batch.calls[call_id].status == "scheduled"
                ),
                None,
            )
            if call is None:
                break
            if batch.signal.is_set():
                self._cancel(batch, call.call_id, batch.cancel_reason)
                continue
            await self._execute_call(batch, call)
        return {"phase": "executed"}

    async def _execute_call(
        self, batch: _Batch, call: ScheduledToolCall
    ) -> None:
        call_id = call.call_id
        self._set_call(
            batch,
            ExecutingToolCall(
                request=call.request,
                tool=call.tool,
                start_time=call.start_time,
                outcome=call.outcome,
                invocation=call.invocation,
                signal=batch.signal,
            ),
        )

        output_queue: asyncio.Queue = asyncio.Queue()
        update_output = (
            output_queue.put_nowait if call.tool.can_update_output else None
        )
        pump = asyncio.create_task(
            self._pump_live_output(batch, call_id, output_queue)
        )

        result: ToolResult | None = None
        error: Exception | None = None
        try:
            result = await call.invocation.execute(batch.signal, update_output)
        except Exception as e:
            error = e
        finally:
            output_queue.put_nowait(_END_OF_OUTPUT)
            await pump

        self._settle(batch, call_id, result, error)

    async def _pump_live_output(
        self, batch: _Batch, call_id: str, queue: asyncio.Queue
    ) -> None:
        while True:
            output = await queue.get()
            if output is _END_OF_OUTPUT:
                return
            current = batch.calls.get(call_id)
            if isinstance(current, ExecutingToolCall):
                self._set_call(
                    batch, current.model_copy(update={"live_output": output})
                )
            if self.output_update_handler:
                self.output_update_handler(call_id, output)

    def _settle(
        self,
        batch: _Batch,
        call_id: str,
        result: ToolResult | None,
        error: Exception | None,
    ) -> None:
        call = batch.calls[call_id]
        request = call.request

        if batch.signal.is_set():
            display = (
                result.return_display
                if result is not None
                else get_display_payload(call)
            )
            self._cancel(batch, call_id, batch.cancel_reason, display)
            return

        if error is not None:
            error_type = (
                error.tool_error_type
                if isinstance(error, ToolExecutionError)
                else ToolErrorType.EXECUTION_FAILED
            )
            logger.error(f"Tool '{request.name}' ({call_id}) failed: {error}")
            self._fail(batch, call_id, error, error_type)
            return

        if result.error is not None:
            self._fail(
                batch,
                call_id,
                result.error.message,
                result.error.type,
                result.return_display,
            )
            return

        self._set_call(
            batch,
            SuccessfulToolCall(
                request=request,
                tool=call.tool,
                start_time=call.start_time,
                outcome=call.outcome,
                response=ToolCallResponseInfo(
                    call_id=call_id,
                    response_parts=convert_to_function_response(
                        request.name, call_id, result.llm_content
                    ),
                    result_display=result.return_display,
                ),
                duration_ms=_duration_ms(call),
            ),
        )

    async def _finalize_node(self, state: BatchState) -> dict[str, Any]:
        batch = self._batches[state["batch_id"]]
        self._cancel_pending(batch)
        completed = [
            call for call in batch.calls.values() if is_completed(call)
        ]
        logger.debug(f"Batch {batch.batch_id} settled")
        if self.on_all_tool_calls_complete:
            self.on_all_tool_calls_complete(completed)
        return {"phase": "complete"}

    def _build_graph(self):
        graph = StateGraph(BatchState)

        graph.add_node("validate_tools", self._validate_tools_node)
        graph.add_node("wait_for_approval", self._wait_for_approval_node)
        graph.add_node("execute_tools", self._execute_tools_node)
        graph.add_node("finalize", self._finalize_node)

        graph.set_entry_point("validate_tools")
        graph.add_conditional_edges(
            "validate_tools",
            self._should_wait_for_approval,
            {
                "wait_for_approval": "wait_for_approval",
                "execute_tools": "execute_tools",
            },
        )
        graph.add_edge("wait_for_approval", "execute_tools")
        graph.add_edge("execute_tools", "finalize")
        graph.add_edge("finalize", END)

        return graph.compile()
