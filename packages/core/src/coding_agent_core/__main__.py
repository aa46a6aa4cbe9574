import argparse
import asyncio
import json
import logging
import signal
import sys
import threading

from coding_agent_core.config import Config, create_tool_registry
from coding_agent_core.core.cancellation import CancelSignal
from coding_agent_core.core.confirmation_policy import ConfirmationPolicy
from coding_agent_core.core.scheduler import CoreToolScheduler
from coding_agent_core.core.tool_calls import (
    CompletedToolCall,
    ToolCall,
    ToolCallRequestInfo,
    WaitingToolCall,
)
from coding_agent_core.core.types import ApprovalMode
from coding_agent_core.tools.base.tool_base import FileDiff
from coding_agent_core.tools.common import ToolConfirmationOutcome
from coding_agent_core.tools.shell.shell_tool import ShellTool

logger = logging.getLogger("coding_agent_core")

_ANSWERS = {
    "y": ToolConfirmationOutcome.PROCEED_ONCE,
    "a": ToolConfirmationOutcome.PROCEED_ALWAYS,
    "s": ToolConfirmationOutcome.PROCEED_ALWAYS_SERVER,
    "e": ToolConfirmationOutcome.MODIFY_WITH_EDITOR,
    "n": ToolConfirmationOutcome.CANCEL,
}


def setup_logging(debug: bool = False) -> None:
    level = logging.DEBUG if debug else logging.INFO

    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def _parse_call(value: str) -> tuple[str, dict]:
    name, _, raw_args = value.partition("=")
    if not name:
        raise argparse.ArgumentTypeError("expected NAME=JSON")
    try:
        args = json.loads(raw_args) if raw_args else {}
    except json.JSONDecodeError as e:
        raise argparse.ArgumentTypeError(f"invalid JSON arguments: {e}")
    if not isinstance(args, dict):
        raise argparse.ArgumentTypeError("arguments must be a JSON object")
    return name, args


def _parse_shell(value: str) -> tuple[str, dict]:
    return ShellTool.NAME, {"command": value}


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="coding-agent-core",
        description="Run tool calls through the scheduler with terminal confirmation.",
    )
    parser.add_argument(
        "--call",
        dest="requests",
        action="append",
        type=_parse_call,
        metavar="NAME=JSON",
        help='Tool call to run, e.g. list_directory=\'{"path": "/tmp"}\'',
    )
    parser.add_argument(
        "--shell",
        dest="requests",
        action="append",
        type=_parse_shell,
        metavar="CMD",
        help="Shell command to run (shorthand for run_shell_command)",
    )
    parser.add_argument(
        "--target-dir",
        help="Project root for all tools (default: current directory)",
    )
    parser.add_argument(
        "--approval-mode",
        choices=[mode.value for mode in ApprovalMode],
        help="Confirmation policy (default: default)",
    )
    parser.add_argument(
        "--editor",
        help="Diff editor used when choosing [e]dit (e.g. vim, vscode)",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug mode",
    )

    args = parser.parse_args(argv)
    if not args.requests:
        parser.error("at least one --call or --shell is required")
    return args


def _describe_confirmation(call: WaitingToolCall) -> str:
    details = call.confirmation_details
    if details.type == "exec":
        return f"{details.title}\n  {details.command}"
    if details.type == "edit":
        return f"{details.title}\n{details.file_diff}"
    if details.type == "mcp":
        return (
            f"{details.title}\n  {details.tool_name} "
            f"on MCP server '{details.server_name}'"
        )
    urls = "\n".join(f"  - {url}" for url in details.urls or [])
    return f"{details.title}\n  {details.prompt}\n{urls}".rstrip()


def _ask(call: WaitingToolCall) -> ToolConfirmationOutcome:
    print(_describe_confirmation(call), flush=True)
    while True:
        try:
            answer = input(
                "Allow? [y]es once / [a]lways / [s]erver / [e]dit / [n]o: "
            )
        except EOFError:
            return ToolConfirmationOutcome.CANCEL
        outcome = _ANSWERS.get(answer.strip().lower()[:1])
        if outcome is not None:
            return outcome


def _ask_in_background(call: WaitingToolCall) -> asyncio.Future:
    """
    Prompts on a daemon thread so that an abort never waits for the user to
    press Enter. The returned future may be cancelled while the prompt is
    still open.
    """
    loop = asyncio.get_running_loop()
    future = loop.create_future()

    def resolve(outcome, error) -> None:
        if future.done():
            return
        if error is not None:
            future.set_exception(error)
        else:
            future.set_result(outcome)

    def prompt() -> None:
        outcome, error = None, None
        try:
            outcome = _ask(call)
        except Exception as e:
            error = e
        try:
            loop.call_soon_threadsafe(resolve, outcome, error)
        except RuntimeError:
            logger.debug(f"Dropping answer for {call.call_id}: loop closed")

    threading.Thread(
        target=prompt, name=f"confirm-{call.call_id}", daemon=True
    ).start()
    return future


def _format_result(call: CompletedToolCall) -> str:
    display = call.response.result_display
    if isinstance(display, FileDiff):
        display = display.file_diff
    header = f"[{call.status}] {call.request.name} ({call.call_id})"
    return f"{header}\n{display}" if display else header


async def run(
    config: Config,
    requests: list[ToolCallRequestInfo],
    abort: CancelSignal | None = None,
) -> int:
    registry = create_tool_registry(config)
    policy = ConfirmationPolicy(config.create_session())
    abort = abort or CancelSignal()

    latest: dict[str, ToolCall] = {}
    prompted: set[str] = set()
    prompt_lock = asyncio.Lock()
    confirm_tasks: list[asyncio.Task] = []
    printed_output: dict[str, str] = {}

    async def confirm(call_id: str) -> None:
        async with prompt_lock:
            # The editor path leaves the call awaiting, so ask again.
            while True:
                call = latest.get(call_id)
                if not isinstance(call, WaitingToolCall):
                    return
                outcome = await _ask_in_background(call)
                await call.confirmation_details.on_confirm(outcome, None)

    def on_tool_calls_update(calls: list[ToolCall]) -> None:
        for call in calls:
            latest[call.call_id] = call
            if isinstance(call, WaitingToolCall) and call.call_id not in prompted:
                prompted.add(call.call_id)
                confirm_tasks.append(asyncio.create_task(confirm(call.call_id)))

    def on_output(call_id: str, output: str) -> None:
        previous = printed_output.get(call_id, "")
        if output.startswith(previous):
            sys.stdout.write(output[len(previous) :])
        else:
            sys.stdout.write(f"\n{output}")
        sys.stdout.flush()
        printed_output[call_id] = output

    scheduler = CoreToolScheduler(
        registry,
        policy,
        on_tool_calls_update=on_tool_calls_update,
        output_update_handler=on_output,
        get_preferred_editor=config.get_preferred_editor,
    )

    loop = asyncio.get_running_loop()
    handle_sigint = sys.platform != "win32"
    if handle_sigint:
        loop.add_signal_handler(
            signal.SIGINT, abort.set, "User cancelled the operation."
        )

    try:
        completed = await scheduler.schedule(requests, abort)
    finally:
        if handle_sigint:
            loop.remove_signal_handler(signal.SIGINT)

    # Prompts still open belong to calls the batch has already settled.
    for task in confirm_tasks:
        task.cancel()
    results = await asyncio.gather(*confirm_tasks, return_exceptions=True)
    for error in results:
        if isinstance(error, Exception):
            logger.error(f"Confirmation prompt failed: {error}")

    if printed_output:
        print()
    for call in completed:
        print(_format_result(call))
    return 0 if all(call.status == "success" for call in completed) else 1


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    setup_logging(args.debug)

    overrides = {
        "target_dir": args.target_dir,
        "approval_mode": args.approval_mode,
        "preferred_editor": args.editor,
        "debug_mode": args.debug or None,
    }
    config = Config(
        **{key: value for key, value in overrides.items() if value is not None},
    )

    requests = [
        ToolCallRequestInfo(
            call_id=f"cli-{index}",
            name=name,
            args=tool_args,
            is_client_initiated=True,
            prompt_id=config.get_session_id(),
        )
        for index, (name, tool_args) in enumerate(args.requests, 1)
    ]

    logger.debug(f"Target directory: {config.get_target_dir()}")
    try:
        return asyncio.run(run(config, requests))
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    sys.exit(main())
