"""
Base interface (Tool), abstract base class (BaseTool) and the validated
invocation handle that the scheduler carries between lifecycle states.
"""

from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import Any, ClassVar, Generic, Protocol, TypeVar

from pydantic import BaseModel, ConfigDict, ValidationError

from coding_agent_core.core.cancellation import CancelSignal
from coding_agent_core.core.types import ToolErrorType, ToolParamsError

from ..common import ToolCallConfirmationDetails

# --- Type Variables for Generics ---
TParams = TypeVar("TParams", bound=BaseModel)
TResult = TypeVar("TResult", bound="ToolResult")

OutputUpdateCallback = Callable[[str], None]


# --- Tool Result and Display Models ---
class FileDiff(BaseModel):
    """Represents a diff for a file change."""

    file_diff: str
    file_name: str
    original_content: str | None = None
    new_content: str | None = None


ToolResultDisplay = str | FileDiff


class ToolError(BaseModel):
    """An error reported by a tool without raising."""

    message: str
    type: ToolErrorType = ToolErrorType.EXECUTION_FAILED


class ToolResult(BaseModel):
    """Defines the structure for the result of a tool execution."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    # str, a single part dict, or a list of those
    llm_content: Any
    return_display: ToolResultDisplay
    error: ToolError | None = None


# --- Tool Protocol (Interface) ---
class Tool(Protocol[TParams, TResult]):
    """
    Protocol defining the basic contract for all tools.
    """

    name: str
    display_name: str
    description: str
    schema: dict[str, Any]
    is_output_markdown: bool
    can_update_output: bool

    def build(self, args: dict[str, Any]) -> "ToolInvocation": ...

    def validate_tool_params(self, params: TParams) -> str | None: ...

    def get_description(self, params: TParams) -> str: ...

    async def should_confirm_execute(
        self, params: TParams, abort_signal: CancelSignal | None = None
    ) -> ToolCallConfirmationDetails | bool: ...

    async def execute(
        self,
        params: TParams,
        signal: CancelSignal | None = None,
        update_output: OutputUpdateCallback | None = None,
    ) -> TResult: ...


# --- Abstract Base Tool Class ---
class BaseTool(ABC, Generic[TParams, TResult]):
    """
    Abstract base class providing common functionality for tools.

    Subclasses declare `params_model`; `build` runs it against raw model
    arguments and then applies `validate_tool_params` for the checks a
    schema cannot express.
    """

    params_model: ClassVar[type[BaseModel]]

    def __init__(
        self,
        name: str,
        display_name: str,
        description: str,
        parameter_schema: dict[str, Any],
        is_output_markdown: bool = True,
        can_update_output: bool = False,
    ):
        self.name = name
        self.display_name = display_name
        self.description = description
        self.parameter_schema = parameter_schema
        self.is_output_markdown = is_output_markdown
        self.can_update_output = can_update_output

    @property
    def schema(self) -> dict[str, Any]:
        """The function declaration schema for the tool."""
        return {
            "name": self.name,
            "description": self.description,
            "parameters": self.parameter_schema,
        }

    def build(self, args: dict[str, Any]) -> "ToolInvocation[TParams]":
        try:
            params = self.params_model.model_validate(args or {})
        except ValidationError as e:
            raise ToolParamsError(
                f"Invalid parameters for {self.name}: {e}", self.name
            ) from e
        validation_error = self.validate_tool_params(params)
        if validation_error:
            raise ToolParamsError(validation_error, self.name)
        return ToolInvocation(self, params)

    def validate_tool_params(self, params: TParams) -> str | None:
        return None

    def get_description(self, params: TParams) -> str:
        """Default description generator."""
        return params.model_dump_json()

    async def should_confirm_execute(
        self, params: TParams, abort_signal: CancelSignal | None = None
    ) -> ToolCallConfirmationDetails | bool:
        """Default confirmation behavior: no confirmation needed."""
        return False

    @abstractmethod
    async def execute(
        self,
        params: TParams,
        signal: CancelSignal | None = None,
        update_output: OutputUpdateCallback | None = None,
    ) -> TResult:
        """Abstract method for the core tool logic."""
        raise NotImplementedError


class ToolInvocation(Generic[TParams]):
    """A tool bound to parameters that already passed validation."""

    def __init__(self, tool: BaseTool, params: TParams):
        self.tool = tool
        self.params = params

    def get_description(self) -> str:
        return self.tool.get_description(self.params)

    async def should_confirm_execute(
        self, signal: CancelSignal | None = None
    ) -> ToolCallConfirmationDetails | bool:
        return await self.tool.should_confirm_execute(self.params, signal)

    async def execute(
        self,
        signal: CancelSignal | None = None,
        update_output: OutputUpdateCallback | None = None,
    ) -> ToolResult:
        return await self.tool.execute(self.params, signal, update_output)

    def __repr__(self) -> str:
        return f"ToolInvocation({self.tool.name}, {self.params!r})"
