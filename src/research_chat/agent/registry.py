"""Tool contract and registry built on Pydantic v2 models."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Iterable, Mapping
from typing import Any, ClassVar

from langchain_core.tools import StructuredTool
from pydantic import BaseModel, ValidationError

from research_chat.agent.wrapper import ExecutionWrapper, ToolObserver
from research_chat.errors import ToolInputError
from research_chat.streaming.channel import EventChannel, ProgressTracker
from research_chat.types import ToolFailure, ToolResult

logger = logging.getLogger(__name__)


class ToolDescriptor(BaseModel):
    """What the model sees of a tool."""

    name: str
    description: str
    parameters: dict[str, Any]


class Tool(ABC):
    """Base class for every tool.

    Subclasses declare ``name``, ``description`` and ``args_schema`` and
    implement ``run``. ``execute`` validates the payload, runs the tool and
    converts every failure into a ``ToolFailure``; nothing raised inside a
    tool crosses this boundary.
    """

    name: ClassVar[str]
    description: ClassVar[str]
    args_schema: ClassVar[type[BaseModel]]
    # Prepended to unexpected error messages, e.g. "Extraction failed".
    error_prefix: ClassVar[str] = ""

    def bind_user(self, user_id: str) -> "Tool":
        """Return the tool scoped to ``user_id``; unscoped tools return themselves."""
        return self

    def describe(self) -> ToolDescriptor:
        return ToolDescriptor(
            name=self.name,
            description=self.description,
            parameters=self.args_schema.model_json_schema(),
        )

    async def execute(
        self,
        payload: Mapping[str, Any] | BaseModel | None,
        *,
        channel: EventChannel | None = None,
    ) -> ToolResult:
        try:
            params = (
                payload
                if isinstance(payload, self.args_schema)
                else self.args_schema.model_validate(dict(payload or {}))
            )
        except ValidationError as exc:
            return ToolFailure(validation_message(exc))

        progress = ProgressTracker(channel, operation=self.name)
        try:
            return await self.run(params, progress)
        except ToolInputError as exc:
            return ToolFailure(str(exc))
        except Exception as exc:
            logger.warning(
                "Tool raised during run",
                extra={"tool": self.name, "error": str(exc), "error_type": type(exc).__name__},
            )
            if progress.started and not progress.finished:
                progress.fail(str(exc) or "Tool failed")
            message = str(exc)
            if not message:
                return ToolFailure(f"Failed to execute {self.name} tool")
            return ToolFailure(f"{self.error_prefix}: {message}" if self.error_prefix else message)

    @abstractmethod
    async def run(self, params: Any, progress: ProgressTracker) -> ToolResult:
        """Do the tool's work with already validated parameters."""


def require_text(value: str | None, label: str) -> str:
    if value is None or not value.strip():
        raise ToolInputError(f"{label} cannot be empty")
    return value.strip()


def require_items(values: list[Any] | None, label: str) -> list[Any]:
    if not values:
        raise ToolInputError(f"{label} cannot be empty")
    return values


def validation_message(exc: ValidationError) -> str:
    """Render the first validation error the way tool failures read."""
    errors = exc.errors()
    if not errors:
        return str(exc)
    first = errors[0]
    field = ".".join(str(part) for part in first.get("loc", ())) or "input"
    if first.get("type") in {"missing", "string_too_short", "too_short"}:
        return f"{field} cannot be empty"
    return f"{field}: {first.get('msg', 'invalid value')}"


class ToolRegistry:
    """Ordered, read-only-after-startup mapping from tool name to tool."""

    def __init__(self, tools: Iterable[Any] | None = None) -> None:
        self._tools: dict[str, Any] = {}
        self._observer: ToolObserver | None = None
        for tool in tools or ():
            self.register(tool)

    def register(self, tool: Any) -> None:
        name = getattr(tool, "name", None)
        if not name:
            raise ValueError("Tool must declare a name")
        if name in self._tools:
            raise ValueError(f"Tool already registered: {name}")
        self._tools[name] = tool

    def set_observer(self, observer: ToolObserver | None) -> None:
        """Set an optional callback invoked after each wrapped execution."""
        self._observer = observer

    def get(self, name: str) -> Any:
        tool = self._tools.get(name)
        if tool is None:
            raise KeyError(f"Unknown tool: {name}")
        return tool

    def names(self) -> list[str]:
        return list(self._tools)

    def descriptors(self) -> list[ToolDescriptor]:
        return [_describe(tool) for tool in self._usable().values()]

    def wrappers(
        self,
        *,
        channel: EventChannel | None = None,
        user_id: str | None = None,
    ) -> dict[str, ExecutionWrapper]:
        return {
            name: ExecutionWrapper(_bind_user(tool, user_id), channel=channel, observer=self._observer)
            for name, tool in self._usable().items()
        }

    def tools_config(
        self,
        *,
        channel: EventChannel | None = None,
        user_id: str | None = None,
    ) -> dict[str, StructuredTool]:
        """Model-invocable tools keyed by name, each behind an ExecutionWrapper.

        Entries without a callable ``execute`` or a pydantic ``args_schema``
        are skipped with a warning instead of failing startup. ``user_id``
        scopes user-owned data; it is never part of a tool's arguments.
        """
        config: dict[str, StructuredTool] = {}
        for name, wrapper in self.wrappers(channel=channel, user_id=user_id).items():
            tool = wrapper.tool
            config[name] = StructuredTool.from_function(
                coroutine=wrapper.as_coroutine(),
                name=name,
                description=getattr(tool, "description", "") or name,
                args_schema=tool.args_schema,
                handle_validation_error=validation_message,
            )
        return config

    async def execute(
        self,
        name: str,
        payload: Mapping[str, Any] | None,
        *,
        channel: EventChannel | None = None,
        user_id: str | None = None,
    ) -> Any:
        tool = _bind_user(self.get(name), user_id)
        return await ExecutionWrapper(tool, channel=channel, observer=self._observer).invoke(payload)

    def _usable(self) -> dict[str, Any]:
        usable: dict[str, Any] = {}
        for name, tool in self._tools.items():
            if not _is_well_formed(tool):
                logger.warning("Skipping malformed tool entry", extra={"tool": name})
                continue
            usable[name] = tool
        return usable


def _describe(tool: Any) -> ToolDescriptor:
    if isinstance(tool, Tool):
        return tool.describe()
    return ToolDescriptor(
        name=tool.name,
        description=getattr(tool, "description", "") or tool.name,
        parameters=tool.args_schema.model_json_schema(),
    )


def _bind_user(tool: Any, user_id: str | None) -> Any:
    bind = getattr(tool, "bind_user", None)
    if user_id is None or not callable(bind):
        return tool
    return bind(user_id)


def _is_well_formed(tool: Any) -> bool:
    if not callable(getattr(tool, "execute", None)):
        return False
    schema = getattr(tool, "args_schema", None)
    return isinstance(schema, type) and issubclass(schema, BaseModel)
