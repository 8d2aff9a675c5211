"""Closed tool set advertised to the model.

Each tool is a frozen dataclass variant with a declared JSON-schema contract.
Tool names arriving from the model are untrusted strings, so
:func:`parse_tool_call` is the one place they are checked and turned into a
variant; everything downstream works with the typed variants only.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Mapping, Sequence, Union

from jsonschema import Draft7Validator

from .errors import ErrorCode, ValidationError

LOGGER = logging.getLogger(__name__)

MAX_SCHEMA_ERRORS = 10


# -----------------------------------------------------------------------------
# Tool variants
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class GetDocument:
    """Read the current document HTML."""


@dataclass(slots=True, frozen=True)
class ReplaceElement:
    selector: str
    html: str


@dataclass(slots=True, frozen=True)
class InsertAtBottom:
    html: str


@dataclass(slots=True, frozen=True)
class InsertIntoElement:
    selector: str
    html: str


@dataclass(slots=True, frozen=True)
class GetWidgetDocumentation:
    name: str


@dataclass(slots=True, frozen=True)
class ListWidgets:
    """List installable widget packages."""


@dataclass(slots=True, frozen=True)
class LatexToMathml:
    latex: str
    display: str = "inline"


ToolCallVariant = Union[
    GetDocument,
    ReplaceElement,
    InsertAtBottom,
    InsertIntoElement,
    GetWidgetDocumentation,
    ListWidgets,
    LatexToMathml,
]


# -----------------------------------------------------------------------------
# Schemas
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class ParameterSchema:
    """Schema for a single tool parameter."""

    name: str
    type: str
    description: str
    required: bool = True
    enum: Sequence[Any] | None = None
    min_length: int | None = None

    def to_json_schema(self) -> dict[str, Any]:
        schema: dict[str, Any] = {
            "type": self.type,
            "description": self.description,
        }
        if self.enum:
            schema["enum"] = list(self.enum)
        if self.min_length is not None:
            schema["minLength"] = self.min_length
        return schema


@dataclass(slots=True, frozen=True)
class ToolSpec:
    """Complete contract of one tool.

    Attributes:
        name: Tool identifier used by the model.
        variant: Dataclass the arguments are parsed into.
        description: Description shown to the model.
        friendly_name: Progress label shown to the user while the tool runs.
        parameters: Declared parameters.
        writes_document: Whether the tool creates suggestions.
    """

    name: str
    variant: type
    description: str
    friendly_name: str
    parameters: tuple[ParameterSchema, ...] = ()
    writes_document: bool = False

    def parameters_schema(self) -> dict[str, Any]:
        properties: dict[str, Any] = {}
        required: list[str] = []
        for param in self.parameters:
            properties[param.name] = param.to_json_schema()
            if param.required:
                required.append(param.name)
        schema: dict[str, Any] = {
            "type": "object",
            "properties": properties,
            "additionalProperties": False,
        }
        if required:
            schema["required"] = required
        return schema

    def to_openai_tool(self) -> dict[str, Any]:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters_schema(),
            },
        }


_SELECTOR = ParameterSchema(
    "selector",
    "string",
    "CSS selector identifying the element, e.g. 'h1', '#intro' or 'section > p:nth-of-type(2)'.",
    min_length=1,
)
_HTML = ParameterSchema("html", "string", "HTML fragment to insert.", min_length=1)

TOOL_SPECS: tuple[ToolSpec, ...] = (
    ToolSpec(
        name="get_document",
        variant=GetDocument,
        description="Return the current HTML content of the document, including pending suggestions.",
        friendly_name="Reading the document...",
    ),
    ToolSpec(
        name="replace_element",
        variant=ReplaceElement,
        description=(
            "Suggest replacing the first element matching a CSS selector with new HTML. "
            "The change is shown to the user as a suggestion they can accept or reject."
        ),
        friendly_name="Suggesting a replacement...",
        parameters=(_SELECTOR, _HTML),
        writes_document=True,
    ),
    ToolSpec(
        name="insert_at_bottom",
        variant=InsertAtBottom,
        description="Suggest appending HTML at the end of the document.",
        friendly_name="Suggesting new content...",
        parameters=(_HTML,),
        writes_document=True,
    ),
    ToolSpec(
        name="insert_into_element",
        variant=InsertIntoElement,
        description="Suggest appending HTML as the last child of the first element matching a CSS selector.",
        friendly_name="Suggesting new content...",
        parameters=(_SELECTOR, _HTML),
        writes_document=True,
    ),
    ToolSpec(
        name="get_widget_documentation",
        variant=GetWidgetDocumentation,
        description=(
            "Fetch the README and the element declarations (attributes, slots, events) of an "
            "installed widget package. Call this before using any widget tag."
        ),
        friendly_name="Reading widget documentation...",
        parameters=(
            ParameterSchema("name", "string", "Package name as listed by list_widgets.", min_length=1),
        ),
    ),
    ToolSpec(
        name="list_widgets",
        variant=ListWidgets,
        description="List the widget packages available to this document.",
        friendly_name="Looking up widgets...",
    ),
    ToolSpec(
        name="latex_to_mathml",
        variant=LatexToMathml,
        description="Convert a LaTeX math expression to MathML markup that can be inserted into the document.",
        friendly_name="Typesetting math...",
        parameters=(
            ParameterSchema("latex", "string", "LaTeX source without surrounding $ delimiters.", min_length=1),
            ParameterSchema(
                "display",
                "string",
                "Render as an inline formula or a display block.",
                required=False,
                enum=("inline", "block"),
            ),
        ),
    ),
)

_SPECS_BY_NAME: dict[str, ToolSpec] = {spec.name: spec for spec in TOOL_SPECS}


def get_spec(name: str) -> ToolSpec | None:
    return _SPECS_BY_NAME.get(name)


def tool_schemas() -> list[dict[str, Any]]:
    """Return the function tool list sent with every model request."""

    return [spec.to_openai_tool() for spec in TOOL_SPECS]


def friendly_name(name: str) -> str:
    spec = _SPECS_BY_NAME.get(name)
    return spec.friendly_name if spec else name


# -----------------------------------------------------------------------------
# Parsing
# -----------------------------------------------------------------------------


def parse_tool_arguments(arguments: str | Mapping[str, Any] | None) -> dict[str, Any]:
    """Parse tool arguments from a JSON string or mapping.

    Raises:
        ValueError: If the arguments are not a JSON object.
    """
    if arguments is None:
        return {}
    if isinstance(arguments, Mapping):
        return dict(arguments)
    if not arguments.strip():
        return {}
    try:
        parsed = json.loads(arguments)
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid JSON in tool arguments: {e}") from e
    if not isinstance(parsed, dict):
        raise ValueError(f"Arguments must be a JSON object, got {type(parsed).__name__}")
    return parsed


def _format_schema_path(path: Sequence[Any]) -> str:
    return ".".join(str(part) for part in path)


def parse_tool_call(name: str, arguments: str | Mapping[str, Any] | None) -> ToolCallVariant:
    """Turn an untrusted tool call into a typed variant.

    Raises:
        ValidationError: For unknown tool names, malformed JSON, or arguments
            violating the tool's schema.
    """

    spec = _SPECS_BY_NAME.get(name)
    if spec is None:
        raise ValidationError(
            error_code=ErrorCode.UNKNOWN_TOOL,
            message=f"Tool '{name}' does not exist.",
            suggestion=f"Use one of: {', '.join(_SPECS_BY_NAME)}",
            tool_name=name,
        )

    try:
        args = parse_tool_arguments(arguments)
    except ValueError as exc:
        raise ValidationError(message=str(exc), tool_name=name) from exc

    validator = Draft7Validator(spec.parameters_schema())
    problems: list[str] = []
    for issue in sorted(validator.iter_errors(args), key=lambda e: list(e.absolute_path)):
        path = _format_schema_path(issue.absolute_path)
        problems.append(f"{path}: {issue.message}" if path else issue.message)
        if len(problems) >= MAX_SCHEMA_ERRORS:
            break
    if problems:
        LOGGER.debug("Rejected arguments for %s: %s", name, problems)
        raise ValidationError(
            message=f"Invalid arguments for {name}: {problems[0]}",
            details={"errors": problems},
            tool_name=name,
        )

    return spec.variant(**args)


__all__ = [
    "GetDocument",
    "ReplaceElement",
    "InsertAtBottom",
    "InsertIntoElement",
    "GetWidgetDocumentation",
    "ListWidgets",
    "LatexToMathml",
    "ToolCallVariant",
    "ParameterSchema",
    "ToolSpec",
    "TOOL_SPECS",
    "friendly_name",
    "get_spec",
    "parse_tool_arguments",
    "parse_tool_call",
    "tool_schemas",
]
