"""Prompt templates for the suggestion agent.

The system prompt is rebuilt every cycle so the widget and function lists always
reflect the current session.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Iterable, Sequence

from .tools.registry import TOOL_SPECS, ToolSpec

if TYPE_CHECKING:  # pragma: no cover
    from ..services.widgets import WidgetPackage

# Documents above this size are truncated in the per-cycle snapshot; the model
# can still read everything through get_document.
LARGE_DOC_CHAR_THRESHOLD = 20_000


def system_prompt(
    widgets: Sequence[WidgetPackage] = (),
    tools: Iterable[ToolSpec] = TOOL_SPECS,
) -> str:
    """Generate the system prompt sent at the top of every request."""
    return f"""{_personality_section()}

## Document format

{_format_section()}

## Widgets

{_widget_section(widgets)}

## Functions

{_function_section(tools)}

## Guidelines

{_guidelines_section()}
"""


def _personality_section() -> str:
    return """You are the writing assistant of an HTML document editor that lets users create
interactive documents. Help the user with their writing tasks: answer questions,
give suggestions and draft or revise content. Be helpful, friendly and professional,
stay on the topic of the document, and reply in the language the user writes in."""


def _format_section() -> str:
    return """The document is HTML. Besides basic tags such as p, h1, h2, ul or span it may contain
custom elements that provide interactive behaviour. Towards the user, call them
"widgets". You MUST fetch the documentation of a widget before using its tag, and you
must not use attributes, slots or events the documentation does not declare. Do not
create markup with capabilities beyond basic HTML and the documented widgets."""


def _widget_section(widgets: Sequence[WidgetPackage]) -> str:
    if not widgets:
        return "No widgets are installed for this document."
    lines = [f"- **{package.name}**" + (f": {package.description}" if package.description else "") for package in widgets]
    return "\n".join(lines)


def _function_section(tools: Iterable[ToolSpec]) -> str:
    lines = [f"- **{spec.name}** - {spec.description}" for spec in tools]
    lines.append("")
    lines.append(
        "Every change you make through these functions is shown to the user as a suggestion; "
        "the user decides whether to accept or reject it. You cannot change the document "
        "in any other way."
    )
    return "\n".join(lines)


def _guidelines_section() -> str:
    return """- Make sure you understood the request before changing anything; ask when unsure.
- If the user likely refers to document content, work from the latest document
  snapshot or call get_document first.
- When you suggest a change, explain briefly what you changed and why.
- Never show code or markup to the user directly and do not explain how the document
  is stored; use the functions instead.
- Be proactive about improvements, but respect the user's choices."""


def document_snapshot(html: str, *, title: str | None = None) -> str:
    """Build the ephemeral message carrying the live document."""

    header = f"Current document ({title})" if title else "Current document"
    if not html.strip():
        return f"{header}: the document is empty."
    body = html
    note = ""
    if len(html) > LARGE_DOC_CHAR_THRESHOLD:
        body = html[:LARGE_DOC_CHAR_THRESHOLD]
        note = f"\n\n[Truncated after {LARGE_DOC_CHAR_THRESHOLD} of {len(html)} characters; call get_document for the rest.]"
    return f"{header}:\n\n```html\n{body}\n```{note}"


def widget_list(widgets: Sequence[WidgetPackage]) -> str:
    """Build the ephemeral message listing installed widgets."""

    if not widgets:
        return "Installed widgets: none."
    lines = ["Installed widgets:"]
    for package in widgets:
        entry = f"- {package.name}"
        if package.version:
            entry += f"@{package.version}"
        lines.append(entry)
    return "\n".join(lines)


__all__ = [
    "LARGE_DOC_CHAR_THRESHOLD",
    "document_snapshot",
    "system_prompt",
    "widget_list",
]
