"""Turn chat messages into rich renderables for the terminal."""

from __future__ import annotations

import base64
import logging
import re
import sys
from dataclasses import dataclass, field
from typing import IO

from rich.console import Group, RenderableType
from rich.markdown import Markdown
from rich.text import Text

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"^```[ \t]*([\w+#.-]*)[^\n]*\n(.*?)^```[ \t]*$", re.MULTILINE | re.DOTALL)

ROLE_STYLES = {
    "user": "bold cyan",
    "model": "bold magenta",
    "tool": "dim",
}
ROLE_LABELS = {
    "user": "You",
    "model": "AI",
    "tool": "Tool",
}


@dataclass
class CodeBlock:
    index: int
    language: str
    code: str


@dataclass
class RenderedMessage:
    role: str
    renderable: RenderableType
    code_blocks: list[CodeBlock] = field(default_factory=list)


def close_open_markup(text: str) -> str:
    """Close unterminated code fences and emphasis markers."""
    if not text:
        return text
    if len(re.findall(r"(?m)^```", text)) % 2 == 1:
        text += "\n```"
    for marker in ("***", "**", "__"):
        if text.count(marker) % 2 == 1:
            text += marker
    return text


def extract_code_blocks(text: str, start: int = 1) -> list[CodeBlock]:
    return [
        CodeBlock(index=i, language=m.group(1), code=m.group(2).rstrip("\n"))
        for i, m in enumerate(_FENCE_RE.finditer(text), start)
    ]


def render_markdown(text: str) -> RenderableType:
    """Markdown renderable; anything the parser chokes on is shown literally."""
    try:
        return Markdown(close_open_markup(text))
    except Exception:
        logger.debug("Markdown parse failed, falling back to plain text", exc_info=True)
        return Text(text)


def render_message(role: str, text: str, code_start: int = 1) -> RenderedMessage:
    """Render one message.

    ``model`` and ``tool`` text is markdown; ``user`` text is shown exactly as
    typed. Fenced code blocks are numbered from ``code_start`` and each gets a
    ``[copy N]`` hint.
    """
    label = Text(f"{ROLE_LABELS.get(role, role)}:", style=ROLE_STYLES.get(role, ""))

    if role == "user":
        return RenderedMessage(role=role, renderable=Group(label, Text(text)))

    blocks = extract_code_blocks(close_open_markup(text), code_start)
    parts: list[RenderableType] = [label, render_markdown(text)]
    if blocks:
        hints = "  ".join(f"[copy {b.index}]" for b in blocks)
        parts.append(Text(hints, style="dim"))
    return RenderedMessage(role=role, renderable=Group(*parts), code_blocks=blocks)


def render_tool_indicator(name: str) -> RenderableType:
    return Text(f"Using tool: {name}...", style="dim italic")


def render_error(message: str) -> RenderableType:
    return Text(message, style="bold red")


def copy_to_clipboard(code: str, stream: IO[str] | None = None) -> None:
    """Put ``code`` on the terminal's clipboard with an OSC 52 escape."""
    out = stream or sys.stdout
    payload = base64.b64encode(code.encode("utf-8")).decode("ascii")
    out.write(f"\x1b]52;c;{payload}\x07")
    out.flush()
