from __future__ import annotations

import re
from dataclasses import dataclass
from textwrap import dedent
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from .state import SynopsisRecord, Turn


END_MARKER = "<end of current synopsis>"

INJECTION_POSITIONS = ("in_prompt", "in_chat", "before_prompt", "none")
INJECTION_ROLES = ("system", "user", "assistant")

_PLACEHOLDER_PATTERN = re.compile(r"\{\{\s*([a-zA-Z_][a-zA-Z0-9_]*)\s*\}\}")
_REASONING_PATTERN = re.compile(
    r"<(think|thinking|reasoning)>.*?</\1>\s*",
    re.DOTALL | re.IGNORECASE,
)


class PromptTemplateError(ValueError):
    """Raised when a required prompt template is missing."""


@dataclass(frozen=True)
class SummaryPrompt:
    system_prompt: str
    messages: List[Dict[str, str]]

    @property
    def text(self) -> str:
        parts = [self.system_prompt] + [message["content"] for message in self.messages]
        return "\n\n".join(part for part in parts if part)

    def as_chat_messages(self) -> List[Dict[str, str]]:
        return [{"role": "system", "content": self.system_prompt}, *self.messages]


@dataclass(frozen=True)
class InjectionPrompt:
    text: str
    position: str
    depth: int
    role: str


def substitute_params(template: str, values: Mapping[str, str]) -> str:
    """Replace ``{{name}}`` placeholders; unknown names are left untouched."""
    lowered = {key.lower(): value for key, value in values.items()}

    def _replace(match: "re.Match[str]") -> str:
        key = match.group(1).lower()
        if key in lowered:
            return lowered[key]
        return match.group(0)

    return _PLACEHOLDER_PATTERN.sub(_replace, template or "")


def default_user_demand(char_name: str) -> str:
    return f"a story development that fits {char_name or 'the character'}'s personality"


def build_history_reference(records: Sequence[SynopsisRecord]) -> str:
    if not records:
        return ""
    history_text = "\n".join(
        f"Previous Synopsis #{position}: {record.content}" for position, record in enumerate(records, start=1)
    )
    return f"These are the previous {len(records)} synopsis(es) for reference:\n{history_text}"


def build_scriptwriter_prompt(
    template: str,
    *,
    user_demand: str,
    history_reference: str,
    char_name: str,
    user_name: str,
) -> str:
    if not (template or "").strip():
        raise PromptTemplateError("Scriptwriter prompt template is empty")
    return substitute_params(
        template,
        {
            "user_demand": user_demand or default_user_demand(char_name),
            "old_synopsis_reference": history_reference,
            "char": char_name or "Character",
            "user": user_name or "User",
        },
    ).strip()


def _format_existing_synopsis(previous_synopsis: str) -> str:
    synopsis = (previous_synopsis or "").strip()
    return synopsis if synopsis else "None"


def format_turn_line(index: int, turn: Turn) -> str:
    label = "narration" if turn.is_system else (turn.author.strip() or "unknown")
    payload = turn.text.strip()
    if payload:
        return f"[{index}] {label}: {payload}"
    return f"[{index}] {label}: (empty)"


@dataclass(frozen=True)
class PromptFrame:
    """Everything in a synopsis request except the conversation slice."""

    system_prompt: str
    previous_synopsis: str = ""

    def render(self, turn_lines: Sequence[str]) -> SummaryPrompt:
        body = "\n".join(turn_lines) if turn_lines else "(no new turns)"
        content = dedent(
            """
            Current synopsis:
            {existing}

            Conversation since the last synopsis:
            {body}
            """
        ).strip().format(existing=_format_existing_synopsis(self.previous_synopsis), body=body)
        return SummaryPrompt(
            system_prompt=self.system_prompt,
            messages=[{"role": "user", "content": content}],
        )


def strip_reasoning(text: str) -> str:
    """Drop ``<think>``-style reasoning blocks from generated text."""
    return _REASONING_PATTERN.sub("", text or "").strip()


def strip_end_marker(text: str) -> Tuple[str, bool]:
    if not text or END_MARKER not in text:
        return text, False
    return text.replace(END_MARKER, ""), True


def format_injection(
    synopsis: str,
    *,
    template: str,
    user_name: str,
    position: str,
    depth: Optional[int],
    role: str,
) -> InjectionPrompt:
    value = (synopsis or "").strip()
    if not value:
        text = ""
    elif template:
        text = substitute_params(template, {"synopsis": value, "user": user_name or "User"})
    else:
        text = value

    resolved_position = position if position in INJECTION_POSITIONS else "in_prompt"
    resolved_role = role if role in INJECTION_ROLES else "system"
    resolved_depth = depth if isinstance(depth, int) and depth >= 0 else 2
    return InjectionPrompt(text=text, position=resolved_position, depth=resolved_depth, role=resolved_role)


__all__ = [
    "END_MARKER",
    "InjectionPrompt",
    "PromptFrame",
    "PromptTemplateError",
    "SummaryPrompt",
    "build_history_reference",
    "build_scriptwriter_prompt",
    "default_user_demand",
    "format_injection",
    "format_turn_line",
    "strip_end_marker",
    "strip_reasoning",
    "substitute_params",
]
