"""Fixed per-mode prompts and the free-text mode selection policy."""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Dict, Optional, Sequence, Tuple

from ..provider_ir import Mode


MODES: Tuple[Mode, ...] = ("plan", "review", "phases")

SYSTEM_PROMPTS: Dict[str, str] = {
    "review": "You are a code review agent. Analyze the provided context and files mentioned.",
    "plan": "You are a technical architect. Create a step-by-step implementation plan using available tools.",
    "phases": (
        "You are a project analyst. Clarify the user's intent, discover the relevant context with the "
        "available tools, and break the work into ordered implementation phases."
    ),
}

USER_INSTRUCTIONS: Dict[str, str] = {
    "review": "Review the current workspace state.",
    "plan": "Help me plan my next steps.",
    "phases": "Break the work into implementation phases.",
}

DEFAULT_KEYWORDS: Tuple[Tuple[str, str], ...] = (("review", "review"), ("phase", "phases"))
DEFAULT_MODE = "plan"


@dataclass(frozen=True)
class ModePolicy:
    """Maps free text to a mode.

    An exact (case-insensitive) mode name wins; otherwise the first keyword
    contained in the text selects its mode; otherwise ``default``.
    """

    keywords: Tuple[Tuple[str, str], ...] = DEFAULT_KEYWORDS
    default: str = DEFAULT_MODE
    modes: Tuple[str, ...] = MODES

    def __post_init__(self) -> None:
        unknown = [mode for _, mode in self.keywords if mode not in self.modes]
        if self.default not in self.modes:
            unknown.append(self.default)
        if unknown:
            raise ValueError(f"Unknown mode(s): {', '.join(sorted(set(unknown)))}")

    @classmethod
    def from_config(cls, data: Optional[Dict[str, Any]]) -> "ModePolicy":
        if not data:
            return cls()
        keywords: Sequence[Any] = data.get("keywords") or DEFAULT_KEYWORDS
        pairs = tuple(
            (str(item["keyword"]), str(item["mode"])) if isinstance(item, dict) else (str(item[0]), str(item[1]))
            for item in keywords
        )
        return cls(keywords=pairs, default=str(data.get("default") or DEFAULT_MODE))

    def is_mode_name(self, text: str) -> bool:
        return text.strip().lower() in self.modes

    def determine_mode(self, text: str) -> str:
        lowered = text.strip().lower()
        if lowered in self.modes:
            return lowered
        for keyword, mode in self.keywords:
            if keyword.lower() in lowered:
                return mode
        return self.default


def system_prompt(mode: str) -> str:
    try:
        return SYSTEM_PROMPTS[mode]
    except KeyError:
        raise ValueError(f"Unknown mode: {mode}") from None


def build_user_turn(mode: str, provider_context: Dict[str, Any], request: Optional[str] = None) -> str:
    parts = [f"Context: {json.dumps(provider_context, default=str)}"]
    if request and request.strip():
        parts.append(f"Request: {request.strip()}")
    parts.append(USER_INSTRUCTIONS[mode])
    return "\n".join(parts)
