from .prompts import MODES, SYSTEM_PROMPTS, USER_INSTRUCTIONS, ModePolicy, build_user_turn, system_prompt
from .runner import DEFAULT_MAX_ITERATIONS, PhaseRunner, max_iterations_notice
from .session import ChatSession

__all__ = [
    "DEFAULT_MAX_ITERATIONS",
    "MODES",
    "SYSTEM_PROMPTS",
    "USER_INSTRUCTIONS",
    "ChatSession",
    "ModePolicy",
    "PhaseRunner",
    "build_user_turn",
    "max_iterations_notice",
    "system_prompt",
]
