"""One conversation session at the caller boundary."""

from __future__ import annotations

import logging
from typing import Optional

from ..error_handling import SessionBusyError
from ..provider_ir import ExecutionContext, PhaseResult, Selection
from .prompts import ModePolicy
from .runner import ChunkCallback, CompleteCallback, PhaseRunner


logger = logging.getLogger(__name__)


class ChatSession:
    """Turns user text into one streamed phase invocation.

    Overlapping requests are rejected with ``SessionBusyError`` instead of
    being queued.
    """

    def __init__(
        self,
        runner: PhaseRunner,
        workspace_root: str,
        *,
        policy: Optional[ModePolicy] = None,
    ) -> None:
        self.runner = runner
        self.workspace_root = workspace_root
        self.policy = policy or ModePolicy()
        self._processing = False

    @property
    def busy(self) -> bool:
        return self._processing

    async def send(
        self,
        text: str,
        on_chunk: Optional[ChunkCallback] = None,
        on_complete: Optional[CompleteCallback] = None,
        *,
        selection: Optional[Selection] = None,
        mode: Optional[str] = None,
    ) -> PhaseResult:
        if self._processing:
            raise SessionBusyError("A request is already being processed in this session")

        self._processing = True
        try:
            phase = mode or self.policy.determine_mode(text)
            request = None if self.policy.is_mode_name(text) else text
            context = ExecutionContext(
                workspace_root=self.workspace_root,
                selection=selection,
                history=self.runner.get_history(),
            )
            return await self.runner.execute_phase_stream(
                phase,
                context,
                on_chunk or (lambda _chunk: None),
                on_complete,
                request=request,
            )
        finally:
            self._processing = False

    def clear_history(self) -> None:
        self.runner.clear_history()
