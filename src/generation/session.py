"""
Per-generation session state machine.

    idle -> streaming -> finalizing -> ready | failed

`ready` and `failed` both accept a new request; `begin()` resets every piece
of session-scoped state. Only one generation may be in flight per session.
"""

import uuid
from typing import AsyncIterator, List, Optional

from common.errors import ProviderError, SessionBusyError
from common.logging import TimedLogger, get_logger
from common.models import (
    ChunkType,
    EventType,
    FinalizedProject,
    GenerationRequest,
    PlanStep,
    SessionEvent,
    SessionState,
    StepStatus,
    StreamChunk,
)
from generation.bundler import bundle
from generation.extractor import IncrementalExtractor
from generation.finalizer import finalize

logger = get_logger(__name__)

FALLBACK_STEPS = [
    ("Analyzing request", "Understanding your requirements..."),
    ("Planning architecture", "Designing component structure..."),
    ("Building", "Generating production code..."),
    ("Optimizing", "Adding responsive design & animations..."),
    ("Complete", "Ready for preview!"),
]

_IN_FLIGHT = (SessionState.STREAMING, SessionState.FINALIZING)


def fallback_steps() -> List[PlanStep]:
    steps = [PlanStep(title=title, description=description) for title, description in FALLBACK_STEPS]
    steps[0].status = StepStatus.ACTIVE
    return steps


class GenerationSession:
    """Owns AccumulatedText, the step list and the working file set for one generation."""

    def __init__(self, session_id: Optional[str] = None):
        self.session_id = session_id or uuid.uuid4().hex
        self.state = SessionState.IDLE
        self.extractor = IncrementalExtractor()
        self._reset()

    def _reset(self) -> None:
        self.request: Optional[GenerationRequest] = None
        self.text = ""
        self.notices: List[str] = []
        self.extractor.reset()
        self.result: Optional[FinalizedProject] = None
        self.document: Optional[str] = None
        self.error: Optional[str] = None
        self._fallback_stage = 0

    @property
    def busy(self) -> bool:
        return self.state in _IN_FLIGHT

    @property
    def overview(self) -> str:
        return self.extractor.overview

    @property
    def steps(self) -> List[PlanStep]:
        return self.extractor.steps

    @property
    def files(self):
        return self.extractor.files

    def begin(self, request: GenerationRequest) -> None:
        """Start a new generation, discarding everything from the previous one."""
        if self.busy:
            raise SessionBusyError("A generation is already in progress")
        self._reset()
        self.request = request
        self.extractor.steps = fallback_steps()
        self.state = SessionState.STREAMING
        logger.info(event="session_started", session_id=self.session_id, mode=request.mode.value)

    def cancel(self) -> None:
        """Abort and return to idle. Partial state is discarded."""
        if self.state == SessionState.IDLE:
            return
        logger.info(event="session_cancelled", session_id=self.session_id, state=self.state.value)
        self._reset()
        self.state = SessionState.IDLE

    def fail(self, message: str) -> None:
        self.error = message
        self.state = SessionState.FAILED
        logger.warning(event="session_failed", session_id=self.session_id, error=message)

    def _advance_fallback(self, stage: int) -> None:
        # Provider-declared steps replace the fallback sequence entirely.
        if self.extractor.has_provider_steps or stage <= self._fallback_stage:
            return
        stage = min(stage, len(self.steps) - 1)
        for index, step in enumerate(self.steps):
            if index < stage:
                step.status = StepStatus.COMPLETE
            elif index == stage:
                step.status = StepStatus.ACTIVE
        self._fallback_stage = stage

    def apply(self, chunk: StreamChunk) -> List[SessionEvent]:
        """Fold one decoded chunk into the session; returns the events it produced."""
        if self.state != SessionState.STREAMING:
            return []

        if chunk.type == ChunkType.ERROR:
            notice = f"[Error: {chunk.text}]"
            self.notices.append(notice)
            logger.warning(event="upstream_stream_error", session_id=self.session_id, error=chunk.text)
            return [SessionEvent(type=EventType.NOTICE, text=notice)]

        if chunk.type != ChunkType.CONTENT:
            return []

        self.text += chunk.text
        events = [SessionEvent(type=EventType.DELTA, text=chunk.text)]
        if self.extractor.update(self.text):
            if self.overview:
                self._advance_fallback(1)
            if self.extractor.saw_files:
                self._advance_fallback(2 if len(self.files) < 2 else 3)
            events.append(
                SessionEvent(type=EventType.SNAPSHOT, snapshot=self.extractor.snapshot())
            )
        return events

    def finalize(self) -> FinalizedProject:
        """Strict parse of the accumulated text. Runs once per generation."""
        if self.state != SessionState.STREAMING:
            raise RuntimeError(f"Cannot finalize a session in state '{self.state.value}'")
        self.state = SessionState.FINALIZING

        with TimedLogger(logger, "session_finalized", session_id=self.session_id):
            result = finalize(self.text, self.steps, self.overview)

        self.result = result
        self.extractor.overview = result.overview
        self.extractor.steps = result.steps
        self.extractor.files = dict(result.files)

        if result.usable:
            self.document = bundle(result.files, result.index_file)
            self.state = SessionState.READY
        else:
            self.fail(result.error or "Could not fully parse the result")
        return result

    async def run(self, chunks: AsyncIterator[StreamChunk]) -> AsyncIterator[SessionEvent]:
        """
        Drive the session from a decoded chunk stream until it is finalized.

        Transport failures end the session in `failed`; everything else,
        including upstream error events, is absorbed.
        """
        try:
            async for chunk in chunks:
                if chunk.type == ChunkType.END:
                    break
                for event in self.apply(chunk):
                    yield event
        except ProviderError as e:
            self.fail(e.details or e.message)
            yield SessionEvent(type=EventType.ERROR, text=self.error, state=self.state)
            return

        if self.state != SessionState.STREAMING:
            return

        result = self.finalize()
        yield SessionEvent(
            type=EventType.RESULT,
            result=result,
            document=self.document,
            state=self.state,
            text=self.error,
        )
