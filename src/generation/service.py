"""
Generation service: provider selection, stream relay, and full builds.

Two entry points:
- relay(): provider stream normalized to `data: {"content": ...}` events
- build(): the whole pipeline (decode, extract, finalize, bundle, persist)
  run server-side, one in-flight build per account
"""

import json
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, Optional, Tuple

from adapters.base import BaseProviderAdapter, ProviderStream
from adapters.prompts import system_prompt_for
from adapters.registry import ProviderRegistry
from common.config import Config, ModelEntry
from common.errors import ProviderError
from common.logging import get_logger
from common.models import (
    ChunkType,
    EventType,
    GenerationRequest,
    SessionEvent,
    SessionState,
)
from generation.session import GenerationSession
from generation.stream_decoder import DONE_SENTINEL, SSEDecoder, decode_stream
from persistence.project_store import ProjectStore

logger = get_logger(__name__)


def sse_event(payload: Any) -> str:
    """One Server-Sent-Events `data:` frame."""
    data = payload if isinstance(payload, str) else json.dumps(payload)
    return f"data: {data}\n\n"


SSE_DONE = sse_event(DONE_SENTINEL)


@dataclass
class OpenedStream:
    """A provider stream whose upstream status has already been accepted."""

    model: ModelEntry
    adapter: BaseProviderAdapter
    stream: ProviderStream


class GenerationService:
    """Coordinates adapters, sessions and the project store."""

    def __init__(self, config: Config, registry: ProviderRegistry, store: ProjectStore):
        self.config = config
        self.registry = registry
        self.store = store
        self._sessions: Dict[str, GenerationSession] = {}

    @property
    def active_builds(self) -> int:
        return len(self._sessions)

    def session_for(self, account_id: str) -> GenerationSession:
        session = self._sessions.get(account_id)
        if session is None:
            session = GenerationSession()
            self._sessions[account_id] = session
        return session

    def _release(self, account_id: str, session: GenerationSession) -> None:
        """Forget the account's session once it is no longer running."""
        if self._sessions.get(account_id) is session and not session.busy:
            del self._sessions[account_id]

    async def open_stream(self, request: GenerationRequest) -> OpenedStream:
        """Resolve the model and open the upstream stream (status already checked)."""
        model = self.registry.resolve_model(request)
        adapter = self.registry.adapter_for(model)
        stream = await adapter.open_stream(
            request, model.upstream_model, system_prompt_for(request.mode)
        )
        return OpenedStream(model=model, adapter=adapter, stream=stream)

    def _decode(self, opened: OpenedStream):
        return decode_stream(
            opened.stream.iter_bytes(),
            SSEDecoder(opened.adapter.extract_delta, opened.adapter.extract_error),
            idle_timeout=self.config.generation.idle_timeout,
        )

    async def relay(self, opened: OpenedStream) -> AsyncIterator[str]:
        """Normalize the provider stream; upstream errors become inline annotations."""
        chunks = self._decode(opened)
        try:
            async for chunk in chunks:
                if chunk.type == ChunkType.CONTENT:
                    yield sse_event({"content": chunk.text})
                elif chunk.type == ChunkType.ERROR:
                    yield sse_event({"content": f"\n\n[Error: {chunk.text}]"})
                else:
                    break
        except ProviderError as e:
            logger.warning(event="relay_stream_failed", provider=opened.adapter.name, error=e.message)
            yield sse_event({"content": f"\n\n[Error: {e.details or e.message}]"})
        finally:
            await chunks.aclose()
            await opened.stream.aclose()
        yield SSE_DONE

    async def start_build(
        self, account_id: str, request: GenerationRequest
    ) -> Tuple[GenerationSession, OpenedStream]:
        """
        Claim the account's session and open the provider stream.

        Raises:
            SessionBusyError: a build is already running for this account
            ProviderError / UnknownModelError: the session fails and is released
        """
        session = self.session_for(account_id)
        session.begin(request)
        try:
            opened = await self.open_stream(request)
        except Exception as e:
            session.fail(getattr(e, "message", str(e)))
            self._release(account_id, session)
            raise
        return session, opened

    async def _persist(
        self, account_id: str, session: GenerationSession, model: ModelEntry
    ) -> Optional[str]:
        result = session.result
        if result is None or session.request is None:
            return None
        try:
            record = await self.store.create_project_record(
                account_id=account_id,
                prompt=session.request.prompt,
                overview=result.overview,
                files=result.files,
                index_file=result.index_file,
                model=model.id,
            )
        except Exception as e:  # persistence failures never reach the user
            logger.error(
                event="project_record_failed",
                account_id=account_id,
                session_id=session.session_id,
                error=str(e),
            )
            return None
        return record.id

    async def build(
        self, account_id: str, session: GenerationSession, opened: OpenedStream
    ) -> AsyncIterator[SessionEvent]:
        """Run the session to completion; persists the record when it ends `ready`."""
        chunks = self._decode(opened)
        events = session.run(chunks)
        try:
            async for event in events:
                if event.type == EventType.RESULT and session.state == SessionState.READY:
                    record_id = await self._persist(account_id, session, opened.model)
                    event = event.model_copy(update={"record_id": record_id})
                yield event
        finally:
            await events.aclose()
            if session.busy:
                session.cancel()
            self._release(account_id, session)
            await chunks.aclose()
            await opened.stream.aclose()
