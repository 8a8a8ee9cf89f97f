"""
HTTP gateway using FastAPI.

- POST /api/generate: provider stream relayed as normalized SSE
- POST /api/builds: full server-side build, session events as SSE
- GET  /api/projects[/{id}[/preview]]: the account's project records
- GET  /api/models, /health
"""

from typing import Optional

import httpx
from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse, JSONResponse, StreamingResponse

from adapters.registry import ProviderRegistry
from common.config import Config
from common.errors import Prompt2WebError
from common.logging import get_logger
from common.models import ErrorResponse, GenerationRequest, ProjectRecord
from generation.bundler import bundle
from generation.service import SSE_DONE, GenerationService, sse_event
from persistence.project_store import ProjectStore, create_project_store

logger = get_logger(__name__)

SSE_HEADERS = {
    "Cache-Control": "no-cache, no-transform",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}
# Scripts and forms run; no same-origin access, no top-level navigation.
PREVIEW_CSP = "sandbox allow-scripts allow-forms"


def _error_response(status_code: int, error: str, details: Optional[str] = None) -> JSONResponse:
    body = ErrorResponse(error=error, details=details).model_dump(exclude_none=True)
    return JSONResponse(body, status_code=status_code)


def account_id_header(x_account_id: Optional[str] = Header(default=None)) -> str:
    """Opaque account id supplied by the authentication layer in front of us."""
    if not x_account_id or not x_account_id.strip():
        raise HTTPException(status_code=401, detail="Missing X-Account-Id header")
    return x_account_id.strip()


class HTTPGateway:
    """FastAPI gateway that wires routes to the generation service."""

    def __init__(
        self,
        config: Config,
        store: Optional[ProjectStore] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.config = config
        self.app = FastAPI(title="Prompt2Web Backend", version="0.1.0")
        self.store = store or create_project_store(config.persistence)
        self.registry = ProviderRegistry(config, transport=transport)
        self.service = GenerationService(config, self.registry, self.store)

        self.app.add_middleware(
            CORSMiddleware,
            allow_origins=config.gateway.cors_origins,
            allow_methods=["GET", "POST"],
            allow_headers=["*"],
        )
        self._setup_exception_handlers()
        self._setup_routes()

    def _setup_exception_handlers(self) -> None:
        @self.app.exception_handler(Prompt2WebError)
        async def app_error_handler(request: Request, exc: Prompt2WebError):
            logger.warning(
                event="request_failed",
                path=request.url.path,
                status_code=exc.status_code,
                error=exc.message,
            )
            return _error_response(exc.status_code, exc.message, exc.details)

        @self.app.exception_handler(RequestValidationError)
        async def validation_error_handler(request: Request, exc: RequestValidationError):
            details = "; ".join(
                f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in exc.errors()
            )
            return _error_response(400, "Invalid request", details)

        @self.app.exception_handler(HTTPException)
        async def http_error_handler(request: Request, exc: HTTPException):
            return _error_response(exc.status_code, str(exc.detail))

    def _setup_routes(self) -> None:
        @self.app.get("/health")
        async def health_check():
            return {
                "status": "healthy",
                "providers": sorted(self.config.providers),
                "models": len(self.config.models),
                "active_builds": self.service.active_builds,
            }

        @self.app.get("/api/models")
        async def list_models():
            return [m.model_dump() for m in self.registry.catalog()]

        @self.app.post("/api/generate")
        async def generate(body: GenerationRequest):
            opened = await self.service.open_stream(body)
            return StreamingResponse(
                self.service.relay(opened), media_type="text/event-stream", headers=SSE_HEADERS
            )

        @self.app.post("/api/builds")
        async def create_build(body: GenerationRequest, account_id: str = Depends(account_id_header)):
            session, opened = await self.service.start_build(account_id, body)

            async def events():
                build = self.service.build(account_id, session, opened)
                try:
                    async for event in build:
                        yield sse_event(event.model_dump_json(exclude_none=True))
                finally:
                    # Client disconnects must cancel the session before any persistence
                    await build.aclose()
                yield SSE_DONE

            return StreamingResponse(events(), media_type="text/event-stream", headers=SSE_HEADERS)

        @self.app.get("/api/projects")
        async def list_projects(account_id: str = Depends(account_id_header)):
            records = await self.store.list_for_account(account_id)
            return [r.model_dump(mode="json") for r in records]

        async def owned_record(record_id: str, account_id: str) -> ProjectRecord:
            record = await self.store.get(record_id)
            if record is None or record.account_id != account_id:
                raise HTTPException(status_code=404, detail="Project not found")
            return record

        @self.app.get("/api/projects/{record_id}")
        async def get_project(record_id: str, account_id: str = Depends(account_id_header)):
            record = await owned_record(record_id, account_id)
            return record.model_dump(mode="json")

        @self.app.get("/api/projects/{record_id}/preview")
        async def preview_project(record_id: str, account_id: str = Depends(account_id_header)):
            record = await owned_record(record_id, account_id)
            return HTMLResponse(
                bundle(record.files, record.index_file),
                headers={"Content-Security-Policy": PREVIEW_CSP},
            )


def create_gateway_app(
    config: Config,
    store: Optional[ProjectStore] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> FastAPI:
    """Create the FastAPI application."""
    return HTTPGateway(config, store=store, transport=transport).app
