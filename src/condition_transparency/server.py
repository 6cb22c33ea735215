"""
HTTP surface for condition transparency.

Key components:
- TransparencyServer: Starlette app over a TransparencyEngine
- run_server: serve the app with uvicorn

The viewer is identified by the ``X-User-Id`` header, which the host's
authentication layer is expected to set. Public share links need no viewer.
Engine calls that touch the store run in Starlette's threadpool so file
writes and lock waits never block the event loop.

Routes:
- GET    /groups/{group_id}/condition-timers
- POST   /groups/{group_id}/condition-timers/acknowledgements
- POST   /groups/{group_id}/condition-timers/adjustments
- POST   /groups/{group_id}/shares
- POST   /groups/{group_id}/shares/{share_id}/extend
- DELETE /groups/{group_id}/shares/{share_id}
- GET    /shares/{token}
- POST   /groups/{group_id}/consents
- POST   /groups/{group_id}/exports
- POST   /groups/{group_id}/webhooks
- GET    /groups/{group_id}/maintenance
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from datetime import datetime
from typing import TYPE_CHECKING, Any, AsyncIterator, Optional

import uvicorn
from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError
from starlette.applications import Starlette
from starlette.background import BackgroundTask
from starlette.concurrency import run_in_threadpool
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.routing import Route

from .exceptions import (
    AppendFailure,
    Forbidden,
    NotFound,
    StorageFailure,
    TransparencyError,
    ValidationError,
)
from .models import AckSource, VisibilityMode
from .sharing import ExpiryPolicy

if TYPE_CHECKING:
    from .engine import TransparencyEngine

logger = logging.getLogger("condition-transparency.server")

VIEWER_HEADER = "X-User-Id"


class Unauthenticated(TransparencyError):
    """Raised when a group route is called without a viewer."""


# ---------------------------------------------------------------------------
# Request bodies
# ---------------------------------------------------------------------------

class AcknowledgementBody(BaseModel):
    token_id: str
    condition_key: str
    summary_generated_at: datetime
    source: AckSource = AckSource.ONLINE
    queued_at: Optional[datetime] = None


class ShareBody(BaseModel):
    visibility_mode: VisibilityMode = VisibilityMode.COUNTS
    expires_in_hours: Optional[int] = Field(default=None, ge=1)
    expires_at: Optional[datetime] = None
    never_expires: bool = False
    preset_key: Optional[str] = None


class ExtendBody(BaseModel):
    hours: Optional[int] = Field(default=None, ge=1)
    never_expires: bool = False


class ConsentBody(BaseModel):
    user_id: Optional[str] = None
    granted: bool
    visibility: VisibilityMode = VisibilityMode.COUNTS
    notes: Optional[str] = Field(default=None, max_length=500)


class ExportBody(BaseModel):
    format: Optional[str] = None
    visibility_mode: Optional[str] = None
    filters: dict[str, Any] = Field(default_factory=dict)


class WebhookBody(BaseModel):
    url: str


def _parse(model: type[BaseModel], body: Any) -> Any:
    try:
        return model.model_validate(body)
    except PydanticValidationError as e:
        errors = {
            ".".join(str(part) for part in err["loc"]) or "body": err["msg"]
            for err in e.errors()
        }
        raise ValidationError("Invalid request body", errors=errors) from None


# ---------------------------------------------------------------------------
# Server
# ---------------------------------------------------------------------------

class TransparencyServer:
    """
    Starlette application over a TransparencyEngine.

    Attributes:
        engine: Wired transparency services
        run_worker: Start the export worker with the app lifespan. When
                    False, queued exports are drained in a background task
                    after the export request is answered.
        app: The Starlette application
    """

    def __init__(self, engine: "TransparencyEngine", run_worker: bool = False) -> None:
        self.engine = engine
        self.run_worker = run_worker
        self.app = self._build_app()

    def _build_app(self) -> Starlette:
        """
        Build the Starlette application with routes.

        Returns:
            Configured Starlette app
        """
        group = "/groups/{group_id}"
        routes = [
            Route(f"{group}/condition-timers", self.get_summary, methods=["GET"]),
            Route(f"{group}/condition-timers/acknowledgements", self.post_acknowledgement, methods=["POST"]),
            Route(f"{group}/condition-timers/adjustments", self.post_adjustments, methods=["POST"]),
            Route(f"{group}/shares", self.post_share, methods=["POST"]),
            Route(f"{group}/shares/{{share_id}}/extend", self.post_share_extension, methods=["POST"]),
            Route(f"{group}/shares/{{share_id}}", self.delete_share, methods=["DELETE"]),
            Route("/shares/{token}", self.get_shared_summary, methods=["GET"]),
            Route(f"{group}/consents", self.post_consent, methods=["POST"]),
            Route(f"{group}/exports", self.post_export, methods=["POST"]),
            Route(f"{group}/webhooks", self.post_webhook, methods=["POST"]),
            Route(f"{group}/maintenance", self.get_maintenance, methods=["GET"]),
        ]
        handlers = {
            Unauthenticated: self._error_handler(401),
            Forbidden: self._error_handler(403),
            NotFound: self._error_handler(404),
            ValidationError: self._error_handler(422),
            AppendFailure: self._error_handler(503),
            StorageFailure: self._error_handler(503),
        }
        return Starlette(debug=False, routes=routes, exception_handlers=handlers, lifespan=self._lifespan)

    @contextlib.asynccontextmanager
    async def _lifespan(self, app: Starlette) -> AsyncIterator[None]:
        if self.run_worker:
            self.engine.export_worker.start()
        try:
            yield
        finally:
            if self.run_worker:
                await self.engine.export_worker.stop()
            self.engine.close()

    @staticmethod
    def _error_handler(status_code: int):
        async def handle(request: Request, exc: Exception) -> Response:
            body: dict[str, Any] = {"error": getattr(exc, "message", str(exc))}
            if isinstance(exc, ValidationError) and exc.errors:
                body["errors"] = exc.errors
            if status_code >= 500:
                logger.error(f"{request.method} {request.url.path} failed: {exc}")
            return JSONResponse(body, status_code=status_code)
        return handle

    # -- helpers ------------------------------------------------------------

    @staticmethod
    def _viewer(request: Request) -> str:
        viewer = request.headers.get(VIEWER_HEADER, "").strip()
        if not viewer:
            raise Unauthenticated("Unauthorized")
        return viewer

    @staticmethod
    async def _body(request: Request) -> Any:
        raw = await request.body()
        if not raw:
            return {}
        try:
            return json.loads(raw)
        except json.JSONDecodeError as e:
            raise ValidationError(f"Invalid JSON body: {e}", errors={"body": "invalid JSON"}) from None

    # -- condition timers ---------------------------------------------------

    async def get_summary(self, request: Request) -> Response:
        """Summary hydrated for the viewer's role."""
        viewer = self._viewer(request)
        view = await run_in_threadpool(self.engine.presenter.present, request.path_params["group_id"], viewer)
        return JSONResponse(view.model_dump(mode="json"))

    async def post_acknowledgement(self, request: Request) -> Response:
        viewer = self._viewer(request)
        group_id = request.path_params["group_id"]
        membership = self.engine.access.require_member(group_id, viewer)
        body = _parse(AcknowledgementBody, await self._body(request))

        result = await run_in_threadpool(
            self.engine.acknowledgements.acknowledge,
            group_id,
            body.token_id,
            body.condition_key,
            body.summary_generated_at,
            viewer,
            source=body.source,
            queued_at=body.queued_at,
        )
        status_code = 201 if result.created else 200
        return JSONResponse(result.as_response(membership.is_privileged), status_code=status_code)

    async def post_adjustments(self, request: Request) -> Response:
        viewer = self._viewer(request)
        body = await self._body(request)
        entries = body.get("adjustments") if isinstance(body, dict) else None
        if not isinstance(entries, list):
            raise ValidationError("Expected an adjustments list", errors={"adjustments": "must be a list"})
        result = await run_in_threadpool(
            self.engine.adjustments.apply, request.path_params["group_id"], viewer, entries
        )
        return JSONResponse(result.as_response())

    # -- shares -------------------------------------------------------------

    async def post_share(self, request: Request) -> Response:
        viewer = self._viewer(request)
        body = _parse(ShareBody, await self._body(request))
        share = await run_in_threadpool(
            self.engine.shares.create,
            request.path_params["group_id"],
            viewer,
            visibility_mode=body.visibility_mode,
            expiry=ExpiryPolicy(
                hours=body.expires_in_hours,
                expires_at=body.expires_at,
                never=body.never_expires,
            ),
            preset_key=body.preset_key,
        )
        return JSONResponse({"share": self.engine.shares.owner_payload(share)}, status_code=201)

    async def post_share_extension(self, request: Request) -> Response:
        viewer = self._viewer(request)
        body = _parse(ExtendBody, await self._body(request))
        share = await run_in_threadpool(
            self.engine.shares.extend,
            request.path_params["group_id"],
            request.path_params["share_id"],
            viewer,
            hours=body.hours,
            never=body.never_expires,
        )
        return JSONResponse({"share": self.engine.shares.owner_payload(share)})

    async def delete_share(self, request: Request) -> Response:
        viewer = self._viewer(request)
        share = await run_in_threadpool(
            self.engine.shares.revoke, request.path_params["group_id"], request.path_params["share_id"], viewer
        )
        return JSONResponse({"share": self.engine.shares.owner_payload(share)})

    async def get_shared_summary(self, request: Request) -> Response:
        """Public share resolution; revoked or expired links degrade to a redacted view."""
        resolved = await run_in_threadpool(
            self.engine.shares.resolve,
            request.path_params["token"],
            ip=request.client.host if request.client else None,
            user_agent=request.headers.get("user-agent"),
            user_id=request.headers.get(VIEWER_HEADER) or None,
        )
        return JSONResponse(resolved.model_dump(mode="json"))

    # -- consent ------------------------------------------------------------

    async def post_consent(self, request: Request) -> Response:
        """Members record their own consent; owners and DMs may record for others."""
        viewer = self._viewer(request)
        group_id = request.path_params["group_id"]
        membership = self.engine.access.require_member(group_id, viewer)
        body = _parse(ConsentBody, await self._body(request))

        subject = body.user_id or viewer
        if subject != viewer and not membership.is_privileged:
            raise Forbidden("Only owners and dungeon masters can record consent for others")

        entry = await run_in_threadpool(
            self.engine.consent.record,
            group_id,
            subject,
            granted=body.granted,
            visibility=body.visibility,
            recorded_by=viewer,
            notes=body.notes,
        )
        return JSONResponse({"consent": entry.model_dump(mode="json")}, status_code=201)

    # -- exports ------------------------------------------------------------

    async def post_export(self, request: Request) -> Response:
        viewer = self._viewer(request)
        body = _parse(ExportBody, await self._body(request))
        export = await run_in_threadpool(
            self.engine.exports.create_export,
            request.path_params["group_id"],
            viewer,
            format=body.format,
            visibility_mode=body.visibility_mode,
            filters=body.filters,
        )
        self.engine.export_queue.put(export.id)
        background = None if self.run_worker else BackgroundTask(self.engine.export_worker.drain)
        return JSONResponse(
            {"export": {"id": export.id, "status": export.status.value}},
            status_code=202,
            background=background,
        )

    async def post_webhook(self, request: Request) -> Response:
        """Register a webhook. The secret is only ever returned here."""
        viewer = self._viewer(request)
        body = _parse(WebhookBody, await self._body(request))
        webhook = await run_in_threadpool(
            self.engine.webhooks.register, request.path_params["group_id"], viewer, body.url
        )
        return JSONResponse({
            "webhook": {
                "id": webhook.id,
                "url": webhook.url,
                "secret": webhook.secret,
                "active": webhook.active,
            }
        }, status_code=201)

    # -- maintenance --------------------------------------------------------

    async def get_maintenance(self, request: Request) -> Response:
        viewer = self._viewer(request)
        group_id = request.path_params["group_id"]
        self.engine.access.require_member(group_id, viewer)
        snapshot = await run_in_threadpool(self.engine.maintenance.snapshot, group_id)
        return JSONResponse(snapshot.as_dict())


def run_server(engine: "TransparencyEngine", host: str = "127.0.0.1", port: int = 8080) -> None:
    """Serve the transparency API until interrupted."""
    server = TransparencyServer(engine, run_worker=True)
    config = uvicorn.Config(
        server.app,
        host=host,
        port=port,
        log_level="info",
        loop="asyncio",
    )
    logger.info(f"Condition transparency API listening on http://{host}:{port}")
    asyncio.run(uvicorn.Server(config).serve())


__all__ = [
    "VIEWER_HEADER",
    "TransparencyServer",
    "run_server",
]
