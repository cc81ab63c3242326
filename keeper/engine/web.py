"""
HTTP surface: FastAPI app for health, link check-in and vault submission.

GET  /health           subsystem status and the last sweep report
GET  /checkin          identity-proof check-in from the reminder e-mail link
POST /api/vaults       create a vault (the onboarding form posts here)
POST /api/reconcile    run one sweep now (shares the cron single-flight guard)
"""

from __future__ import annotations

import dataclasses
import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from fastapi import FastAPI, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from keeper import __version__
from keeper.engine.dedup import RECONCILE_KEY, is_running, run_exclusive
from keeper.errors import ConcurrentUpdateError, DeliveryError, StoreUnavailableError
from keeper.vault.models import Outcome, ReconcileReport, VaultDraft

if TYPE_CHECKING:
    from keeper.engine.lifecycle import VaultLifecycleEngine
    from keeper.engine.scheduler import ReconcileScheduler

logger = logging.getLogger(__name__)

_STATUS_FOR_OUTCOME = {
    Outcome.OK: 200,
    Outcome.NOT_FOUND: 404,
    Outcome.UNAUTHORIZED: 403,
    Outcome.INVALID_STATE: 409,
    Outcome.CONFIGURATION_MISSING: 503,
}

_CHECKIN_MESSAGES = {
    Outcome.OK: "Check-in recorded. Your vault stays sealed.",
    Outcome.NOT_FOUND: "No vault with this id exists. Check the link.",
    Outcome.UNAUTHORIZED: "This link does not match the vault owner.",
}


class VaultSubmission(BaseModel):
    secret_content: str
    trustees: list[str] | str = Field(default_factory=list)
    title: str = "Untitled Secret Vault"
    attachment_ref: str = ""
    checkin_interval_days: int | None = None
    grace_hours: int | None = None
    owner_contact_ref: str = ""


def report_to_dict(report: ReconcileReport | None) -> dict[str, Any] | None:
    if report is None:
        return None
    data = dataclasses.asdict(report)
    for key in ("started_at", "finished_at"):
        if data[key] is not None:
            data[key] = data[key].isoformat()
    return data


def create_app(
    engine: VaultLifecycleEngine, scheduler: ReconcileScheduler | None = None
) -> FastAPI:
    """Create the FastAPI app bound to one engine."""
    app = FastAPI(title="Secret Keeper", docs_url=None, redoc_url=None)
    config = engine.config

    @app.exception_handler(StoreUnavailableError)
    @app.exception_handler(ConcurrentUpdateError)
    async def unavailable(request: Request, exc: Exception) -> JSONResponse:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=503, content={"error": str(exc)})

    @app.exception_handler(DeliveryError)
    async def upstream_failed(request: Request, exc: DeliveryError) -> JSONResponse:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=502, content={"error": str(exc)})

    @app.get("/health")
    async def health():
        """Health check endpoint."""
        return {
            "status": "healthy",
            "timestamp": datetime.now(UTC).isoformat(),
            "version": __version__,
            "owner_configured": bool(config.owner_email),
            "telegram_configured": config.telegram.enabled,
            "smtp_configured": config.smtp.enabled,
            "drive_configured": config.drive.enabled,
            "reconcile_running": is_running(RECONCILE_KEY),
            "last_reconcile": report_to_dict(scheduler.last_report if scheduler else None),
        }

    @app.get("/checkin")
    async def checkin(
        vault_id: str = Query(alias="vaultId"),
        email: str = Query(),
    ) -> JSONResponse:
        result = await engine.checkin_vault(vault_id, email)
        message = _CHECKIN_MESSAGES.get(result.outcome, result.detail)
        return JSONResponse(
            status_code=_STATUS_FOR_OUTCOME[result.outcome],
            content={"outcome": result.outcome.value, "message": message, "vault_id": vault_id},
        )

    @app.post("/api/vaults")
    async def create_vault(submission: VaultSubmission) -> JSONResponse:
        owner = engine.resolve_owner(submission.owner_contact_ref)
        draft = VaultDraft(
            secret_content=submission.secret_content,
            trustees=submission.trustees,  # type: ignore[arg-type]
            title=submission.title,
            attachment_ref=submission.attachment_ref,
            checkin_interval_days=submission.checkin_interval_days,
            grace_hours=submission.grace_hours,
        )
        result = await engine.create_vault(owner, draft)
        if not result.ok:
            return JSONResponse(
                status_code=_STATUS_FOR_OUTCOME[result.outcome],
                content={"outcome": result.outcome.value, "error": result.detail},
            )
        return JSONResponse(
            status_code=201,
            content={
                "outcome": result.outcome.value,
                "vault_id": result.vault_ids[0],
                "document_url": result.document_url,
            },
        )

    @app.post("/api/reconcile")
    async def reconcile_now() -> JSONResponse:
        ran, report = await run_exclusive(RECONCILE_KEY, engine.reconcile)
        if not ran:
            return JSONResponse(status_code=409, content={"error": "reconciliation already running"})
        if scheduler is not None:
            scheduler.last_report = report
        return JSONResponse(content=report_to_dict(report))

    return app


async def serve(
    engine: VaultLifecycleEngine,
    scheduler: ReconcileScheduler | None = None,
    host: str = "127.0.0.1",
) -> None:
    """Run the web app under uvicorn until cancelled."""
    import uvicorn

    app = create_app(engine, scheduler)
    uvi_config = uvicorn.Config(app, host=host, port=engine.config.port, log_level="warning")
    server = uvicorn.Server(uvi_config)
    await server.serve()
