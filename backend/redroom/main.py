from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, HTTPException, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from redroom.core.config import settings
from redroom.core.db.models import Company, User, UserCompanyRole
from redroom.core.db.session import get_db
from redroom.core.logging import configure_logging
from redroom.core.middleware.audit import get_logger, set_actor
from redroom.core.middleware.request_id import RequestIdMiddleware
from redroom.core.security.auth import Actor
from redroom.core.security.dependencies import get_actor
from redroom.domain.alerts.routes.alerts import router as alerts_router
from redroom.domain.alerts.services.escalation import EscalationLoop, EscalationScheduler
from redroom.shared.enums import Env, Role
from redroom.shared.exceptions import (
    AlreadyResolved,
    AppError,
    ConflictError,
    NotFoundError,
    PolicyViolation,
    Unauthorized,
    ValidationError,
)

logger = get_logger(__name__)

ERROR_STATUS: dict[type[AppError], int] = {
    PolicyViolation: status.HTTP_422_UNPROCESSABLE_ENTITY,
    Unauthorized: status.HTTP_403_FORBIDDEN,
    NotFoundError: status.HTTP_404_NOT_FOUND,
    AlreadyResolved: status.HTTP_409_CONFLICT,
    ConflictError: status.HTTP_409_CONFLICT,
    ValidationError: status.HTTP_400_BAD_REQUEST,
}


class DevSeedRequest(BaseModel):
    company_name: str = Field(default="Red Room Shipping", min_length=2, max_length=200)
    user_email: str = Field(default="dev@local", min_length=3, max_length=320)
    display_name: str = Field(default="Dev User", min_length=2, max_length=200)
    roles: list[Role] = Field(default_factory=lambda: [Role.DPA])


def _status_for(exc: AppError) -> int:
    for cls in type(exc).__mro__:
        if cls in ERROR_STATUS:
            return ERROR_STATUS[cls]
    return status.HTTP_400_BAD_REQUEST


@asynccontextmanager
async def lifespan(app: FastAPI):
    loop: EscalationLoop | None = None
    if settings.ESCALATION_SCHEDULER_ENABLED:
        loop = EscalationLoop(app.state.escalation_scheduler, settings.ESCALATION_TICK_SECONDS)
        loop.start()
    try:
        yield
    finally:
        if loop is not None:
            await loop.stop()


def create_app() -> FastAPI:
    configure_logging()

    app = FastAPI(title="Red Room - Alert Lifecycle Service", version="0.1.0", lifespan=lifespan)
    app.add_middleware(RequestIdMiddleware)
    app.state.escalation_scheduler = EscalationScheduler()

    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
        status_code = _status_for(exc)
        logger.info("request.rejected", path=request.url.path, code=exc.code, status_code=status_code, detail=exc.message)
        return JSONResponse(status_code=status_code, content={"detail": exc.message, "code": exc.code})

    @app.get("/health", tags=["admin"])
    def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/api/health", tags=["admin"])
    def api_health() -> dict[str, str]:
        return {"status": "ok"}

    @app.post("/admin/escalation/tick", tags=["admin"])
    def escalation_tick(request: Request, db: Session = Depends(get_db), actor: Actor = Depends(get_actor)) -> dict:
        if not actor.is_admin:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin only")
        report = request.app.state.escalation_scheduler.run_tick(db=db)
        return {
            "skipped": report.skipped,
            "expired": report.expired,
            "escalated": report.escalated,
            "notified": report.notified,
            "notify_failures": report.notify_failures,
            "dismissed": report.dismissed,
        }

    @app.post("/admin/dev/seed", tags=["admin"])
    def dev_seed(payload: DevSeedRequest, db: Session = Depends(get_db)) -> dict:
        if settings.env != Env.dev:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND)

        # bootstrap actor (no auth required for first seed in dev)
        set_actor("dev-seed", [Role.ADMIN.value])

        company = Company(name=payload.company_name, description="dev seed", is_active=True, created_by="dev-seed", updated_by="dev-seed")
        user = User(email=payload.user_email, display_name=payload.display_name, is_active=True, created_by="dev-seed", updated_by="dev-seed")
        db.add(company)
        db.add(user)
        db.flush()

        for r in payload.roles:
            db.add(
                UserCompanyRole(
                    user_id=user.id,
                    company_id=company.id,
                    role=r.value,
                    created_by="dev-seed",
                    updated_by="dev-seed",
                )
            )
        db.commit()

        return {
            "company_id": str(company.id),
            "user_id": str(user.id),
            "dev_actor_header_name": settings.dev_actor_header,
            "dev_actor_header_value": {
                "actor_id": str(user.id),
                "roles": [r.value for r in payload.roles],
                "company_ids": [str(company.id)],
            },
            "note": "Send this payload as JSON in the X-DEV-ACTOR header (ENV=dev only).",
        }

    app.include_router(alerts_router)

    # Reverse proxies mount the backend under /api/*; keep both paths live.
    app.include_router(alerts_router, prefix="/api")

    return app


app = create_app()
