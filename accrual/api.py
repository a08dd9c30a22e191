import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.middleware.cors import CORSMiddleware
from starlette.concurrency import run_in_threadpool

from .config import Settings
from .models import (
    EnrollmentListResponse, EnrollmentResponse, HealthResponse, UserBalance,
)
from .scheduler import AccrualScheduler
from .service import LedgerService, LedgerServiceError
from .storage import JsonFileStorage

logger = logging.getLogger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    service: Optional[LedgerService] = None,
    start_scheduler: bool = True,
) -> FastAPI:
    settings = settings or Settings.from_env()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if service is not None:
            ledger_service = service
        else:
            ledger_service = await run_in_threadpool(LedgerService, JsonFileStorage(settings.storage_path))
        scheduler = AccrualScheduler(ledger_service, settings.hourly_rate, settings.tick_seconds)
        app.state.ledger_service = ledger_service
        app.state.scheduler = scheduler
        if start_scheduler:
            scheduler.start()
        try:
            yield
        finally:
            # both block: stop() waits for an in-flight tick, flush() takes the ledger lock
            await run_in_threadpool(scheduler.stop)
            if not await run_in_threadpool(ledger_service.flush):
                logger.warning("Final ledger flush on shutdown failed")

    app = FastAPI(
        title="Accrual Ledger API",
        description="Virtual currency balances that accrue over time for enrolled users",
        version="1.0.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    def get_service(request: Request) -> LedgerService:
        return request.app.state.ledger_service

    @app.get("/health", response_model=HealthResponse, tags=["System"])
    def health_check(request: Request) -> HealthResponse:
        ledger_service = get_service(request)
        return HealthResponse(
            status="healthy" if ledger_service.persistence_healthy else "degraded",
            scheduler=request.app.state.scheduler.state.value,
            enrolled_count=len(ledger_service.list_enrolled()),
        )

    @app.post("/users/{user_id}/enroll", response_model=EnrollmentResponse, tags=["Users"])
    def enroll_user(user_id: str, request: Request) -> EnrollmentResponse:
        try:
            changed = get_service(request).enroll(user_id)
        except LedgerServiceError as e:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
        return EnrollmentResponse(
            user_id=user_id,
            enrolled=True,
            changed=changed,
            message="Enrolled in accrual" if changed else "Already enrolled",
        )

    @app.post("/users/{user_id}/unenroll", response_model=EnrollmentResponse, tags=["Users"])
    def unenroll_user(user_id: str, request: Request) -> EnrollmentResponse:
        try:
            changed = get_service(request).unenroll(user_id)
        except LedgerServiceError as e:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
        return EnrollmentResponse(
            user_id=user_id,
            enrolled=False,
            changed=changed,
            message="Unenrolled from accrual" if changed else "Was not enrolled",
        )

    @app.get("/users/{user_id}/balance", response_model=UserBalance, tags=["Users"])
    def get_user_balance(user_id: str, request: Request) -> UserBalance:
        try:
            return get_service(request).get_user_balance(user_id)
        except LedgerServiceError as e:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    @app.get("/enrollments", response_model=EnrollmentListResponse, tags=["Users"])
    def list_enrollments(request: Request) -> EnrollmentListResponse:
        user_ids = get_service(request).list_enrolled()
        return EnrollmentListResponse(user_ids=user_ids, total_count=len(user_ids))

    return app


if __name__ == "__main__":
    import uvicorn

    settings = Settings.from_env()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    uvicorn.run(create_app(settings), host=settings.host, port=settings.port)
