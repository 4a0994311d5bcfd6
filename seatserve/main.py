from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import date, datetime
from typing import Callable

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.responses import JSONResponse, RedirectResponse

from seatserve.config import Settings, settings as default_settings
from seatserve.constants import DATE_REASONS
from seatserve.deps import (
    bearer_token,
    get_auth_store,
    get_orchestrator,
    get_service,
    require_user,
)
from seatserve.domain import PolicyConfig, Snapshot, utcnow, validate_policy_config
from seatserve.errors import PolicyRejection, SuggestionUnavailable
from seatserve.generation import OpenAIGenerator, TextGenerator
from seatserve.logger import configure_logging, get_logger
from seatserve.mailer import EmailDeliveryError
from seatserve.models import (
    AdminDeskCreate,
    AdminHolidayCreate,
    AdminUserEnabled,
    AdminUserUpsert,
    AuthToken,
    BookingCreate,
    BookingRecord,
    CalendarDay,
    DeskRecord,
    HolidayRecord,
    OTPRequest,
    OTPVerify,
    SeatingSuggestion,
    SnapshotResponse,
    StatsResponse,
    SuggestionBook,
    SuggestionRequest,
    UserRecord,
)
from seatserve.repository import ExcelRepository
from seatserve.security import AuthStore, send_otp_email
from seatserve.services import BookingService
from seatserve.suggestions import SeatingSuggestionOrchestrator

logger = get_logger(__name__)


def create_app(
    config: Settings = default_settings,
    repo: ExcelRepository | None = None,
    generator: TextGenerator | None = None,
    clock: Callable[[], datetime] = utcnow,
) -> FastAPI:
    """Build the app with its collaborators wired explicitly."""
    configure_logging(config.log_level)
    policy = PolicyConfig(
        cutoff_hour=config.cutoff_hour,
        offset_minutes=config.office_offset_minutes,
        horizon_working_days=config.horizon_working_days,
    )
    validate_policy_config(policy)

    repo = repo or ExcelRepository(config.data_file, config.backup_dir, config.lock_file)
    service = BookingService(repo=repo, clock=clock, policy=policy)
    if generator is None and config.openai_api_key:
        generator = OpenAIGenerator(config=config)
    orchestrator = SeatingSuggestionOrchestrator(generator) if generator else None

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        repo.init_storage()

        def log_change(snapshot: Snapshot) -> None:
            logger.info(
                "Snapshot revision %s: %s desks, %s bookings, %s holidays",
                snapshot.revision,
                len(snapshot.desks),
                len(snapshot.bookings),
                len(snapshot.holidays),
            )

        subscription = repo.subscribe(log_change)
        if orchestrator is None:
            logger.warning("OPENAI_API_KEY not set; AI suggestions are disabled")
        try:
            yield
        finally:
            subscription.cancel()

    app = FastAPI(title="SeatServe API", version="0.1.0", lifespan=lifespan)
    app.state.config = config
    app.state.repo = repo
    app.state.service = service
    app.state.auth_store = AuthStore(config)
    app.state.orchestrator = orchestrator

    register_error_handlers(app)
    register_routes(app)
    return app


def register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(PolicyRejection)
    async def policy_rejection(request: Request, exc: PolicyRejection) -> JSONResponse:
        status_code = 400 if exc.reason in DATE_REASONS else 409
        return JSONResponse(
            status_code=status_code,
            content={"detail": exc.message, "reason": exc.reason},
        )

    @app.exception_handler(SuggestionUnavailable)
    async def suggestion_unavailable(request: Request, exc: SuggestionUnavailable) -> JSONResponse:
        return JSONResponse(status_code=503, content={"detail": exc.message})


def register_routes(app: FastAPI) -> None:
    @app.get("/")
    def root() -> RedirectResponse:
        return RedirectResponse(url="/docs")

    @app.get("/healthz")
    def healthz() -> dict[str, str]:
        return {"status": "ok"}

    # auth

    @app.post("/api/auth/request-otp")
    def request_otp(payload: OTPRequest, auth_store: AuthStore = Depends(get_auth_store)) -> dict[str, str]:
        try:
            code = auth_store.issue_otp(str(payload.email))
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        try:
            send_otp_email(str(payload.email), code, app.state.config)
        except EmailDeliveryError as exc:
            raise HTTPException(status_code=502, detail=str(exc)) from exc
        return {"status": "ok"}

    @app.post("/api/auth/verify-otp", response_model=AuthToken)
    def verify_otp(
        payload: OTPVerify,
        auth_store: AuthStore = Depends(get_auth_store),
        service: BookingService = Depends(get_service),
    ) -> AuthToken:
        try:
            ok = auth_store.verify_otp(str(payload.email), payload.code)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        if not ok:
            raise HTTPException(status_code=401, detail="Invalid OTP")
        user = service.ensure_user_for_email(str(payload.email), payload.name)
        token = auth_store.create_session(user.user_id)
        return AuthToken(token=token, user=user)

    @app.post("/api/auth/logout")
    def logout(
        user: UserRecord = Depends(require_user),
        authorization: str | None = Header(default=None, alias="Authorization"),
        auth_store: AuthStore = Depends(get_auth_store),
    ) -> dict[str, str]:
        _ = user
        token = bearer_token(authorization)
        if token:
            auth_store.logout(token)
        return {"status": "ok"}

    @app.get("/api/me", response_model=UserRecord)
    def me(user: UserRecord = Depends(require_user)) -> UserRecord:
        return user

    # reads

    @app.get("/api/desks", response_model=list[DeskRecord])
    def list_desks(
        user: UserRecord = Depends(require_user),
        service: BookingService = Depends(get_service),
    ) -> list[DeskRecord]:
        _ = user
        return service.list_desks()

    @app.get("/api/desks/available", response_model=list[str])
    def available(
        value_date: date = Query(alias="date"),
        user: UserRecord = Depends(require_user),
        service: BookingService = Depends(get_service),
    ) -> list[str]:
        _ = user
        return service.free_desks(value_date)

    @app.get("/api/users", response_model=list[UserRecord])
    def list_users(
        user: UserRecord = Depends(require_user),
        service: BookingService = Depends(get_service),
    ) -> list[UserRecord]:
        _ = user
        return service.list_users()

    @app.get("/api/employees", response_model=list[UserRecord])
    def list_employees(
        user: UserRecord = Depends(require_user),
        service: BookingService = Depends(get_service),
    ) -> list[UserRecord]:
        _ = user
        return service.list_employees()

    @app.get("/api/holidays", response_model=list[HolidayRecord])
    def list_holidays(
        user: UserRecord = Depends(require_user),
        service: BookingService = Depends(get_service),
    ) -> list[HolidayRecord]:
        _ = user
        return service.list_holidays()

    @app.get("/api/calendar", response_model=list[CalendarDay])
    def calendar(
        start_date: date | None = Query(default=None),
        end_date: date | None = Query(default=None),
        user: UserRecord = Depends(require_user),
        service: BookingService = Depends(get_service),
    ) -> list[CalendarDay]:
        return service.calendar(user, start_date, end_date)

    @app.get("/api/snapshot", response_model=SnapshotResponse)
    def snapshot(
        user: UserRecord = Depends(require_user),
        service: BookingService = Depends(get_service),
    ) -> SnapshotResponse:
        _ = user
        snap = service.snapshot()
        return SnapshotResponse(
            revision=snap.revision,
            desks=list(snap.desks),
            bookings=list(snap.bookings),
            holidays=list(snap.holidays),
        )

    # bookings

    @app.get("/api/bookings", response_model=list[BookingRecord])
    def daily_bookings(
        value_date: date = Query(alias="date"),
        user: UserRecord = Depends(require_user),
        service: BookingService = Depends(get_service),
    ) -> list[BookingRecord]:
        _ = user
        return service.bookings_for_day(value_date)

    @app.get("/api/bookings/mine", response_model=list[BookingRecord])
    def my_bookings(
        user: UserRecord = Depends(require_user),
        service: BookingService = Depends(get_service),
    ) -> list[BookingRecord]:
        return service.bookings_for_user(user)

    @app.post("/api/bookings", response_model=BookingRecord)
    def create_booking(
        payload: BookingCreate,
        user: UserRecord = Depends(require_user),
        service: BookingService = Depends(get_service),
    ) -> BookingRecord:
        return service.create_booking(
            actor=user,
            desk_id=payload.desk_id,
            value_date=payload.date,
            employee_id=payload.employee_id,
        )

    @app.delete("/api/bookings/{booking_id}")
    def cancel_booking(
        booking_id: str,
        user: UserRecord = Depends(require_user),
        service: BookingService = Depends(get_service),
    ) -> dict[str, str]:
        service.cancel_booking(actor=user, booking_id=booking_id)
        return {"status": "ok"}

    # suggestions

    @app.post("/api/suggestions", response_model=SeatingSuggestion)
    def suggest(
        payload: SuggestionRequest,
        user: UserRecord = Depends(require_user),
        service: BookingService = Depends(get_service),
        orchestrator: SeatingSuggestionOrchestrator = Depends(get_orchestrator),
    ) -> SeatingSuggestion:
        return service.suggest_desk(
            actor=user,
            value_date=payload.date,
            orchestrator=orchestrator,
            employee_id=payload.employee_id,
        )

    @app.post("/api/suggestions/book", response_model=BookingRecord)
    def book_suggestion(
        payload: SuggestionBook,
        user: UserRecord = Depends(require_user),
        service: BookingService = Depends(get_service),
    ) -> BookingRecord:
        return service.book_suggestion(
            actor=user,
            desk_id=payload.desk_id,
            value_date=payload.date,
            employee_id=payload.employee_id,
        )

    # admin

    @app.post("/api/admin/users", response_model=UserRecord)
    def admin_upsert_user(
        payload: AdminUserUpsert,
        user: UserRecord = Depends(require_user),
        service: BookingService = Depends(get_service),
    ) -> UserRecord:
        return service.admin_upsert_user(
            actor=user,
            email=str(payload.email),
            name=payload.name,
            is_admin=payload.is_admin,
            enabled=payload.enabled,
            team=payload.team,
        )

    @app.put("/api/admin/users/{user_id}/enabled", response_model=UserRecord)
    def admin_set_enabled(
        user_id: str,
        payload: AdminUserEnabled,
        user: UserRecord = Depends(require_user),
        service: BookingService = Depends(get_service),
    ) -> UserRecord:
        return service.admin_set_user_enabled(actor=user, user_id=user_id, enabled=payload.enabled)

    @app.delete("/api/admin/users/{user_id}")
    def admin_delete_user(
        user_id: str,
        user: UserRecord = Depends(require_user),
        service: BookingService = Depends(get_service),
    ) -> dict[str, str]:
        service.admin_delete_user(actor=user, user_id=user_id)
        return {"status": "ok"}

    @app.post("/api/admin/desks", response_model=DeskRecord)
    def admin_add_desk(
        payload: AdminDeskCreate,
        user: UserRecord = Depends(require_user),
        service: BookingService = Depends(get_service),
    ) -> DeskRecord:
        return service.admin_add_desk(actor=user, desk_id=payload.desk_id)

    @app.post("/api/admin/desks/seed")
    def admin_seed_desks(
        user: UserRecord = Depends(require_user),
        service: BookingService = Depends(get_service),
    ) -> dict[str, object]:
        return service.admin_seed_desks(actor=user)

    @app.delete("/api/admin/desks/{desk_id}")
    def admin_delete_desk(
        desk_id: str,
        user: UserRecord = Depends(require_user),
        service: BookingService = Depends(get_service),
    ) -> dict[str, str]:
        service.admin_delete_desk(actor=user, desk_id=desk_id)
        return {"status": "ok"}

    @app.post("/api/admin/holidays", response_model=HolidayRecord)
    def admin_add_holiday(
        payload: AdminHolidayCreate,
        user: UserRecord = Depends(require_user),
        service: BookingService = Depends(get_service),
    ) -> HolidayRecord:
        return service.admin_add_holiday(actor=user, value_date=payload.date, name=payload.name)

    @app.delete("/api/admin/holidays/{holiday_id}")
    def admin_delete_holiday(
        holiday_id: str,
        user: UserRecord = Depends(require_user),
        service: BookingService = Depends(get_service),
    ) -> dict[str, str]:
        service.admin_delete_holiday(actor=user, holiday_id=holiday_id)
        return {"status": "ok"}

    @app.get("/api/admin/stats", response_model=StatsResponse)
    def admin_stats(
        user: UserRecord = Depends(require_user),
        service: BookingService = Depends(get_service),
    ) -> StatsResponse:
        return StatsResponse(**service.admin_stats(actor=user))


app = create_app()
