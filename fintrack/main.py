import logging
import os
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

import uvicorn
from fastapi import BackgroundTasks, Body, Depends, FastAPI, Path, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse
from fastapi.staticfiles import StaticFiles
from sqlalchemy.orm import Session

from . import auth, ledger
from .auth import CurrentUser, current_user
from .backup import BackupManager, Scheduler, snapshot_stamp, sweep_tokens_job
from .config import Settings
from .database import create_engine_for, create_session_factory, get_db, init_db
from .errors import AuthError, NotFoundError, install_error_handlers
from .security import make_password_context

logger = logging.getLogger(__name__)

APP_TITLE = "Controle Financeiro"
SQLITE_MAX_INT = 2**63 - 1


def _settings(request: Request) -> Settings:
    return request.app.state.settings


def _body(payload: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    return payload if isinstance(payload, dict) else {}


def create_app(settings: Optional[Settings] = None, start_scheduler: bool = True) -> FastAPI:
    settings = settings or Settings.from_env()
    logging.basicConfig(level=settings.log_level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    engine = create_engine_for(settings)
    init_db(engine)
    session_factory = create_session_factory(engine)
    backups = BackupManager(settings.db_path, settings.backup_dir, settings.backup_retention)

    scheduler = Scheduler()
    scheduler.every(settings.backup_interval_hours * 3600, "backup", backups.create_backup)
    scheduler.every(settings.token_sweep_hours * 3600, "token-sweep", sweep_tokens_job(session_factory))

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Serving on port %s", settings.port)
        logger.info("Database: %s", settings.db_path)
        logger.info("Backups in: %s", settings.backup_dir)
        logger.info("JWT secret: %s...", settings.jwt_secret[:10])
        if start_scheduler:
            scheduler.start()
        try:
            yield
        finally:
            if start_scheduler:
                scheduler.stop()
            engine.dispose()

    app = FastAPI(title=APP_TITLE, lifespan=lifespan)
    app.state.settings = settings
    app.state.engine = engine
    app.state.session_factory = session_factory
    app.state.pwd_context = make_password_context(settings.bcrypt_rounds)
    app.state.backups = backups
    app.state.scheduler = scheduler

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    install_error_handlers(app)

    # -------------------- AUTH --------------------
    @app.post("/api/register", status_code=201)
    def register(
        request: Request,
        background: BackgroundTasks,
        payload: Optional[Dict[str, Any]] = Body(default=None),
        db: Session = Depends(get_db),
    ):
        session = auth.register(db, _settings(request), request.app.state.pwd_context, _body(payload))
        background.add_task(request.app.state.backups.create_backup)
        return session

    @app.post("/api/login")
    def login(request: Request, payload: Optional[Dict[str, Any]] = Body(default=None), db: Session = Depends(get_db)):
        try:
            return auth.login(db, _settings(request), request.app.state.pwd_context, _body(payload))
        except NotFoundError:
            raise AuthError(auth.INVALID_CREDENTIALS)

    @app.post("/api/refresh")
    def refresh(request: Request, payload: Optional[Dict[str, Any]] = Body(default=None), db: Session = Depends(get_db)):
        return auth.refresh(db, _settings(request), _body(payload).get("refreshToken"))

    @app.post("/api/logout")
    def logout(
        payload: Optional[Dict[str, Any]] = Body(default=None),
        user: CurrentUser = Depends(current_user),
        db: Session = Depends(get_db),
    ):
        auth.logout(db, _body(payload).get("refreshToken"))
        return {"success": True}

    # -------------------- USER --------------------
    @app.get("/api/user")
    def get_user(request: Request, user: CurrentUser = Depends(current_user), db: Session = Depends(get_db)):
        return ledger.get_profile(db, user.user_id, _settings(request).timezone)

    @app.put("/api/user/balance")
    def update_balance(
        payload: Optional[Dict[str, Any]] = Body(default=None),
        user: CurrentUser = Depends(current_user),
        db: Session = Depends(get_db),
    ):
        ledger.update_balance(db, user.user_id, _body(payload).get("initialBalance"))
        return {"success": True}

    @app.get("/api/summary")
    def summary(user: CurrentUser = Depends(current_user), db: Session = Depends(get_db)):
        return ledger.balance_summary(db, user.user_id)

    # ---------------- TRANSACTIONS ----------------
    @app.get("/api/transactions")
    def list_transactions(request: Request, user: CurrentUser = Depends(current_user), db: Session = Depends(get_db)):
        return ledger.list_transactions(db, user.user_id, _settings(request).timezone)

    @app.post("/api/transactions", status_code=201)
    def create_transaction(
        request: Request,
        payload: Optional[Dict[str, Any]] = Body(default=None),
        user: CurrentUser = Depends(current_user),
        db: Session = Depends(get_db),
    ):
        return ledger.create_transaction(db, user.user_id, _body(payload), _settings(request).timezone)

    @app.delete("/api/transactions/{transaction_id}")
    def delete_transaction(
        transaction_id: int = Path(..., ge=-SQLITE_MAX_INT - 1, le=SQLITE_MAX_INT),
        user: CurrentUser = Depends(current_user),
        db: Session = Depends(get_db),
    ):
        ledger.delete_transaction(db, user.user_id, transaction_id)
        return {"success": True}

    # ------------------- BACKUPS ------------------
    @app.get("/api/backup/download")
    def download_backup(request: Request, user: CurrentUser = Depends(current_user)) -> FileResponse:
        db_path = _settings(request).db_path
        if not os.path.isfile(db_path):
            raise NotFoundError("Database file not found")
        return FileResponse(
            db_path,
            media_type="application/octet-stream",
            filename=f"controle-financeiro-{snapshot_stamp()}.db",
        )

    @app.get("/api/backup/list")
    def list_backups(request: Request, user: CurrentUser = Depends(current_user)):
        return request.app.state.backups.list_backups()

    @app.get("/api/health", include_in_schema=False)
    def health():
        return {"status": "ok"}

    # ------------------- FRONT END --------------------
    if os.path.isdir(settings.static_dir):
        app.mount("/", StaticFiles(directory=settings.static_dir, html=True), name="static")

    return app


def run() -> None:
    settings = Settings.from_env()
    uvicorn.run(create_app(settings), host=settings.host, port=settings.port)


if __name__ == "__main__":
    run()
