import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from chatiq.api import auth, chat
from chatiq.api.runtime import RuntimeRegistry
from chatiq.core.context_builder import HISTORY_LIMIT
from chatiq.core.pointer import TabPointerStore
from chatiq.services.firebase_auth import IdentityProvider
from chatiq.services.gemini_service import GeminiService
from chatiq.services.session_store import FirestoreSessionStore
from chatiq.utils import config as app_config
from chatiq.utils.errors import ChatIQError, ConfigurationFailure
from chatiq.utils.logger import setup_logging


def build_services(config: dict, identity=None, store=None, model=None):
    """
    Build the three adapters from config + environment, keeping any that were
    passed in. Raises ConfigurationFailure when credentials are missing.
    """
    service_account = None
    if identity is None or store is None:
        service_account = app_config.firebase_credentials_info()

    if identity is None:
        identity = IdentityProvider.from_service_account(service_account)
    if store is None:
        store = FirestoreSessionStore.from_service_account(service_account, app_id=app_config.app_id(config))
    if model is None:
        model = GeminiService.from_config(app_config.gemini_api_key(), config.get("gemini", {}))
    return identity, store, model


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    # Shutdown: release every store listener still held by a tab runtime
    if app.state.runtimes is not None:
        app.state.runtimes.close()


def create_app(config: dict = None, identity=None, store=None, model=None) -> FastAPI:
    # -------------------------------------------------------------------------
    # Load configuration and set up logging
    # -------------------------------------------------------------------------
    config_failure = None
    try:
        config = config if config is not None else app_config.load_config()
    except ConfigurationFailure as e:
        config_failure = e
        config = {}
    setup_logging(config.get("logging", {}))

    app_cfg = config.get("app", {})
    app = FastAPI(
        title=app_cfg.get("name", "ChatIQ"),
        version=app_cfg.get("version", "0.1.0"),
        lifespan=lifespan,
    )
    app.state.config_failure = None
    app.state.identity = None
    app.state.runtimes = None

    # -------------------------------------------------------------------------
    # Services. Any failure here disables every chat/auth endpoint.
    # -------------------------------------------------------------------------
    if config_failure is None:
        try:
            identity, store, model = build_services(config, identity, store, model)
        except ConfigurationFailure as e:
            config_failure = e

    if config_failure is not None:
        logging.critical(f"❌ Critical initialization error: {config_failure.message}")
        app.state.config_failure = config_failure
    else:
        runtime_cfg = config.get("runtime", {})
        app.state.identity = identity
        app.state.runtimes = RuntimeRegistry(
            identity,
            store,
            model,
            pointers=TabPointerStore(ttl=runtime_cfg.get("pointer_ttl_seconds", 86400)),
            idle_ttl=runtime_cfg.get("idle_ttl_seconds", 3600),
            history_limit=runtime_cfg.get("history_limit", HISTORY_LIMIT),
        )

    # -------------------------------------------------------------------------
    # CORS
    # -------------------------------------------------------------------------
    app.add_middleware(
        CORSMiddleware,
        allow_origins=app_config.allowed_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # -------------------------------------------------------------------------
    # Errors → JSON
    # -------------------------------------------------------------------------
    @app.exception_handler(ChatIQError)
    async def chatiq_error_handler(request: Request, exc: ChatIQError):
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})

    # -------------------------------------------------------------------------
    # Routes
    # -------------------------------------------------------------------------
    app.include_router(auth.router, tags=["Authentication"])
    app.include_router(chat.router, tags=["Chat"])

    @app.get("/")
    async def root():
        return {
            "message": f"Welcome to {app_cfg.get('name', 'the API')}!",
            "ready": app.state.config_failure is None,
        }

    logging.info(f"✅ {app_cfg.get('name', 'API')} is starting up!")
    return app


app = create_app()
