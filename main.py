from fastapi import APIRouter, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
from starlette.middleware.base import BaseHTTPMiddleware
from typing import Optional, Tuple
import uvicorn
from app.chat.api.dto import ProviderInfo
from app.chat.api.route import chat_router
from app.chat.repository.chat_repository import ChatRepository
from app.chat.repository.memory_repository import InMemoryHistoryStore
from app.chat.service.service import IHistoryStore
from app.core.config import settings
from app.core.logger import get_logger
from app.llm.service.llm_service import AIResponseOrchestrator, build_providers
from app.llm.service.router_service import FallbackRouter
from app.relay.api.dependencies import install_chat_relay
from app.relay.api.route import relay_router
from app.relay.service.relay import ChatRelay
from app.room.service.membership import RoomMembership
from app.typing.repository.typing_store import RedisTypingStore
from pkg.auth_token_client.client import TokenClient
from pkg.db_util.postgres_conn import PostgresConnection
from pkg.db_util.types import PostgresConfig
from pkg.redis.client import RedisClient
from dotenv import load_dotenv
import asyncio
import sys

# App & Logger Setup
# Load .env so os.getenv picks up values from your .env file
load_dotenv()

logger = get_logger("room-chat")

SERVICE_NAME = "room-chat-relay"


async def check_database_connectivity(host: str, port: int, timeout: float = 10.0) -> dict:
    """Check if database host is reachable - non-blocking diagnostic only."""
    result = {"network_reachable": False, "error": None}
    logger.info(f"Testing network connectivity to {host}:{port}...")
    try:
        _, writer = await asyncio.wait_for(asyncio.open_connection(host, port), timeout=timeout)
        writer.close()
        await writer.wait_closed()
        result["network_reachable"] = True
        logger.info(f"Network connection successful to {host}:{port}")
    except (OSError, asyncio.TimeoutError) as e:
        result["error"] = f"Connection test failed: {e}"
        logger.warning(f"Connection pre-check failed to {host}:{port}: {e}")
        logger.warning("This may be normal - PostgreSQL will attempt connection anyway")
    return result


async def build_history_store() -> Tuple[IHistoryStore, Optional[PostgresConnection]]:
    """History store for HISTORY_BACKEND; raises when Postgres is selected but unusable."""
    if settings.HISTORY_BACKEND.lower() == "memory":
        logger.warning("Using in-memory chat history; messages are lost on restart")
        return InMemoryHistoryStore(), None

    required_env_vars = {
        "POSTGRES_HOST": settings.POSTGRES_HOST.strip(),
        "POSTGRES_USER": settings.POSTGRES_USER.strip(),
        "POSTGRES_PASSWORD": settings.POSTGRES_PASSWORD.strip(),
        "POSTGRES_DB": settings.POSTGRES_DB.strip(),
    }
    missing_vars = [key for key, value in required_env_vars.items() if not value]
    if missing_vars:
        raise RuntimeError(f"Missing required environment variables: {', '.join(missing_vars)}")

    connectivity = await check_database_connectivity(settings.POSTGRES_HOST, settings.POSTGRES_PORT)
    if not connectivity["network_reachable"]:
        logger.warning(f"Connectivity pre-check failed: {connectivity['error']}")

    postgres_config = PostgresConfig(
        host=required_env_vars["POSTGRES_HOST"],
        port=settings.POSTGRES_PORT,
        username=required_env_vars["POSTGRES_USER"],
        password=required_env_vars["POSTGRES_PASSWORD"],
        database=required_env_vars["POSTGRES_DB"],
        pool_timeout=30,  # Increase timeout for cloud deployments
    )
    postgres_conn = PostgresConnection(postgres_config, logger)

    logger.info("Initializing database engine with retry logic...")
    try:
        await asyncio.wait_for(postgres_conn.get_engine(max_retries=5, initial_delay=2.0), timeout=60.0)
    except asyncio.TimeoutError:
        raise ConnectionError("Database connection timeout - check network/credentials")

    # Import models so SQLAlchemy registers them before create_all
    from app.chat.repository.sql_schema import room_chat  # noqa: F401
    await postgres_conn.create_tables()

    return ChatRepository(postgres_conn.get_session, logger), postgres_conn


async def build_typing_store() -> Tuple[Optional[RedisTypingStore], Optional[RedisClient]]:
    """Redis-backed typing store, or (None, None) when Redis is unreachable. Typing then rides the relay only."""
    redis_client = RedisClient(
        logger,
        host=settings.REDIS_HOST,
        port=settings.REDIS_PORT,
        password=settings.REDIS_PASSWORD,
        ssl=settings.REDIS_SSL,
    )
    try:
        await redis_client.ping()
    except Exception as e:
        logger.warning(f"Redis unavailable at {settings.REDIS_HOST}:{settings.REDIS_PORT}: {e}")
        logger.warning("Typing indicators will use the relay channel only")
        await redis_client.async_close()
        return None, None
    logger.info("Connected to Redis successfully!")
    return RedisTypingStore(redis_client, debounce_ms=settings.TYPING_DEBOUNCE_MS), redis_client


def _mark_degraded(app: FastAPI, error: str) -> None:
    # Set minimal state so health endpoint works
    app.state.logger = logger
    app.state.history_store = None
    app.state.startup_complete = False
    app.state.startup_error = error


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager - ensures startup completes before accepting requests"""
    logger.info("Room chat relay starting up...")
    logger.info(f"Python: {sys.version}")
    logger.info(f"History backend: {settings.HISTORY_BACKEND}, AI providers: {settings.provider_order}")

    postgres_conn: Optional[PostgresConnection] = None
    redis_client: Optional[RedisClient] = None
    history_store: Optional[IHistoryStore] = None
    relay: Optional[ChatRelay] = None

    try:
        history_store, postgres_conn = await build_history_store()
        typing_store, redis_client = await build_typing_store()

        providers = build_providers(settings.provider_order)
        if not any(p.is_enabled() for p in providers):
            logger.warning("No AI provider has an API key; every AI turn will fall back to the apology")
        router = FallbackRouter(providers, request_timeout_ms=settings.REQUEST_TIMEOUT_MS)
        orchestrator = AIResponseOrchestrator(
            router,
            temperature=settings.AI_TEMPERATURE,
            max_tokens=settings.AI_MAX_TOKENS,
            context_size=settings.AI_CONTEXT_MESSAGES,
        )

        relay = ChatRelay(RoomMembership(), history_store, orchestrator, context_size=settings.AI_CONTEXT_MESSAGES)
        install_chat_relay(app, relay)

        # Expose on app.state for dependencies
        app.state.logger = logger
        app.state.postgres_conn = postgres_conn
        app.state.redis_client = redis_client
        app.state.history_store = history_store
        app.state.typing_store = typing_store
        app.state.orchestrator = orchestrator
        app.state.token_client = TokenClient(settings.JWT_SUPER_SECRET) if settings.AUTH_ENABLED else None
        app.state.startup_complete = True
        app.state.startup_error = None

        logger.info("Startup complete - application is ready!")

    except Exception as e:
        logger.error(f"Startup failed: {e}", exc_info=True)
        logger.error("Application will start in degraded mode - check logs above")
        _mark_degraded(app, str(e))

    # Application is running
    yield

    logger.info("Room chat relay shutting down...")
    if relay is not None:
        await relay.shutdown()
    if history_store is not None:
        await history_store.close()
    if redis_client is not None:
        await redis_client.async_close()
    if postgres_conn is not None:
        await postgres_conn.close_engine()


# Startup Check Middleware - ensures no requests processed before startup completes
class StartupCheckMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        # Allow health checks during startup
        if request.url.path in ["/health", "/", "/docs", "/openapi.json"]:
            return await call_next(request)

        if not getattr(request.app.state, "startup_complete", False):
            startup_error = getattr(request.app.state, "startup_error", None)
            message = (
                f"Service initialization failed: {startup_error}"
                if startup_error
                else "Service is starting up. Please retry in a few seconds."
            )
            return JSONResponse(status_code=503, content={"status": False, "message": message})

        return await call_next(request)


async def http_exception_handler(request: Request, exc: HTTPException):
    """Convert HTTPException to standardized error format"""
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "status": False,
            "message": exc.detail
        },
        headers=exc.headers
    )


service_router = APIRouter(tags=["Service"])


@service_router.get("/health")
async def health(request: Request):
    """Service status, backend checks and AI provider latency"""
    state = request.app.state
    startup_complete = getattr(state, "startup_complete", False)
    startup_error = getattr(state, "startup_error", None)

    # Return 200 for platform health checks even during startup
    if not startup_complete:
        return JSONResponse(
            status_code=200,
            content={
                "status": "starting" if startup_error is None else "degraded",
                "service": SERVICE_NAME,
                "message": startup_error or "Application is still starting up...",
                "startup_complete": False
            }
        )

    checks = {
        "history_store": type(state.history_store).__name__,
        "database": "connected" if getattr(state, "postgres_conn", None) else "not_used",
        "typing_store": "connected" if getattr(state, "typing_store", None) else "relay_only",
    }

    orchestrator: AIResponseOrchestrator = state.orchestrator
    latency = orchestrator.get_latency_report()
    providers = [
        ProviderInfo(
            name=p.name,
            latency_ms=int(latency[p.name] * 1000) if p.name in latency else None,
            status="active" if p.is_enabled() else "disabled",
        ).model_dump()
        for p in orchestrator.router.providers
    ]
    all_healthy = any(p["status"] == "active" for p in providers)

    return {
        "status": "ok" if all_healthy else "degraded",
        "service": SERVICE_NAME,
        "checks": checks,
        "providers": providers,
        "startup_complete": True
    }


@service_router.get("/")
async def root():
    """Root endpoint - simple check that app is running"""
    return {
        "service": SERVICE_NAME,
        "version": "1.0.0",
        "status": "running",
        "health_check": "/health",
        "websocket": "/ws/rooms"
    }


def create_app(lifespan_handler=lifespan) -> FastAPI:
    application = FastAPI(
        title="Room Chat Relay",
        description="Real-time room chat with an AI participant",
        version="1.0.0",
        lifespan=lifespan_handler
    )

    # Add middleware in correct order
    application.add_middleware(StartupCheckMiddleware)
    application.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # adjust in prod
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    application.add_exception_handler(HTTPException, http_exception_handler)

    # Routers
    application.include_router(service_router)
    application.include_router(chat_router)
    application.include_router(relay_router)
    return application


app = create_app()


if __name__ == "__main__":
    uvicorn.run("main:app", host=settings.HOST, port=settings.PORT, reload=settings.DEBUG)
