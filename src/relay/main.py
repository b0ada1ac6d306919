"""FastAPI application factory.

Creates the app with logging middleware, metrics middleware, CORS, Sentry,
and a lifespan that initializes the database and wires every engine service
onto ``app.state``, plus the v1 API router.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response

from src.knowledge import EmbeddingService, KnowledgeBaseConfig, QdrantKnowledgeStore
from src.relay.analytics.aggregator import PerformanceAnalyticsAggregator
from src.relay.analytics.repository import SqlInteractionLog, SqlPerformanceRepository
from src.relay.api.middleware.logging import LoggingMiddleware, configure_structlog
from src.relay.api.v1.router import router as v1_router
from src.relay.config import Settings, get_settings
from src.relay.conversations.repository import (
    SqlAgentDirectory,
    SqlAssignmentRepository,
    SqlConversationRepository,
)
from src.relay.conversations.state import ConversationStateTracker, TrackerConfig
from src.relay.core.database import close_db, get_session, init_db
from src.relay.core.locks import KeyedLocks
from src.relay.core.monitoring import MetricsMiddleware, get_metrics_response, init_sentry
from src.relay.core.redis import close_redis, get_redis_pool
from src.relay.errors import ConfigurationError, DispatchFailure
from src.relay.escalation.notifier import RedisStreamNotifier
from src.relay.escalation.repository import SqlHandoffRepository
from src.relay.escalation.workflow import EscalationWorkflow
from src.relay.generation.generator import ResponseGenerator
from src.relay.generation.retriever import KnowledgeRetriever
from src.relay.generation.schemas import GenerationConfig
from src.relay.llm.client import LiteLLMClient
from src.relay.llm.router import ProviderRouter
from src.relay.llm.schemas import RouterConfig
from src.relay.observability.tracer import init_langfuse
from src.relay.orchestrator.dispatch import HttpChannelSender
from src.relay.orchestrator.service import AutoReplyOrchestrator

logger = structlog.get_logger(__name__)


async def build_services(app: FastAPI, settings: Settings) -> None:
    """Construct the engine's services and attach them to ``app.state``.

    Configuration objects are built once here and injected; no component
    reads settings on its own.
    """
    conversations = SqlConversationRepository(get_session)
    assignments = SqlAssignmentRepository(get_session)
    agents = SqlAgentDirectory(get_session)
    handoffs = SqlHandoffRepository(get_session)
    locks = KeyedLocks()

    analytics = PerformanceAnalyticsAggregator(SqlPerformanceRepository(get_session))
    tracker = ConversationStateTracker(conversations, config=TrackerConfig.from_settings(settings))

    kb_config = KnowledgeBaseConfig()
    knowledge_store = QdrantKnowledgeStore(kb_config, EmbeddingService(kb_config))
    try:
        await knowledge_store.initialize_collection()
    except Exception:
        # Searches fail per call and degrade to zero contexts.
        logger.warning("startup.knowledge_store_unavailable", exc_info=True)

    provider_router = ProviderRouter(RouterConfig.from_settings(settings), LiteLLMClient())
    generator = ResponseGenerator(
        KnowledgeRetriever(knowledge_store, timeout=kb_config.search_timeout),
        provider_router,
        GenerationConfig.from_settings(settings),
    )

    workflow = EscalationWorkflow(
        handoffs,
        conversations,
        assignments,
        tracker,
        locks,
        notifier=RedisStreamNotifier(
            get_redis_pool(),
            stream=settings.HANDOFF_STREAM,
            maxlen=settings.HANDOFF_STREAM_MAXLEN,
        ),
        analytics=analytics,
        history_limit=settings.HISTORY_LIMIT,
    )

    sender = HttpChannelSender(
        settings.CHANNEL_GATEWAY_URL,
        token=settings.CHANNEL_GATEWAY_TOKEN,
        timeout=settings.CHANNEL_GATEWAY_TIMEOUT,
    )

    app.state.knowledge_store = knowledge_store
    app.state.channel_sender = sender
    app.state.provider_router = provider_router
    app.state.state_tracker = tracker
    app.state.analytics = analytics
    app.state.escalation_workflow = workflow
    app.state.orchestrator = AutoReplyOrchestrator(
        conversations,
        assignments,
        agents,
        tracker,
        generator,
        workflow,
        sender,
        locks,
        analytics=analytics,
        interaction_log=SqlInteractionLog(get_session),
        history_limit=settings.HISTORY_LIMIT,
        pipeline_timeout=settings.PIPELINE_TIMEOUT,
        redelivery_window=settings.REDELIVERY_WINDOW,
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: init DB, tracing and services; close on shutdown."""
    settings = get_settings()
    configure_structlog()
    await init_db()

    if settings.SENTRY_DSN:
        init_sentry(dsn=settings.SENTRY_DSN, environment=settings.ENVIRONMENT.value)

    try:
        init_langfuse(settings)
    except Exception:
        logger.warning("startup.langfuse_init_failed", exc_info=True)

    await build_services(app, settings)
    logger.info("startup.services_initialized", environment=settings.ENVIRONMENT.value)

    yield

    workflow = getattr(app.state, "escalation_workflow", None)
    if workflow is not None:
        await workflow.wait_for_notifications()

    sender = getattr(app.state, "channel_sender", None)
    if sender is not None:
        await sender.close()

    knowledge_store = getattr(app.state, "knowledge_store", None)
    if knowledge_store is not None:
        try:
            await knowledge_store.close()
        except Exception:
            logger.warning("shutdown.knowledge_store_close_failed", exc_info=True)

    await close_db()
    await close_redis()


async def _dispatch_failure_handler(request: Request, exc: DispatchFailure) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_502_BAD_GATEWAY,
        content={
            "detail": str(exc),
            "conversation_id": exc.conversation_id,
            "platform": exc.platform,
        },
    )


async def _configuration_error_handler(request: Request, exc: ConfigurationError) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_404_NOT_FOUND,
        content={"detail": str(exc), "agent_id": exc.agent_id},
    )


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="Relay Agent Orchestration API",
        version="0.1.0",
        description="Conversational agent auto-reply and human escalation engine",
        lifespan=lifespan,
    )

    if settings.CORS_ALLOWED_ORIGINS == "*":
        origins = ["*"]
    else:
        origins = [o.strip() for o in settings.CORS_ALLOWED_ORIGINS.split(",")]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Middleware is added in reverse order (last added = outermost)
    app.add_middleware(LoggingMiddleware)
    app.add_middleware(MetricsMiddleware)

    app.add_exception_handler(DispatchFailure, _dispatch_failure_handler)
    app.add_exception_handler(ConfigurationError, _configuration_error_handler)

    app.include_router(v1_router)

    @app.get("/metrics", include_in_schema=False)
    async def metrics(request: Request) -> Response:
        """Prometheus metrics endpoint."""
        return get_metrics_response()

    return app


# Module-level app for uvicorn
app = create_app()
