"""FastAPI application for the deal pipeline service."""

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI

from deal_pipeline.gateway import DealGateway, InMemoryDealGateway, PostgresDealGateway
from deal_pipeline.insight import (
    InsightGenerator,
    OpenAIInsightGenerator,
    TemplateInsightGenerator,
)
from deal_pipeline.logging import configure_logging

from .config import get_settings
from .registry import StoreRegistry
from .routes.health import router as health_router
from .routes.pipeline import router as pipeline_router

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize shared collaborators at startup, clean up at shutdown."""
    settings = get_settings()
    configure_logging(json_output=settings.LOG_JSON, log_level=settings.DEAL_PIPELINE_LOG_LEVEL)

    logger.info("lifespan.startup", postgres=bool(settings.DATABASE_URL))

    # Postgres: remote deal store (in-memory when not configured)
    gateway: DealGateway = InMemoryDealGateway()
    if settings.DATABASE_URL:
        pg = PostgresDealGateway(settings.DATABASE_URL)
        await pg.connect()
        if await pg.verify_connectivity():
            gateway = pg
            logger.info("lifespan.postgres_ready")
        else:
            logger.warning("lifespan.postgres_connectivity_failed")
            await pg.close()

    # OpenAI: insight generation (template analysis when no key)
    insight_generator: InsightGenerator
    if settings.OPENAI_API_KEY:
        insight_generator = OpenAIInsightGenerator(
            api_key=settings.OPENAI_API_KEY,
            chat_model=settings.OPENAI_CHAT_MODEL,
        )
    else:
        insight_generator = TemplateInsightGenerator()
        logger.info("lifespan.template_insights")

    # Store on app.state for request handlers
    app.state.gateway = gateway
    app.state.insight_generator = insight_generator
    app.state.stores = StoreRegistry(gateway, insight_generator)

    logger.info("lifespan.ready")
    yield

    # Shutdown
    logger.info("lifespan.shutdown")
    await app.state.stores.flush_all()
    await insight_generator.close()
    await gateway.close()


app = FastAPI(
    title="deal-pipeline",
    description="Sales deal pipeline board with stage columns, optimistic moves and AI deal insights",
    lifespan=lifespan,
)

app.include_router(health_router)
app.include_router(pipeline_router)
