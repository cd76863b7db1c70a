from __future__ import annotations

from dataclasses import dataclass
from functools import partial

import structlog

from openinsight.config import Settings, get_settings
from openinsight.db.factory import create_connection
from openinsight.llm.router import create_chat_model
from openinsight.llm.sql_generator import SQLGenerator
from openinsight.logging import setup_logging
from openinsight.pipeline.orchestrator import PipelineOrchestrator
from openinsight.store.config_store import ConfigStore

logger = structlog.get_logger()


@dataclass(frozen=True)
class Application:
    """Everything the terminal UI needs: the pipeline and the config store."""

    settings: Settings
    orchestrator: PipelineOrchestrator
    config_store: ConfigStore


def create_generator(settings: Settings) -> SQLGenerator | None:
    """Build the SQL generator, or None when no OpenRouter key is configured."""
    if not settings.has_api_key:
        logger.warning("llm_not_configured", reason="OPENROUTER_KEY missing")
        return None
    return SQLGenerator(
        create_chat_model(settings),
        repair_model=create_chat_model(settings, temperature=settings.llm_repair_temperature),
        timeout_seconds=settings.llm_timeout_seconds,
        history_window=settings.history_max_turns,
    )


def create_app(settings: Settings | None = None) -> Application:
    settings = settings or get_settings()
    setup_logging(settings.log_level)

    connection_factory = partial(
        create_connection,
        connect_timeout=settings.db_connect_timeout_seconds,
        query_timeout=settings.db_query_timeout_seconds,
    )
    orchestrator = PipelineOrchestrator(
        create_generator(settings),
        connection_factory=connection_factory,
    )
    config_store = ConfigStore(settings.config_dir)

    logger.info(
        "app_created",
        model=settings.openrouter_model,
        llm_configured=orchestrator.has_generator,
        config_path=str(config_store.path),
    )
    return Application(settings=settings, orchestrator=orchestrator, config_store=config_store)
