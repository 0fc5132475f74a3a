"""Component factory for Podium.

Creates and wires the race infrastructure (config, store, LLM client,
model router, agent executor, judge, progress bus) so the orchestrator
receives fully-initialized dependencies.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from podium.agents.executor import AgentExecutor, NoTools, ToolAccess
from podium.agents.llm_executor import LLMAgentExecutor
from podium.core.config import (
    AppConfig,
    ModelRegistry,
    PromptLoader,
    load_config,
    load_model_registry,
)
from podium.db.engine import DatabaseEngine
from podium.db.repository import PostgresRaceStore
from podium.db.store import InMemoryRaceStore, RaceStore
from podium.judge.engine import JudgeEngine
from podium.llm.client import OpenRouterClient
from podium.llm.router import ModelRouter
from podium.orchestrator.progress import ProgressBus
from podium.orchestrator.race import Orchestrator

logger = logging.getLogger("podium.factory")


@dataclass
class ComponentBundle:
    """Container for all initialized components.

    The factory builds the bundle once; callers pass bundle.orchestrator
    tasks and subscribe to bundle.bus for progress.
    """

    config: AppConfig
    model_registry: ModelRegistry
    store: RaceStore
    llm_client: OpenRouterClient
    model_router: ModelRouter
    executor: AgentExecutor
    judge: JudgeEngine
    bus: ProgressBus
    orchestrator: Orchestrator
    db_engine: Optional[DatabaseEngine] = None


def create_store(config: AppConfig, initialize_schema: bool = True) -> tuple[RaceStore, Optional[DatabaseEngine]]:
    """In-memory store by default, PostgreSQL when database.backend says so."""
    if config.database.backend == "postgresql":
        engine = DatabaseEngine(config.database)
        if initialize_schema:
            engine.initialize_schema()
        return PostgresRaceStore(engine), engine
    return InMemoryRaceStore(), None


class ComponentFactory:
    """Factory for creating and wiring all Podium components.

    Usage:
        bundle = ComponentFactory.create(config_dir=Path("config"))
        outcome = bundle.orchestrator.run(Task(prompt="..."))
    """

    @staticmethod
    def create(
        config_dir: Optional[Path] = None,
        env: Optional[str] = None,
        api_key: Optional[str] = None,
        initialize_schema: bool = True,
        tools: Optional[ToolAccess] = None,
        store: Optional[RaceStore] = None,
    ) -> ComponentBundle:
        """Create and wire all components.

        Args:
            config_dir: Path to config/ directory. Default: project root/config.
            env: Environment name for config overlay (e.g., "test", "production").
            api_key: OpenRouter API key. Falls back to OPENROUTER_API_KEY env var.
            initialize_schema: Whether to run schema.sql when using PostgreSQL.
            tools: Tool registry handed to agents. Default: no tools.
            store: Pre-built store; skips backend selection.
        """
        logger.info("Initializing components...")

        config = load_config(config_dir=config_dir, env=env)
        model_registry = load_model_registry(config_dir=config_dir)
        logger.info("Config loaded (%d model roles)", len(model_registry.roles))

        db_engine = None
        if store is None:
            store, db_engine = create_store(config, initialize_schema=initialize_schema)
        logger.info("Race store: %s", type(store).__name__)

        llm_client = OpenRouterClient(config=config.llm, api_key=api_key)
        model_router = ModelRouter(model_registry)
        logger.info("LLM client configured (base_url=%s)", config.llm.base_url)

        prompts = PromptLoader(config_dir / "prompts" if config_dir else None)
        executor = LLMAgentExecutor(llm_client, model_router, config.agents)
        judge = JudgeEngine(llm_client, model_router, config.judge, prompts)
        bus = ProgressBus()
        orchestrator = Orchestrator(
            config=config,
            executor=executor,
            judge=judge,
            store=store,
            bus=bus,
            tools=tools or NoTools(),
        )

        logger.info("All components initialized")
        return ComponentBundle(
            config=config,
            model_registry=model_registry,
            store=store,
            llm_client=llm_client,
            model_router=model_router,
            executor=executor,
            judge=judge,
            bus=bus,
            orchestrator=orchestrator,
            db_engine=db_engine,
        )

    @staticmethod
    def close(bundle: ComponentBundle) -> None:
        """Cleanly shut down all components."""
        bundle.llm_client.close()
        if bundle.db_engine is not None:
            bundle.db_engine.close()
        logger.info("All components shut down")
