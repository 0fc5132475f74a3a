"""Shared fixtures for Podium tests.

Races run against scripted executors and a scripted judge client so no
network is needed. Tests requiring PostgreSQL use a skip marker when it is
unavailable.
"""

from __future__ import annotations

import json
import os
import threading
import time
from pathlib import Path
from typing import Any, Callable, Optional, Union
from unittest.mock import MagicMock

import pytest
from dotenv import load_dotenv

# Load .env from project root so DATABASE_URL, API keys, etc. are available
load_dotenv(Path(__file__).parent.parent / ".env", override=True)

from podium.agents.executor import AgentExecutor, AgentSession
from podium.core.config import (
    AppConfig,
    DatabaseConfig,
    ModelRegistry,
    PromptLoader,
    load_config,
    load_model_registry,
)
from podium.core.exceptions import LLMError
from podium.core.models import (
    AgentRunResult,
    ReasoningStep,
    ToolCallRecord,
)
from podium.db.store import InMemoryRaceStore
from podium.judge.engine import JudgeEngine
from podium.llm.client import LLMResponse
from podium.llm.router import ModelRouter


# ---------------------------------------------------------------------------
# Service availability checks
# ---------------------------------------------------------------------------

def _get_db_config() -> DatabaseConfig:
    """Build a DatabaseConfig from environment or defaults."""
    db_url = os.getenv("DATABASE_URL")
    if db_url and db_url.startswith("postgresql://"):
        from urllib.parse import urlparse
        parsed = urlparse(db_url)
        return DatabaseConfig(
            backend="postgresql",
            host=parsed.hostname or "localhost",
            port=parsed.port or 5432,
            dbname=(parsed.path[1:] if parsed.path and len(parsed.path) > 1 else "podium"),
            user=parsed.username or "podium",
            password=parsed.password or "podium",
        )
    return DatabaseConfig(backend="postgresql")


def _postgres_available() -> bool:
    try:
        import psycopg
        conn = psycopg.connect(_get_db_config().connection_string, connect_timeout=5)
        conn.close()
        return True
    except Exception:
        return False


requires_postgres = pytest.mark.skipif(
    not _postgres_available(),
    reason="PostgreSQL not available",
)


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------

def make_result(
    agent_id: str,
    response: str = "",
    success: bool = True,
    persona: Optional[str] = None,
    thoughts: tuple[str, ...] = (),
    confidences: Optional[tuple[float, ...]] = None,
    tool_usage: Optional[list[ToolCallRecord]] = None,
    error: Optional[str] = None,
) -> AgentRunResult:
    from podium.agents.executor import build_telemetry
    from podium.agents.personas import persona_for

    confidences = confidences or tuple(0.8 for _ in thoughts)
    usage = tool_usage or []
    return AgentRunResult(
        agent_id=agent_id,
        persona=persona or persona_for(agent_id).name,
        response=response,
        reasoning=[
            ReasoningStep(step=i, thought=thought, confidence=confidence)
            for i, (thought, confidence) in enumerate(zip(thoughts, confidences), start=1)
        ],
        tokens_used=100,
        time_ms=50,
        success=success,
        error=error,
        tool_usage=usage,
        telemetry=build_telemetry(usage),
    )


def judge_score_json(
    agent_id: str,
    accuracy: float,
    completeness: float,
    clarity: float,
    insight: float,
    quote: str = "",
) -> dict[str, Any]:
    evidence = {"quote": quote or f"{agent_id} said something", "reason": "Supports the score."}
    return {
        "agentId": agent_id,
        "accuracy": accuracy,
        "completeness": completeness,
        "clarity": clarity,
        "insight": insight,
        "reasoning": f"Rationale for {agent_id}.",
        "metricEvidence": {
            "accuracy": evidence,
            "completeness": evidence,
            "clarity": evidence,
            "insight": evidence,
        },
    }


def judge_payload(winner: str, scores: list[dict[str, Any]], summary: str = "Clear winner.") -> str:
    return json.dumps({"scores": scores, "winner": winner, "summary": summary})


# ---------------------------------------------------------------------------
# Scripted collaborators
# ---------------------------------------------------------------------------

Script = Union[str, Exception, Callable[[AgentSession], str]]


class ScriptedExecutor(AgentExecutor):
    """AgentExecutor whose answers come from a per-agent script.

    A script entry is a response string, an exception to raise, or a
    callable receiving the session. `delays` sleeps before answering while
    honouring the session deadline.
    """

    def __init__(
        self,
        scripts: dict[str, Script],
        delays: Optional[dict[str, float]] = None,
        thoughts: Optional[dict[str, list[str]]] = None,
    ):
        super().__init__(name="Scripted")
        self.scripts = scripts
        self.delays = delays or {}
        self.thoughts = thoughts or {}
        self.prompts: dict[str, str] = {}
        self._lock = threading.Lock()

    def process(self, session: AgentSession) -> str:
        with self._lock:
            self.prompts[session.agent_id] = session.prompt
        for thought in self.thoughts.get(session.agent_id, []):
            session.push_reasoning(thought)

        delay = self.delays.get(session.agent_id, 0.0)
        deadline = time.monotonic() + delay
        while time.monotonic() < deadline:
            session.check_deadline()
            time.sleep(0.01)

        script = self.scripts.get(session.agent_id, "")
        if isinstance(script, Exception):
            raise script
        if callable(script):
            return script(session)
        return script


def scripted_llm_client(*contents: Union[str, Exception]) -> MagicMock:
    """OpenRouterClient double returning the given contents in order."""
    client = MagicMock()
    client.require_api_key.return_value = None

    def _side_effect(content: Union[str, Exception]):
        if isinstance(content, Exception):
            return content
        return LLMResponse(content=content, model="judge/test", tokens_used=10)

    client.complete_with_fallback.side_effect = [_side_effect(c) for c in contents]
    return client


# ---------------------------------------------------------------------------
# Config fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def config_dir() -> Path:
    return Path(__file__).parent.parent / "config"


@pytest.fixture
def app_config(config_dir: Path) -> AppConfig:
    return load_config(config_dir=config_dir)


@pytest.fixture
def model_registry(config_dir: Path) -> ModelRegistry:
    return load_model_registry(config_dir=config_dir)


@pytest.fixture
def model_router(model_registry: ModelRegistry) -> ModelRouter:
    return ModelRouter(model_registry)


@pytest.fixture
def race_config() -> AppConfig:
    """Defaults with a short agent deadline for fast races."""
    config = AppConfig()
    config.agents.timeout_seconds = 2.0
    return config


@pytest.fixture
def memory_store() -> InMemoryRaceStore:
    return InMemoryRaceStore()


@pytest.fixture
def make_judge(model_router: ModelRouter, tmp_path: Path):
    """Build a JudgeEngine over a scripted client."""

    def _make(*contents: Union[str, Exception], config=None) -> JudgeEngine:
        client = scripted_llm_client(*contents)
        return JudgeEngine(client, model_router, config, PromptLoader(tmp_path / "prompts"))

    return _make


@pytest.fixture
def llm_failure() -> LLMError:
    return LLMError("All models failed.")


# ---------------------------------------------------------------------------
# Database fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def db_config() -> DatabaseConfig:
    return _get_db_config()


@pytest.fixture
def db_engine(db_config):
    """Real PostgreSQL engine: creates schema, yields, cleans up."""
    from podium.db.engine import DatabaseEngine
    engine = DatabaseEngine(db_config)
    engine.initialize_schema()
    yield engine
    engine.close()


@pytest.fixture
def pg_store(db_engine):
    from podium.db.repository import PostgresRaceStore
    return PostgresRaceStore(db_engine)
