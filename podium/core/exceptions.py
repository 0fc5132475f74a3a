"""Custom exception hierarchy for Podium.

All exceptions inherit from PodiumError so callers can catch broadly
or narrowly as needed.
"""


class PodiumError(Exception):
    """Base exception for all Podium errors."""


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------

class DatabaseError(PodiumError):
    """Failed database operation."""


class PersistenceError(DatabaseError):
    """A race write could not be applied. Logged, never propagated by the orchestrator."""


class SchemaInitError(DatabaseError):
    """Failed to initialize database schema."""


class ConnectionError(DatabaseError):
    """Failed to connect to database."""


# ---------------------------------------------------------------------------
# LLM
# ---------------------------------------------------------------------------

class LLMError(PodiumError):
    """Failed LLM operation."""


class RateLimitError(LLMError):
    """Hit API rate limit."""


class AuthenticationError(LLMError):
    """Invalid API key or unauthorized."""


class ModelNotFoundError(LLMError):
    """Requested model not available."""


class ResponseParseError(LLMError):
    """Failed to parse LLM response."""


class JudgeParseError(ResponseParseError):
    """Judge output could not be parsed or failed schema validation."""


# ---------------------------------------------------------------------------
# Agents & orchestration
# ---------------------------------------------------------------------------

class AgentError(PodiumError):
    """Agent processing failure."""


class AgentExecutionError(AgentError):
    """One agent failed or timed out. Recovered as a failed AgentRunResult."""

    def __init__(self, agent_id: str, message: str):
        self.agent_id = agent_id
        super().__init__(f"Agent {agent_id}: {message}")


class OrchestrationError(PodiumError):
    """Race cannot produce a verdict (e.g. zero successful agents)."""

    def __init__(self, task_id: str, message: str):
        self.task_id = task_id
        super().__init__(message)


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

class ConfigError(PodiumError):
    """Invalid or missing configuration."""
