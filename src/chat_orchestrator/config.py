"""Configuration models for the chat orchestrator."""

from __future__ import annotations

import os

from pydantic import BaseModel, Field


class AgentConfig(BaseModel):
    """Configures the agent runner and its handoff budget."""

    max_turns: int = Field(default=20, ge=1)
    max_scraped_commands: int = Field(default=3, ge=1)
    summarize_after_messages: int = Field(default=20, ge=1)


class TimeoutConfig(BaseModel):
    """Per-collaborator time budgets, in seconds."""

    command_seconds: float = Field(default=30.0, gt=0.0)
    document_context_seconds: float = Field(default=30.0, gt=0.0)
    provider_connect_seconds: float = Field(default=60.0, gt=0.0)
    stream_ceiling_seconds: float = Field(default=300.0, gt=0.0)
    heartbeat_seconds: float = Field(default=10.0, gt=0.0)
    recovery_wait_seconds: float = Field(default=3.0, ge=0.0)


class RetrievalConfig(BaseModel):
    """Configures document-context retrieval."""

    limit: int = Field(default=5, ge=1)
    similarity_threshold: float = Field(default=0.7, ge=0.0, le=1.0)
    min_vector_query_chars: int = Field(default=10, ge=1)
    embeddings_enabled: bool = False


class ProviderConfig(BaseModel):
    """Model names and credentials per provider key."""

    openai_model: str = "gpt-4o-mini"
    anthropic_model: str = "claude-3-haiku-20240307"
    gemini_model: str = "gemini-1.5-flash-latest"
    openai_api_key: str | None = None
    anthropic_api_key: str | None = None
    gemini_api_key: str | None = None
    temperature: float = Field(default=0.2, ge=0.0, le=2.0)

    def api_key_for(self, provider: str) -> str | None:
        return {
            "openai": self.openai_api_key,
            "anthropic": self.anthropic_api_key,
            "gemini": self.gemini_api_key,
        }.get(provider)


class ServiceSettings(BaseModel):
    """Top-level settings assembled from the environment."""

    command_gateway_url: str | None = None
    server_registry_url: str | None = None
    document_context_url: str | None = None
    job_store_url: str | None = None
    memory_db_path: str | None = None
    agent: AgentConfig = Field(default_factory=AgentConfig)
    timeouts: TimeoutConfig = Field(default_factory=TimeoutConfig)
    retrieval: RetrievalConfig = Field(default_factory=RetrievalConfig)
    providers: ProviderConfig = Field(default_factory=ProviderConfig)

    @classmethod
    def from_env(cls) -> "ServiceSettings":
        openai_key = os.getenv("OPENAI_API_KEY")
        return cls(
            command_gateway_url=os.getenv("COMMAND_GATEWAY_URL"),
            server_registry_url=os.getenv("SERVER_REGISTRY_URL"),
            document_context_url=os.getenv("DOCUMENT_CONTEXT_URL"),
            job_store_url=os.getenv("JOB_STORE_URL"),
            memory_db_path=os.getenv("MEMORY_DB_PATH"),
            retrieval=RetrievalConfig(embeddings_enabled=bool(openai_key)),
            providers=ProviderConfig(
                openai_model=os.getenv("OPENAI_MODEL", "gpt-4o-mini"),
                openai_api_key=openai_key,
                anthropic_api_key=os.getenv("ANTHROPIC_API_KEY"),
                gemini_api_key=os.getenv("GEMINI_API_KEY"),
            ),
        )
