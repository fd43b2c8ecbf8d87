"""Chat orchestrator package."""

from .config import AgentConfig, RetrievalConfig, ServiceSettings, TimeoutConfig

__all__ = ["AgentConfig", "RetrievalConfig", "ServiceSettings", "TimeoutConfig"]
