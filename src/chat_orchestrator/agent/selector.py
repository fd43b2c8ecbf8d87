"""Chooses between the agent runner and the direct-call strategy within one response."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Callable, Sequence

from chat_orchestrator.agent.events import ExecutionEvent, RunError, SystemNotice
from chat_orchestrator.agent.fallback import DirectCallStrategy
from chat_orchestrator.agent.graph import RoutingDecision
from chat_orchestrator.agent.runner import AgentRunner
from chat_orchestrator.errors import CapabilityIncompatibility
from chat_orchestrator.types import ConversationMessage

logger = logging.getLogger(__name__)


class StrategySelector:
    """Runs the agent runner first and falls back to a direct call invisibly.

    Fallback happens when the runner cannot be constructed, when it reports a
    capability incompatibility, when it fails, or when it finishes without content.
    Capability problems are an environment fact and only reach the operational log;
    other failures are also surfaced as an `error` log record.
    """

    def __init__(
        self,
        *,
        runner_factory: Callable[[], AgentRunner],
        fallback: DirectCallStrategy,
    ) -> None:
        self.runner_factory = runner_factory
        self.fallback = fallback
        self.strategy: str | None = None
        self.fallback_reason: str | None = None

    async def run(
        self,
        conversation: Sequence[ConversationMessage],
        decision: RoutingDecision,
    ) -> AsyncIterator[ExecutionEvent]:
        reason: str
        try:
            runner = self.runner_factory()
        except CapabilityIncompatibility as exc:
            logger.info("Agent runner unsupported here, using direct call: %s", exc)
            reason = "capability_incompatibility"
        except Exception as exc:
            logger.error("Agent runner construction failed", exc_info=True)
            yield RunError(f"Agent runner unavailable: {exc}", kind=getattr(exc, "kind", "error"))
            reason = "construction_error"
        else:
            produced = False
            try:
                async for event in runner.run(conversation, decision):
                    if event.content() is not None:
                        produced = True
                    yield event
            except CapabilityIncompatibility as exc:
                logger.info("Agent runner hit an unsupported capability, using direct call: %s", exc)
                reason = "capability_incompatibility"
            except Exception as exc:
                logger.error("Agent runner failed", exc_info=True)
                yield RunError(str(exc), kind=getattr(exc, "kind", "error"))
                reason = "error"
            else:
                if produced:
                    self.strategy = runner.name
                    return
                logger.warning("Agent runner finished without content, using direct call")
                reason = "no_output"

        self.strategy = self.fallback.name
        self.fallback_reason = reason
        yield SystemNotice("Falling back to direct model call", {"reason": reason})
        async for event in self.fallback.run(conversation):
            yield event
