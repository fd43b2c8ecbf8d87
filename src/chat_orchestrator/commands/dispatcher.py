"""Command dispatch with auth forwarding and not-found recovery."""

from __future__ import annotations

import asyncio
import json
import logging
import re
from urllib.parse import quote_plus

from chat_orchestrator.commands.catalog import (
    BROWSER_SERVER_ID,
    DEFAULT_CATALOG,
    CommandCatalog,
    RecoverySpec,
)
from chat_orchestrator.commands.gateway import (
    DYNAMIC_SERVER_PREFIX,
    CommandGateway,
    GatewayResponse,
    ServerEndpoint,
    ServerRegistry,
)
from chat_orchestrator.commands.parser import parse_command
from chat_orchestrator.config import TimeoutConfig
from chat_orchestrator.errors import AuthenticationRequired, UpstreamTimeout
from chat_orchestrator.types import CommandResult, ParsedCommand

logger = logging.getLogger(__name__)

# Text fallback only; structured statuses are checked first.
_NOT_FOUND_TEXT = re.compile(r"\b(?:was\s+)?not\s+found\b|\bno\s+market\b", re.IGNORECASE)


class CommandDispatcher:
    """Resolves a parsed command to its gateway and executes it.

    Failures never raise: every outcome is a `CommandResult` whose `output` is safe to
    show to the user or feed back to a model.
    """

    def __init__(
        self,
        *,
        registry: ServerRegistry,
        gateway: CommandGateway,
        catalog: CommandCatalog = DEFAULT_CATALOG,
        timeouts: TimeoutConfig | None = None,
    ) -> None:
        self.registry = registry
        self.gateway = gateway
        self.catalog = catalog
        self.timeouts = timeouts or TimeoutConfig()

    async def dispatch_text(self, text: str, *, bearer_token: str | None = None) -> CommandResult:
        parsed = parse_command(text)
        if parsed.command is None:
            return CommandResult(
                command=text.strip(),
                status="error",
                output=f"Invalid command format: {parsed.error} "
                'Expected something like "/alphavantage-mcp get_quote symbol=NVDA".',
            )
        return await self.dispatch(parsed.command, bearer_token=bearer_token)

    async def dispatch(self, command: ParsedCommand, *, bearer_token: str | None = None) -> CommandResult:
        rendered = command.render()
        server = self.catalog.server(command.server_id)

        if command.command is None:
            if server is None:
                return CommandResult(rendered, "error", "No commands registered for this server.")
            names = ", ".join(spec.name for spec in server.commands)
            return CommandResult(rendered, "ok", f"Available commands for {server.id}: {names}")

        if server is None and not command.server_id.startswith(DYNAMIC_SERVER_PREFIX):
            known = ", ".join(self.registry.known_servers())
            return CommandResult(
                rendered,
                "error",
                f"Unknown server '{command.server_id}'. Known servers: {known}.",
            )

        spec = self.catalog.command(command.server_id, command.command)
        if spec is not None and spec.requires_auth and not bearer_token:
            return CommandResult(rendered, "auth_required", AuthenticationRequired.user_message)

        result = await self._execute(command, bearer_token=bearer_token)
        if result.status == "not_found" and spec is not None and spec.recovery is not None:
            return await self._recover(command, spec.recovery, bearer_token=bearer_token)
        return result

    async def _execute(self, command: ParsedCommand, *, bearer_token: str | None) -> CommandResult:
        rendered = command.render()
        try:
            endpoint = await self.registry.resolve(command.server_id)
        except Exception as exc:
            logger.exception("Server lookup failed for %s", command.server_id)
            return CommandResult(rendered, "error", f"Error resolving server: {exc}")
        if endpoint is None:
            return CommandResult(rendered, "error", f"Server '{command.server_id}' is not registered.")

        logger.info("Dispatching command %s", rendered)
        try:
            response = await self._invoke_with_timeout(endpoint, command, bearer_token)
        except UpstreamTimeout as exc:
            logger.warning("Command timed out: %s", exc)
            return CommandResult(rendered, "error", f"Error executing command: {exc}")
        except Exception as exc:
            logger.exception("Command %s failed", rendered)
            return CommandResult(rendered, "error", f"Error executing command: {exc}")

        return _to_result(rendered, response)

    async def _invoke_with_timeout(
        self,
        endpoint: ServerEndpoint,
        command: ParsedCommand,
        bearer_token: str | None,
    ) -> GatewayResponse:
        seconds = self.timeouts.command_seconds
        try:
            return await asyncio.wait_for(
                self.gateway.invoke(endpoint, command, bearer_token=bearer_token),
                timeout=seconds,
            )
        except asyncio.TimeoutError as exc:
            raise UpstreamTimeout("Command gateway", seconds) from exc

    async def _recover(
        self,
        command: ParsedCommand,
        recovery: RecoverySpec,
        *,
        bearer_token: str | None,
    ) -> CommandResult:
        """Search for the identifier in a browser and retry with each candidate.

        Runs at most once per dispatched command; retries go through `_execute` so a
        failing candidate never starts another search.
        """

        original_id = command.args.get(recovery.id_arg, "")
        terms = re.sub(r"[-_]+", " ", original_id).strip()
        logger.info("Lookup for %s=%s returned not-found; searching for '%s'", recovery.id_arg, original_id, terms)

        steps = (
            ParsedCommand(
                BROWSER_SERVER_ID,
                "browser_navigate",
                {"url": recovery.search_url.format(terms=quote_plus(terms))},
            ),
            ParsedCommand(
                BROWSER_SERVER_ID,
                "browser_wait_for",
                {"time": f"{self.timeouts.recovery_wait_seconds:g}"},
            ),
        )
        for step in steps:
            outcome = await self._execute(step, bearer_token=bearer_token)
            if outcome.status in ("error", "auth_required"):
                logger.warning("Recovery step %s failed: %s", step.render(), outcome.output)
                return _no_match(command, terms)

        snapshot = await self._execute(
            ParsedCommand(BROWSER_SERVER_ID, "browser_snapshot"), bearer_token=bearer_token
        )
        if snapshot.status in ("error", "auth_required"):
            return _no_match(command, terms)

        candidates = _extract_candidates(snapshot.output, recovery.candidate_pattern, exclude=original_id)
        for candidate in candidates:
            retry = await self._execute(command.with_args(**{recovery.id_arg: candidate}), bearer_token=bearer_token)
            if retry.ok:
                retry.output = f"Found a matching entry via search: {candidate}\n{retry.output}"
                return retry
        return _no_match(command, terms)


def _to_result(rendered: str, response: GatewayResponse) -> CommandResult:
    if response.status_code in (401, 403):
        return CommandResult(rendered, "auth_required", AuthenticationRequired.user_message, response.payload)

    if not response.ok:
        detail = response.text.strip()[:200]
        message = f"Command gateway request failed with status {response.status_code}" + (
            f": {detail}" if detail else ""
        )
        status = "not_found" if _is_not_found(response) else "error"
        return CommandResult(rendered, status, f"Error executing command: {message}", response.payload)

    payload = response.payload
    result = payload.get("result") if isinstance(payload, dict) else None
    if isinstance(result, dict) and result.get("type") == "error":
        message = str(result.get("message") or result.get("error") or "Unknown error")
        status = "not_found" if _is_not_found(response) else "error"
        return CommandResult(rendered, status, f"Error executing command: {message}", payload)

    if _is_not_found(response):
        return CommandResult(rendered, "not_found", _render_payload(response), payload)

    if isinstance(result, dict) and result.get("type") in ("text", "markdown"):
        return CommandResult(rendered, "ok", str(result.get("content", "")), payload)
    return CommandResult(rendered, "ok", _render_payload(response), payload)


def _is_not_found(response: GatewayResponse) -> bool:
    if response.status_code == 404:
        return True
    payload = response.payload
    if isinstance(payload, dict):
        if payload.get("status") == "not_found":
            return True
        result = payload.get("result")
        if isinstance(result, dict) and result.get("type") == "error" and result.get("code") == "not_found":
            return True
        if isinstance(result, dict) and result.get("type") not in (None, "error"):
            # A typed success payload is trusted over free text.
            return False
    return bool(_NOT_FOUND_TEXT.search(response.text or ""))


def _render_payload(response: GatewayResponse) -> str:
    if response.payload is None:
        return response.text
    return json.dumps(response.payload, indent=2, default=str)


def _extract_candidates(snapshot: str, pattern: str, *, exclude: str) -> list[str]:
    seen: list[str] = []
    for match in re.finditer(pattern, snapshot):
        slug = match.group(1)
        if slug != exclude and slug not in seen:
            seen.append(slug)
    return seen


def _no_match(command: ParsedCommand, terms: str) -> CommandResult:
    return CommandResult(
        command.render(),
        "not_found",
        f"No matching markets found for '{terms}'. Try a different search term.",
    )
