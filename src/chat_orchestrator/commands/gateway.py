"""Command gateway and server registry collaborators."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Protocol

import httpx

from chat_orchestrator.commands.catalog import CommandCatalog, DEFAULT_CATALOG
from chat_orchestrator.types import ParsedCommand

logger = logging.getLogger(__name__)

DYNAMIC_SERVER_PREFIX = "srv_"


@dataclass(slots=True, frozen=True)
class ServerEndpoint:
    """Where to send a command for one server id, and with which credentials."""

    server_id: str
    url: str
    auth_header: str | None = None


@dataclass(slots=True)
class GatewayResponse:
    status_code: int
    payload: Any
    text: str

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300


class ServerRegistry(Protocol):
    async def resolve(self, server_id: str) -> ServerEndpoint | None:
        """Return the endpoint for a server id, or None when unknown."""

    def known_servers(self) -> list[str]:
        """Ids that can be resolved without a remote lookup."""


class CommandGateway(Protocol):
    async def invoke(
        self,
        endpoint: ServerEndpoint,
        command: ParsedCommand,
        *,
        bearer_token: str | None = None,
    ) -> GatewayResponse:
        """Send one command to the gateway."""


class StaticServerRegistry:
    """Resolves every catalog server to the shared gateway URL."""

    def __init__(self, gateway_url: str, catalog: CommandCatalog = DEFAULT_CATALOG) -> None:
        self.gateway_url = gateway_url
        self.catalog = catalog

    async def resolve(self, server_id: str) -> ServerEndpoint | None:
        if self.catalog.server(server_id) is None:
            return None
        return ServerEndpoint(server_id=server_id, url=self.gateway_url)

    def known_servers(self) -> list[str]:
        return self.catalog.server_ids()


class HttpServerRegistry:
    """Static catalog lookup plus a remote lookup for user-registered `srv_` ids."""

    def __init__(
        self,
        registry_url: str,
        fallback: StaticServerRegistry,
        *,
        timeout_seconds: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.registry_url = registry_url.rstrip("/")
        self.fallback = fallback
        self.timeout_seconds = timeout_seconds
        self._client = client

    async def resolve(self, server_id: str) -> ServerEndpoint | None:
        if not server_id.startswith(DYNAMIC_SERVER_PREFIX):
            return await self.fallback.resolve(server_id)

        url = f"{self.registry_url}/{server_id}"
        try:
            response = await self._get(url)
        except httpx.HTTPError as exc:
            logger.warning("Server registry lookup failed for %s: %s", server_id, exc)
            return None
        if response.status_code == 404:
            return None
        if response.status_code >= 400:
            logger.warning("Server registry returned %s for %s", response.status_code, server_id)
            return None

        try:
            body = response.json()
        except ValueError:
            logger.warning("Server registry returned a non-JSON body for %s", server_id)
            return None
        if not isinstance(body, dict):
            logger.warning("Server registry returned an unexpected body for %s", server_id)
            return None
        gateway_url = body.get("gatewayUrl") or body.get("gateway_url")
        if not gateway_url:
            return None
        return ServerEndpoint(
            server_id=server_id,
            url=gateway_url,
            auth_header=body.get("authHeader") or body.get("auth_header"),
        )

    def known_servers(self) -> list[str]:
        return self.fallback.known_servers()

    async def _get(self, url: str) -> httpx.Response:
        if self._client is not None:
            return await self._client.get(url, timeout=self.timeout_seconds)
        async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
            return await client.get(url)


class HttpCommandGateway:
    """POSTs `{serverId, command, args, positionalArgs}` to a gateway endpoint."""

    def __init__(
        self,
        *,
        timeout_seconds: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.timeout_seconds = timeout_seconds
        self._client = client

    async def invoke(
        self,
        endpoint: ServerEndpoint,
        command: ParsedCommand,
        *,
        bearer_token: str | None = None,
    ) -> GatewayResponse:
        headers = {"Content-Type": "application/json"}
        if bearer_token:
            headers["Authorization"] = f"Bearer {bearer_token}"
        elif endpoint.auth_header:
            headers["Authorization"] = endpoint.auth_header

        body = {
            "serverId": command.server_id,
            "command": command.command,
            "args": dict(command.args),
            "positionalArgs": list(command.positional_args),
        }
        if self._client is not None:
            response = await self._client.post(
                endpoint.url, json=body, headers=headers, timeout=self.timeout_seconds
            )
        else:
            async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
                response = await client.post(endpoint.url, json=body, headers=headers)

        try:
            payload = response.json()
        except ValueError:
            payload = None
        return GatewayResponse(status_code=response.status_code, payload=payload, text=response.text)
