"""Command catalog: the single table of known integrations.

Every component that needs to know about commands reads it from here: the query
classifier's hints, the discovery node's translation rules, the `list_commands` tool,
the direct-call system prompt and the `/commands` endpoint.
"""

from __future__ import annotations

import re
from collections.abc import Callable
from dataclasses import dataclass, field

from chat_orchestrator.types import ParsedCommand


@dataclass(slots=True, frozen=True)
class ParameterSpec:
    name: str
    description: str
    required: bool = False
    example: str | None = None


@dataclass(slots=True, frozen=True)
class RecoverySpec:
    """Describes how to rediscover an identifier when a lookup returns not-found."""

    id_arg: str
    search_url: str
    candidate_pattern: str


@dataclass(slots=True, frozen=True)
class CommandSpec:
    name: str
    description: str
    parameters: tuple[ParameterSpec, ...] = ()
    example: str = ""
    requires_auth: bool = False
    recovery: RecoverySpec | None = None

    def usage(self, server_id: str) -> str:
        parts = [f"/{server_id} {self.name}"]
        for param in self.parameters:
            token = f"{param.name}={param.name.upper()}"
            parts.append(token if param.required else f"[{token}]")
        return " ".join(parts)


@dataclass(slots=True, frozen=True)
class ServerSpec:
    id: str
    label: str
    category: str
    description: str
    commands: tuple[CommandSpec, ...] = field(default_factory=tuple)

    def find(self, command: str | None) -> CommandSpec | None:
        for spec in self.commands:
            if spec.name == command:
                return spec
        return None


BROWSER_SERVER_ID = "playwright-wrapper"
EMAIL_SERVER_ID = "email-mcp"

SERVERS: tuple[ServerSpec, ...] = (
    ServerSpec(
        id="alphavantage-mcp",
        label="Alpha Vantage",
        category="financial",
        description="Financial market data including quotes and chart-friendly series.",
        commands=(
            CommandSpec(
                name="get_stock_chart",
                description="Fetch historical price data for a symbol.",
                parameters=(
                    ParameterSpec("symbol", "Ticker symbol to look up.", True, "TSLA"),
                    ParameterSpec("interval", "Chart resolution (1day, 1wk, 1mo).", False, "1wk"),
                    ParameterSpec("range", "Time range window (1M, 3M, 6M, 1Y).", False, "3M"),
                ),
                example="/alphavantage-mcp get_stock_chart symbol=TSLA interval=1wk range=3M",
            ),
            CommandSpec(
                name="get_quote",
                description="Retrieve the latest quote and key stats for a symbol.",
                parameters=(ParameterSpec("symbol", "Ticker symbol to look up.", True, "NVDA"),),
                example="/alphavantage-mcp get_quote symbol=NVDA",
            ),
        ),
    ),
    ServerSpec(
        id="polymarket-mcp",
        label="Polymarket",
        category="prediction",
        description="Prediction market prices and metadata.",
        commands=(
            CommandSpec(
                name="get_market_price",
                description="Fetch pricing for a market. Market ids must be exact slugs.",
                parameters=(
                    ParameterSpec("market_id", "Slug or identifier for the market.", True, "us_election_2024"),
                ),
                example="/polymarket-mcp get_market_price market_id=us_election_2024",
                recovery=RecoverySpec(
                    id_arg="market_id",
                    search_url="https://polymarket.com/search?q={terms}",
                    candidate_pattern=r"/(?:event|market)/([a-z0-9][a-z0-9_-]*)",
                ),
            ),
        ),
    ),
    ServerSpec(
        id="grokipedia-mcp",
        label="Grokipedia",
        category="knowledge",
        description="Search the Grokipedia knowledge base.",
        commands=(
            CommandSpec(
                name="search",
                description="Search Grokipedia.",
                parameters=(
                    ParameterSpec("query", "Search text.", True, "Model Context Protocol"),
                    ParameterSpec("limit", "Maximum results.", False, "5"),
                ),
                example='/grokipedia-mcp search query="Model Context Protocol" limit=5',
            ),
        ),
    ),
    ServerSpec(
        id="canva-mcp",
        label="Canva",
        category="design",
        description="Create Canva designs from templates.",
        commands=(
            CommandSpec(
                name="create_design",
                description="Create a design (presentation, doc or whiteboard).",
                parameters=(
                    ParameterSpec("template", "presentation, doc or whiteboard.", False, "presentation"),
                    ParameterSpec("text", "Text placed on the design.", False, "Hello World"),
                ),
                example='/canva-mcp create_design template=presentation text="Hello World"',
                requires_auth=True,
            ),
        ),
    ),
    ServerSpec(
        id="gemini-mcp",
        label="Gemini",
        category="llm",
        description="Lightweight text generation with Gemini.",
        commands=(
            CommandSpec(
                name="generate_text",
                description="Generate text from a prompt.",
                parameters=(
                    ParameterSpec("prompt", "Prompt text.", True, "Write a product description"),
                    ParameterSpec("model", "Model name.", False),
                    ParameterSpec("temperature", "Sampling temperature.", False),
                    ParameterSpec("max_output_tokens", "Output token limit.", False),
                ),
                example='/gemini-mcp generate_text prompt="Write a product description"',
            ),
        ),
    ),
    ServerSpec(
        id=BROWSER_SERVER_ID,
        label="Browser automation",
        category="automation",
        description="Drive a headless browser: navigate, snapshot, click and extract.",
        commands=(
            CommandSpec(
                name="browser_navigate",
                description="Navigate to a URL.",
                parameters=(ParameterSpec("url", "Page to open.", True, "https://example.com"),),
                example="/playwright-wrapper browser_navigate url=https://example.com",
            ),
            CommandSpec(
                name="browser_wait_for",
                description="Wait for a number of seconds.",
                parameters=(ParameterSpec("time", "Seconds to wait.", True, "3"),),
                example="/playwright-wrapper browser_wait_for time=3",
            ),
            CommandSpec(
                name="browser_snapshot",
                description="Capture a structured accessibility snapshot of the current page.",
                example="/playwright-wrapper browser_snapshot",
            ),
            CommandSpec(
                name="browser_click",
                description="Click an element on the page.",
                parameters=(
                    ParameterSpec("element", "Human description of the element.", True),
                    ParameterSpec("ref", "Selector from the snapshot.", True),
                ),
                example='/playwright-wrapper browser_click element="Search button" ref=e12',
            ),
            CommandSpec(
                name="browser_extract_text",
                description="Extract all visible text from a page.",
                parameters=(ParameterSpec("url", "Page to read.", False),),
                example="/playwright-wrapper browser_extract_text url=https://example.com",
            ),
            CommandSpec(
                name="browser_take_screenshot",
                description="Capture a screenshot.",
                parameters=(
                    ParameterSpec("url", "Page to capture.", False),
                    ParameterSpec("filename", "Output file name.", False),
                    ParameterSpec("fullPage", "true or false.", False),
                ),
                example="/playwright-wrapper browser_take_screenshot url=https://example.com fullPage=true",
            ),
        ),
    ),
    ServerSpec(
        id="search-mcp",
        label="Web search",
        category="knowledge",
        description="Search the web using DuckDuckGo.",
        commands=(
            CommandSpec(
                name="web_search",
                description="Search the web.",
                parameters=(
                    ParameterSpec("query", "Search text.", True, "Model Context Protocol"),
                    ParameterSpec("max_results", "Maximum results.", False, "5"),
                ),
                example='/search-mcp web_search query="Model Context Protocol" max_results=5',
            ),
        ),
    ),
    ServerSpec(
        id=EMAIL_SERVER_ID,
        label="Email",
        category="communication",
        description="Send email to the signed-in user.",
        commands=(
            CommandSpec(
                name="send_test_email",
                description="Send an email to the signed-in user's own address.",
                parameters=(
                    ParameterSpec("subject", "Subject line (default: Test Email).", False),
                    ParameterSpec("body", "Message body (default: test).", False),
                ),
                example='/email-mcp send_test_email subject="Weekly Report" body="hello world"',
                requires_auth=True,
            ),
        ),
    ),
    ServerSpec(
        id="google-places-mcp",
        label="Google Places",
        category="location",
        description="Find businesses and places.",
        commands=(
            CommandSpec(
                name="search_places",
                description="Search places by text, optionally near a location.",
                parameters=(
                    ParameterSpec("query", "What to look for.", True, "Starbucks in Des Moines"),
                    ParameterSpec("location", "Bias results to this location.", False),
                ),
                example='/google-places-mcp search_places query="Starbucks in Des Moines"',
            ),
            CommandSpec(
                name="get_place_details",
                description="Fetch details for a place id.",
                parameters=(
                    ParameterSpec("place_id", "Place identifier.", True),
                    ParameterSpec("fields", "Comma separated field list.", False),
                ),
                example="/google-places-mcp get_place_details place_id=ChIJ",
            ),
        ),
    ),
)


class CommandCatalog:
    """Lookup and rendering helpers over the server table."""

    def __init__(self, servers: tuple[ServerSpec, ...] = SERVERS) -> None:
        self._servers = {server.id: server for server in servers}

    def servers(self) -> list[ServerSpec]:
        return list(self._servers.values())

    def server(self, server_id: str) -> ServerSpec | None:
        return self._servers.get(server_id.lower())

    def command(self, server_id: str, command: str | None) -> CommandSpec | None:
        server = self.server(server_id)
        return server.find(command) if server else None

    def server_ids(self) -> list[str]:
        return list(self._servers)

    def render(self, category: str | None = None) -> str:
        """Human-readable catalog text, optionally filtered by category."""
        lines = ["AVAILABLE COMMANDS:"]
        index = 0
        for server in self._servers.values():
            if category and server.category != category.lower():
                continue
            index += 1
            lines.append("")
            lines.append(f"{index}. {server.id.upper()} ({server.label}): {server.description}")
            for spec in server.commands:
                lines.append(f"   - {spec.name}: {spec.description}")
                lines.append(f"     Format: {spec.usage(server.id)}")
                if spec.example:
                    lines.append(f"     Example: {spec.example}")
                if spec.requires_auth:
                    lines.append("     Requires sign-in.")
        if index == 0:
            return f"No commands found for category '{category}'."
        return "\n".join(lines)

    def as_dict(self) -> list[dict[str, object]]:
        return [
            {
                "id": server.id,
                "label": server.label,
                "category": server.category,
                "description": server.description,
                "commands": [
                    {
                        "name": spec.name,
                        "description": spec.description,
                        "usage": spec.usage(server.id),
                        "example": spec.example,
                        "requires_auth": spec.requires_auth,
                        "parameters": [
                            {
                                "name": param.name,
                                "description": param.description,
                                "required": param.required,
                                "example": param.example,
                            }
                            for param in spec.parameters
                        ],
                    }
                    for spec in server.commands
                ],
            }
            for server in self._servers.values()
        ]

    def translate(self, text: str) -> ParsedCommand | None:
        """Map plain-language phrasing to a command with the fixed translation rules."""
        for rule in TRANSLATION_RULES:
            match = rule.pattern.search(text)
            if match:
                command = rule.build(match)
                if command is not None:
                    return command
        return None


# ---------------------------------------------------------------------------
# Plain-language translation rules
# ---------------------------------------------------------------------------

@dataclass(slots=True, frozen=True)
class TranslationRule:
    name: str
    pattern: re.Pattern[str]
    build: Callable[[re.Match[str]], ParsedCommand | None]


def _clean(value: str) -> str:
    return value.strip().strip("\"'").rstrip("?.!").strip()


def _slugify(value: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", _clean(value).lower()).strip("-")


def _quote(match: re.Match[str]) -> ParsedCommand | None:
    return ParsedCommand("alphavantage-mcp", "get_quote", {"symbol": match.group(1).upper()})


def _chart(match: re.Match[str]) -> ParsedCommand | None:
    return ParsedCommand("alphavantage-mcp", "get_stock_chart", {"symbol": match.group(1).upper()})


def _grokipedia(match: re.Match[str]) -> ParsedCommand | None:
    query = _clean(match.group(1))
    return ParsedCommand("grokipedia-mcp", "search", {"query": query}) if query else None


def _market(match: re.Match[str]) -> ParsedCommand | None:
    slug = _slugify(match.group(1))
    return ParsedCommand("polymarket-mcp", "get_market_price", {"market_id": slug}) if slug else None


def _places(match: re.Match[str]) -> ParsedCommand | None:
    query = _clean(match.group(1))
    if re.search(r"\b(?:my|document|file|upload|attachment)", query, re.IGNORECASE):
        return None
    return ParsedCommand("google-places-mcp", "search_places", {"query": query}) if query else None


def _navigate(match: re.Match[str]) -> ParsedCommand | None:
    return ParsedCommand(BROWSER_SERVER_ID, "browser_navigate", {"url": match.group(1).rstrip(".,")})


def _screenshot(match: re.Match[str]) -> ParsedCommand | None:
    return ParsedCommand(BROWSER_SERVER_ID, "browser_take_screenshot", {"url": match.group(1).rstrip(".,")})


def _design(match: re.Match[str]) -> ParsedCommand | None:
    text = _clean(match.group(1) or "")
    args = {"template": "presentation"}
    if text:
        args["text"] = text
    return ParsedCommand("canva-mcp", "create_design", args)


def _email(match: re.Match[str]) -> ParsedCommand | None:
    return ParsedCommand(EMAIL_SERVER_ID, "send_test_email", {})


def _web_search(match: re.Match[str]) -> ParsedCommand | None:
    query = _clean(match.group(1))
    return ParsedCommand("grokipedia-mcp", "search", {"query": query}) if query else None


_I = re.IGNORECASE

TRANSLATION_RULES: tuple[TranslationRule, ...] = (
    TranslationRule(
        "email",
        re.compile(r"^\s*(?:please\s+)?(?:send\s+(?:me\s+|us\s+)?(?:a\s+)?test\s+email|email\s+me|send\s+(?:me\s+)?an?\s+email)\b", _I),
        _email,
    ),
    TranslationRule(
        "quote",
        re.compile(r"\b(?:stock\s+)?(?:price|quote)\s+(?:for|of|on)\s+\$?([A-Za-z]{1,5})\b", _I),
        _quote,
    ),
    TranslationRule(
        "chart",
        re.compile(r"\bchart\s+(?:for|of)\s+\$?([A-Za-z]{1,5})\b", _I),
        _chart,
    ),
    TranslationRule(
        "grokipedia",
        re.compile(r"\b(?:search\s+)?(?:grokipedia|grokypedia|brockopedia|broccopedia)\s+(?:for\s+)?(.+)", _I),
        _grokipedia,
    ),
    TranslationRule(
        "market",
        re.compile(r"\b(?:odds|chances|prediction\s+market|polymarket)\s+(?:for|on|of|about)\s+(.+)", _I),
        _market,
    ),
    TranslationRule(
        "screenshot",
        re.compile(r"\bscreenshot\s+of\s+(https?://\S+)", _I),
        _screenshot,
    ),
    TranslationRule(
        "navigate",
        re.compile(r"\b(?:visit|scrape|open|browse(?:\s+to)?)\s+(https?://\S+)", _I),
        _navigate,
    ),
    TranslationRule(
        "design",
        re.compile(r"\bcreate\s+(?:a\s+)?(?:canva\s+)?design(?:\s+(?:with|saying)\s+(?:the\s+)?(?:text\s+)?(.+))?", _I),
        _design,
    ),
    TranslationRule(
        "places",
        re.compile(r"\b(?:find|nearest|where\s+is(?:\s+the\s+nearest)?)\s+(.+?\s+(?:in|near)\s+.+)", _I),
        _places,
    ),
    TranslationRule(
        "web_search",
        re.compile(r"^\s*search\s+(?:the\s+web\s+)?for\s+(.+)", _I),
        _web_search,
    ),
)


# ---------------------------------------------------------------------------
# Two-step follow-ups ("... and email me the results")
# ---------------------------------------------------------------------------

_EMAIL_FOLLOW_UP = re.compile(
    r"\b(?:and|then)\s+(?:please\s+)?(?:e-?mail|send)\s+(?:me\s+|us\s+|it\s+|them\s+)?(?:the\s+)?(?:results?|findings|them|it|that|this|summary)?(?:\s+to\s+me)?\b(?:.*\b(?:e-?mail)\b)?",
    _I,
)
_EMAIL_PROMISE = re.compile(r"\b(?:i\s*(?:'ll|will)|let\s+me)\s+(?:now\s+)?(?:e-?mail|send)\b.*\b(?:results?|summary|email)\b", _I)


def wants_email_follow_up(text: str) -> bool:
    """True when the text asks for (or promises) the results to be emailed as a second step."""
    match = _EMAIL_FOLLOW_UP.search(text)
    if match and re.search(r"e-?mail", match.group(0), _I):
        return True
    return bool(_EMAIL_PROMISE.search(text))


def strip_follow_up(text: str) -> str:
    """Remove the trailing follow-up clause so the primary request can be translated."""
    match = _EMAIL_FOLLOW_UP.search(text)
    if match and re.search(r"e-?mail", match.group(0), _I):
        return text[: match.start()].strip()
    return text


def build_email_follow_up(prior_output: str, *, subject: str = "Results") -> ParsedCommand:
    body = " ".join(prior_output.split())
    if len(body) > 1500:
        body = body[:1497] + "..."
    return ParsedCommand(EMAIL_SERVER_ID, "send_test_email", {"subject": subject, "body": body or "No results."})


DEFAULT_CATALOG = CommandCatalog()
