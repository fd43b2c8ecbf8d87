"""Slash-command tokenizer.

Grammar: ``/serverId command key="quoted value" key='quoted value' key=bare positional``.
Parsing never raises; malformed input is reported through `ParseResult.error`.
"""

from __future__ import annotations

import re

from chat_orchestrator.types import ParsedCommand, ParseResult

# Used by the direct-call strategy to find command-shaped text inside model output.
COMMAND_PATTERN = re.compile(
    r"(?<![\w/])/([a-z][a-z0-9_-]*)\s+([a-z_][a-z0-9_]*)((?:\s+\w+=(?:\"[^\"]*\"|'[^']*'|[^\s`]+))*)",
    re.IGNORECASE,
)


def parse_command(text: str) -> ParseResult:
    stripped = text.strip()
    if not stripped.startswith("/"):
        return ParseResult(command=None, error="Commands must start with '/'.")

    tokens = _tokenize(stripped[1:])
    if not tokens or not tokens[0].strip():
        return ParseResult(command=None, error="Missing server id after '/'.")

    server_id = tokens[0].lower()
    command = tokens[1] if len(tokens) > 1 else None
    args: dict[str, str] = {}
    positional: list[str] = []
    for token in tokens[2:]:
        key, sep, value = token.partition("=")
        if not sep:
            positional.append(_strip_quotes(token))
        elif not key:
            positional.append(_strip_quotes(value))
        else:
            args[key] = _strip_quotes(value)

    return ParseResult(
        command=ParsedCommand(
            server_id=server_id,
            command=command,
            args=args,
            positional_args=tuple(positional),
        )
    )


def is_slash_command(text: str) -> bool:
    return parse_command(text).ok


def find_commands(text: str, limit: int) -> list[ParsedCommand]:
    """Best-effort extraction of command-shaped substrings from free text.

    Model output is not a protocol; anything that does not parse cleanly is skipped
    and duplicates are collapsed.
    """

    found: list[ParsedCommand] = []
    seen: set[str] = set()
    for match in COMMAND_PATTERN.finditer(text):
        result = parse_command(match.group(0))
        if not result.ok or result.command is None:
            continue
        rendered = result.command.render()
        if rendered in seen:
            continue
        seen.add(rendered)
        found.append(result.command)
        if len(found) >= limit:
            break
    return found


def _tokenize(text: str) -> list[str]:
    tokens: list[str] = []
    current: list[str] = []
    quote: str | None = None
    escape = False
    for char in text:
        if escape:
            current.append(char)
            escape = False
            continue
        if char == "\\" and quote:
            escape = True
            continue
        if char in ("'", '"'):
            if quote is None:
                quote = char
                current.append(char)
                continue
            if char == quote:
                quote = None
                current.append(char)
                continue
        if quote is None and char.isspace():
            if current:
                tokens.append("".join(current))
                current = []
            continue
        current.append(char)
    if current:
        tokens.append("".join(current))
    return tokens


def _strip_quotes(value: str) -> str:
    if len(value) >= 2 and value[0] == value[-1] and value[0] in ("'", '"'):
        return value[1:-1]
    return value
