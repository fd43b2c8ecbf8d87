from chat_orchestrator.commands.catalog import (
    DEFAULT_CATALOG,
    build_email_follow_up,
    strip_follow_up,
    wants_email_follow_up,
)


def test_translate_quote_and_market_phrasing() -> None:
    quote = DEFAULT_CATALOG.translate("Get the price for nvda")
    market = DEFAULT_CATALOG.translate("What are the odds for Super Bowl LIX?")

    assert quote is not None
    assert quote.render() == "/alphavantage-mcp get_quote symbol=NVDA"
    assert market is not None
    assert market.render() == "/polymarket-mcp get_market_price market_id=super-bowl-lix"


def test_places_rule_ignores_document_phrasing() -> None:
    assert DEFAULT_CATALOG.translate("find the budget in my document") is None

    places = DEFAULT_CATALOG.translate("find coffee shops near Union Square")
    assert places is not None
    assert places.server_id == "google-places-mcp"
    assert places.args == {"query": "coffee shops near Union Square"}


def test_plain_question_has_no_translation() -> None:
    assert DEFAULT_CATALOG.translate("Tell me a joke") is None


def test_render_filters_by_category() -> None:
    financial = DEFAULT_CATALOG.render("financial")

    assert financial.startswith("AVAILABLE COMMANDS:")
    assert "ALPHAVANTAGE-MCP" in financial
    assert "POLYMARKET-MCP" not in financial
    assert DEFAULT_CATALOG.render("astrology") == "No commands found for category 'astrology'."


def test_requires_auth_is_declared_in_catalog() -> None:
    spec = DEFAULT_CATALOG.command("email-mcp", "send_test_email")

    assert spec is not None
    assert spec.requires_auth
    assert DEFAULT_CATALOG.command("polymarket-mcp", "get_market_price").recovery is not None


def test_email_follow_up_detection_and_stripping() -> None:
    text = "Get the price for NVDA and email me the results"

    assert wants_email_follow_up(text)
    assert strip_follow_up(text) == "Get the price for NVDA"
    assert not wants_email_follow_up("Get the price for NVDA")


def test_build_email_follow_up_caps_body() -> None:
    command = build_email_follow_up("x " * 2000, subject="Results: NVDA")

    assert command.server_id == "email-mcp"
    assert command.args["subject"] == "Results: NVDA"
    assert len(command.args["body"]) == 1500
    assert build_email_follow_up("   ").args["body"] == "No results."
