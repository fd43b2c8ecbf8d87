"""Query classification used to seed routing decisions."""

from __future__ import annotations

import re
from collections.abc import Sequence
from dataclasses import dataclass

from chat_orchestrator.types import ClassificationContext, IntentClassification

DOCUMENT_KEYWORDS: tuple[str, ...] = (
    "document", "documents", "uploaded", "file", "files", "pdf", "pdfs",
    "what i uploaded", "my document", "my documents", "the document", "that document",
    "the documents", "those documents", "tell me about", "what does it say",
    "what can you tell me", "analyze", "search my documents", "find in my documents",
    "in my document", "in my documents", "from my document", "from my documents",
    "document says", "documents say", "document contains", "documents contain",
    "document mentions", "documents mention", "what's in", "what is in", "content of",
    "information in", "about the document", "about the documents", "about the file",
    "about the files", "about my document", "about my documents", "about my file",
    "about my files", "what can you tell me about", "tell me about the",
    "what does the document", "what do the documents", "tell me about my",
)

FILE_KEYWORDS: tuple[str, ...] = ("file", "files", "upload", "uploaded", "attachment", "attachments")

QUESTION_PATTERNS: tuple[re.Pattern[str], ...] = tuple(
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        r"what (does|can|is|are).*say",
        r"tell me (about|what)",
        r"what.*(about|in|from)",
        r"search.*(for|in|my)",
        r"find.*(in|from)",
        r"analyze",
        r"summarize",
    )
)

_EXTENSION = re.compile(r"\.(pdf|docx?|txt|csv)")
_NAME_SPLIT = re.compile(r"[\s_-]+")


@dataclass(slots=True, frozen=True)
class DocumentSummary:
    """Minimal view of an attached document used for name matching."""

    id: str
    file_name: str
    status: str = "ready"


def classify_query(
    query: str,
    documents: Sequence[DocumentSummary] | None = None,
) -> IntentClassification:
    """Score a query and map the score onto an intent.

    The raw score is additive and may exceed 1; thresholds are applied to the raw
    value and only the reported confidence is clamped into [0, 1].
    """

    lower = query.lower().strip()
    words = lower.split()

    has_document_keyword = any(keyword in lower for keyword in DOCUMENT_KEYWORDS)
    has_file_keyword = any(keyword in lower for keyword in FILE_KEYWORDS)
    matches_question = any(pattern.search(query) for pattern in QUESTION_PATTERNS)

    score = 0.0
    document_name: str | None = None
    for doc in documents or ():
        name_lower = doc.file_name.lower()
        base = _EXTENSION.sub("", name_lower, count=1)
        name_words = _NAME_SPLIT.split(base)

        if base in lower or name_lower in lower:
            document_name = doc.file_name
            score += 0.3
            break

        significant = [word for word in name_words if len(word) > 3 and word in lower]
        if len(significant) >= 2 or (len(significant) == 1 and len(name_words) <= 3):
            document_name = doc.file_name
            score += 0.2
            break

    keyword_hit = has_document_keyword or has_file_keyword
    if keyword_hit or document_name:
        score += 0.5
    if matches_question:
        score += 0.3
    if document_name:
        score += 0.3
    if documents:
        score += 0.2
    if "about" in lower and keyword_hit:
        score += 0.2
    if ("tell me" in lower or "what can you tell" in lower) and keyword_hit:
        score += 0.2
    if "search my documents" in lower or "find in my documents" in lower:
        score += 0.3

    if score >= 0.5:
        intent, tool = "document", "search_documents"
    elif score >= 0.3:
        intent, tool = "hybrid", "search_documents"
    elif "remember" in lower or "store" in lower or "save" in lower:
        intent, tool, score = "memory", "store_memory", 0.7
    elif "what did" in lower or "what i told" in lower:
        intent, tool, score = "memory", "query_memory", 0.7
    elif lower.startswith("/") or "command" in lower:
        intent, tool, score = "command", "command_dispatcher", 0.8
    else:
        intent, tool, score = "web", "web_search", 0.5

    return IntentClassification(
        intent=intent,
        confidence=min(1.0, max(0.0, score)),
        suggested_tool=tool,
        context=ClassificationContext(
            keywords=[word for word in words if len(word) > 2],
            is_question=query.strip().endswith("?") or matches_question,
            mentions_document=has_document_keyword,
            mentions_file=has_file_keyword,
            mentions_upload="upload" in lower,
            document_name=document_name,
        ),
    )


def matching_document_ids(query: str, documents: Sequence[DocumentSummary]) -> list[str]:
    """Return ids of documents whose file name is referenced by the query."""
    lower = query.lower()
    query_words = lower.split()
    matched: list[str] = []
    for doc in documents:
        name_lower = doc.file_name.lower()
        if name_lower in lower or (lower and lower in name_lower):
            matched.append(doc.id)
            continue
        name_words = _NAME_SPLIT.split(_EXTENSION.sub("", name_lower, count=1))
        overlap = [
            word
            for word in name_words
            if len(word) > 3 and any(qw in word or word in qw for qw in query_words)
        ]
        if len(overlap) >= 2:
            matched.append(doc.id)
    return matched
