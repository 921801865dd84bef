"""Question intent classifier: structured lookup, semantic search, or both.

One single-shot LLM call returns a JSON object such as
``{"intent": "structured", "structured_queries": ["meetings_list"]}``.
Anything unusable (provider error, bad JSON, unknown intent, no valid
labels) degrades to semantic search: classification only narrows which
retrieval runs, it must never block the question.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from enum import Enum

from compass.config import ClassifierCfg
from compass.rag.llm_client import acomplete, resolve_api_key

logger = logging.getLogger(__name__)


class Intent(str, Enum):
    STRUCTURED = "structured"
    SEMANTIC = "semantic"
    HYBRID = "hybrid"


# Closed vocabulary; every label has a fetcher in compass.rag.fetchers.
STRUCTURED_LABELS: dict[str, str] = {
    "content_by_category": "counts of content assets grouped by category",
    "content_by_status": "counts of content assets grouped by workflow status",
    "meetings_list": "the most recent meetings with dates",
    "deliverables_list": "deliverables with their status",
    "notes_list": "the most recent notes",
    "knowledge_overview": "how many documents of each type exist",
}


@dataclass
class Classification:
    intent: Intent = Intent.SEMANTIC
    structured_labels: list[str] = field(default_factory=list)

    @property
    def wants_structured(self) -> bool:
        return self.intent in (Intent.STRUCTURED, Intent.HYBRID)

    @property
    def wants_semantic(self) -> bool:
        return self.intent in (Intent.SEMANTIC, Intent.HYBRID)


def _system_prompt() -> str:
    labels = "\n".join(f"- {name}: {desc}" for name, desc in STRUCTURED_LABELS.items())
    return (
        "You route questions about a client's knowledge base. Decide how the "
        "question should be answered:\n"
        "- structured: answerable from lists, counts or statuses alone\n"
        "- semantic: needs the text of notes, meetings or documents\n"
        "- hybrid: needs both\n\n"
        f"Structured queries available:\n{labels}\n\n"
        'Respond with ONLY a JSON object: {"intent": "structured"|"semantic"|"hybrid", '
        '"structured_queries": [<query names from the list above>]}. '
        "Use an empty list for semantic questions."
    )


class IntentClassifier:
    """Classify questions with a single call to the configured model.

    Args:
        config: Classifier model settings.
        api_key: Explicit credential; defaults to the provider's env var.

    Raises:
        MissingCredentialError: If the model's provider key is not set.
    """

    def __init__(self, config: ClassifierCfg | None = None, *, api_key: str | None = None) -> None:
        self._config = config or ClassifierCfg()
        self._api_key = resolve_api_key(self._config.model, api_key)

    async def classify(self, question: str) -> Classification:
        """Return the routing decision for *question* (never raises)."""
        try:
            raw = await acomplete(
                self._config.model,
                [
                    {"role": "system", "content": _system_prompt()},
                    {"role": "user", "content": question},
                ],
                api_key=self._api_key,
                max_tokens=self._config.max_tokens,
                temperature=0.0,
            )
        except Exception as exc:
            logger.warning("Intent classification failed, using semantic search: %s", exc)
            return Classification(Intent.SEMANTIC, [])

        result = parse_classification(raw)
        logger.debug(
            "Classified %r as %s %s", question[:80], result.intent.value, result.structured_labels
        )
        return result


def parse_classification(raw: str) -> Classification:
    """Parse the model's JSON verdict; fall back to semantic on any defect."""
    try:
        start = raw.index("{")
        end = raw.rindex("}") + 1
        obj = json.loads(raw[start:end])
    except (ValueError, json.JSONDecodeError, TypeError):
        return Classification(Intent.SEMANTIC, [])

    if not isinstance(obj, dict):
        return Classification(Intent.SEMANTIC, [])

    try:
        intent = Intent(str(obj.get("intent", "")).strip().lower())
    except ValueError:
        return Classification(Intent.SEMANTIC, [])

    if intent is Intent.SEMANTIC:
        return Classification(Intent.SEMANTIC, [])

    raw_labels = obj.get("structured_queries", obj.get("structured_labels"))
    if not isinstance(raw_labels, list):
        return Classification(Intent.SEMANTIC, [])

    labels: list[str] = []
    for label in raw_labels:
        name = str(label).strip()
        if name in STRUCTURED_LABELS and name not in labels:
            labels.append(name)

    if not labels:
        return Classification(Intent.SEMANTIC, [])
    return Classification(intent, labels)
