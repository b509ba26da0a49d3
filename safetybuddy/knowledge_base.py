"""
Knowledge Base Module
=====================
Loads the first-aid corpus and the emergency keyword list, and provides
keyword-scored injury search plus emergency phrase detection.

The corpus is read once at startup and is immutable afterwards. A missing
or malformed file is a startup failure (KnowledgeBaseError), never a
per-request error.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Optional, Union

from pydantic import ValidationError

from safetybuddy.models import (
    EmergencyKeywordSet,
    EmergencyNumbers,
    InjuryRecord,
    KnowledgeCorpus,
)

logger = logging.getLogger(__name__)

KNOWLEDGE_FILE = "first_aid_knowledge.json"
EMERGENCY_FILE = "emergency_keywords.json"

# Scoring weights
KEYWORD_WEIGHT = 10
NAME_WEIGHT = 15
SYMPTOM_WEIGHT = 5

MAX_RESULTS = 3


class KnowledgeBaseError(RuntimeError):
    """Raised when the knowledge corpus cannot be loaded or validated."""


def _read_json(path: Path) -> dict:
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError as exc:
        raise KnowledgeBaseError(f"Knowledge file not found: {path}") from exc
    except json.JSONDecodeError as exc:
        raise KnowledgeBaseError(f"Invalid JSON in {path}: {exc}") from exc


class KnowledgeBase:
    """In-memory first-aid knowledge with keyword search.

    Attributes:
        emergency_numbers: Emergency contact numbers from the corpus.
    """

    def __init__(self, knowledge: dict, emergency: dict) -> None:
        """Validate and index already-parsed corpus data.

        Args:
            knowledge: Parsed first_aid_knowledge.json.
            emergency: Parsed emergency_keywords.json.

        Raises:
            KnowledgeBaseError: If either document fails validation.
        """
        try:
            corpus = KnowledgeCorpus.model_validate(knowledge)
            keywords = EmergencyKeywordSet.model_validate(emergency)
        except ValidationError as exc:
            raise KnowledgeBaseError(f"Malformed knowledge corpus: {exc}") from exc

        self._injuries: tuple[InjuryRecord, ...] = corpus.injuries
        self._by_id: dict[str, InjuryRecord] = {i.id: i for i in corpus.injuries}
        if len(self._by_id) != len(self._injuries):
            raise KnowledgeBaseError("Duplicate injury ids in knowledge corpus.")

        self._emergency = keywords
        self._disclaimer = corpus.general_disclaimer
        self.emergency_numbers: EmergencyNumbers = corpus.emergency_numbers

        # Lower-cased search terms, aligned with self._injuries
        self._search_terms = [
            (
                [kw.lower() for kw in injury.keywords],
                injury.name.lower(),
                [s.lower() for s in injury.symptoms],
            )
            for injury in self._injuries
        ]
        self._critical_keywords = [kw.lower() for kw in keywords.critical_keywords]

        logger.info(
            "Knowledge base loaded: %d injuries, %d emergency keywords.",
            len(self._injuries),
            len(self._critical_keywords),
        )

    @classmethod
    def from_directory(cls, directory: Union[str, Path]) -> "KnowledgeBase":
        """Load both corpus files from a directory."""
        directory = Path(directory)
        knowledge = _read_json(directory / KNOWLEDGE_FILE)
        emergency = _read_json(directory / EMERGENCY_FILE)
        return cls(knowledge, emergency)

    # ------------------------------------------------------------------
    # Emergency detection
    # ------------------------------------------------------------------

    def check_for_emergency(self, text: str) -> bool:
        """Return True if text contains any critical keyword (any case)."""
        lowered = text.lower()
        return any(keyword in lowered for keyword in self._critical_keywords)

    def get_emergency_response(self) -> str:
        return self._emergency.emergency_response.message

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    def score_injury(self, injury: InjuryRecord, text: str) -> int:
        """Relevance of one injury record to the given text.

        10 per matching keyword, 15 if the injury name appears, and 5 per
        matching symptom phrase. All matches are case-insensitive substrings.
        """
        lowered = text.lower()
        keywords = [kw.lower() for kw in injury.keywords]
        symptoms = [s.lower() for s in injury.symptoms]
        return self._score(lowered, keywords, injury.name.lower(), symptoms)

    @staticmethod
    def _score(
        lowered: str, keywords: list[str], name: str, symptoms: list[str]
    ) -> int:
        score = KEYWORD_WEIGHT * sum(1 for kw in keywords if kw in lowered)
        if name in lowered:
            score += NAME_WEIGHT
        score += SYMPTOM_WEIGHT * sum(1 for s in symptoms if s in lowered)
        return score

    def search_injuries(self, text: str) -> list[InjuryRecord]:
        """Rank injuries by keyword relevance.

        Args:
            text: Free-text user message.

        Returns:
            Up to three injuries, highest score first. Equal scores keep
            corpus order. Injuries scoring zero are excluded.
        """
        lowered = text.lower()
        scored: list[tuple[InjuryRecord, int]] = []

        for injury, (keywords, name, symptoms) in zip(
            self._injuries, self._search_terms
        ):
            score = self._score(lowered, keywords, name, symptoms)
            if score > 0:
                scored.append((injury, score))

        # sorted() is stable, including with reverse=True
        scored = sorted(scored, key=lambda item: item[1], reverse=True)
        results = [injury for injury, _ in scored[:MAX_RESULTS]]

        logger.debug(
            "Search '%s' matched %s",
            text[:60],
            [(injury.id, score) for injury, score in scored[:MAX_RESULTS]],
        )
        return results

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def get_injury_by_id(self, injury_id: str) -> Optional[InjuryRecord]:
        return self._by_id.get(injury_id)

    def get_all_injuries(self) -> list[InjuryRecord]:
        return list(self._injuries)

    def get_disclaimer(self) -> str:
        return self._disclaimer

    # ------------------------------------------------------------------
    # Formatting
    # ------------------------------------------------------------------

    @staticmethod
    def format_injury_info(injury: InjuryRecord) -> str:
        """Render an injury as markdown-ish text for the provider prompt."""
        lines = [f"**{injury.name}** (Severity: {injury.severity})", ""]

        lines.append("**Symptoms:**")
        for index, symptom in enumerate(injury.symptoms, start=1):
            lines.append(f"{index}. {symptom}")

        lines.append("")
        lines.append("**First Aid Steps:**")
        for step in injury.first_aid_steps:
            lines.append(f"{step.step}. {step.instruction}")

        if injury.emergency_triggers:
            lines.append("")
            lines.append("⚠️ **Seek Emergency Help If:**")
            for trigger in injury.emergency_triggers:
                lines.append(f"• {trigger}")

        return "\n".join(lines) + "\n"
