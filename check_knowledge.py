"""
Knowledge Check Script
======================
Validates the first-aid knowledge files and prints a summary, so a broken
corpus is caught before the chat service is deployed.

Run with: python check_knowledge.py
Or:       python check_knowledge.py --query "I burned my hand on the stove"

This script:
  1. Loads data/first_aid_knowledge.json and data/emergency_keywords.json
  2. Validates them against the corpus schema
  3. Logs injury counts per severity
  4. Optionally runs the emergency check and injury search for a query
"""

from __future__ import annotations

import argparse
import logging
import sys
from collections import Counter
from pathlib import Path

# Ensure project root is on the path
PROJECT_ROOT = Path(__file__).parent
sys.path.insert(0, str(PROJECT_ROOT))

from safetybuddy.config import LOG_FORMAT, get_settings
from safetybuddy.knowledge_base import KnowledgeBase, KnowledgeBaseError

logging.basicConfig(level=logging.INFO, format=LOG_FORMAT)
logger = logging.getLogger("check_knowledge")


def main(argv: list[str] | None = None) -> int:
    """Validate the corpus and optionally run a sample query."""
    parser = argparse.ArgumentParser(description="Validate the first-aid knowledge corpus.")
    parser.add_argument("--dir", default=None, help="Corpus directory (default: KNOWLEDGE_DIR)")
    parser.add_argument("--query", default=None, help="Sample user message to score")
    args = parser.parse_args(argv)

    directory = Path(args.dir) if args.dir else get_settings().knowledge_dir

    logger.info("=" * 60)
    logger.info("  SAFETYBUDDY — Knowledge Base Check")
    logger.info("=" * 60)
    logger.info("Loading corpus from: %s", directory)

    try:
        kb = KnowledgeBase.from_directory(directory)
    except KnowledgeBaseError as exc:
        logger.error("❌ %s", exc)
        return 1

    injuries = kb.get_all_injuries()
    by_severity = Counter(injury.severity for injury in injuries)
    keyword_total = sum(len(injury.keywords) for injury in injuries)

    logger.info("✅ Corpus is valid.")
    logger.info("  Injuries:        %d", len(injuries))
    logger.info("  Keywords:        %d", keyword_total)
    for severity in ("minor", "moderate", "serious", "emergency"):
        logger.info("  %-16s %d", severity + ":", by_severity.get(severity, 0))

    for injury in injuries:
        if not injury.first_aid_steps:
            logger.warning("⚠️  %s has no first-aid steps.", injury.id)

    if args.query:
        logger.info("-" * 60)
        logger.info("Query: %s", args.query)
        logger.info("Emergency: %s", kb.check_for_emergency(args.query))
        for injury in kb.search_injuries(args.query):
            logger.info("  • %s (score=%d)", injury.name, kb.score_injury(injury, args.query))

    return 0


if __name__ == "__main__":
    sys.exit(main())
