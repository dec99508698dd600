"""Top visitor questions for a project over a recent time window."""

from __future__ import annotations

import logging
import sqlite3

from ragline.analytics.clustering import QuestionCluster, QuestionClusterer
from ragline.db.repository import Repository

logger = logging.getLogger(__name__)

# Longer messages are pasted logs or documents, not questions.
_MAX_QUESTION_CHARS = 500


def top_questions(
    repo: Repository,
    clusterer: QuestionClusterer,
    project_id: str,
    days: int = 30,
    limit: int = 10,
) -> list[QuestionCluster]:
    """Cluster the customer messages of the last *days* days.

    Returns ``[]`` when there is nothing to analyse or the messages cannot
    be read.
    """
    try:
        contents = repo.list_message_contents(project_id, days)
    except sqlite3.Error as exc:
        logger.error("Could not read messages for project %s: %s", project_id, exc)
        return []

    utterances = [
        text
        for text in (c.strip() for c in contents if c)
        if 0 < len(text) <= _MAX_QUESTION_CHARS
    ]
    if not utterances:
        return []
    return clusterer.cluster(utterances, limit)
