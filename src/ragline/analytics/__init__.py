"""ragline analytics: visitor question clustering."""

from ragline.analytics.clustering import (
    QuestionCluster,
    QuestionClusterer,
    frequency_clusters,
    greedy_single_link,
)
from ragline.analytics.top_questions import top_questions

__all__ = [
    "QuestionCluster",
    "QuestionClusterer",
    "frequency_clusters",
    "greedy_single_link",
    "top_questions",
]
