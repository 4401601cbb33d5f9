"""Knowledge base module for retrieval-grounded next-word prediction.

This module builds knowledge bases from document folders, holds the
active one in memory, and searches it to ground predictions.
"""

from echonext.knowledge.models import Chunk, KnowledgeBase, Language, SearchResult
from echonext.knowledge.rag_predictor import RetrievalGatedPredictor
from echonext.knowledge.search import cosine_similarity, search
from echonext.knowledge.store import KnowledgeStore

__all__ = [
    "Chunk",
    "KnowledgeBase",
    "Language",
    "SearchResult",
    "KnowledgeStore",
    "RetrievalGatedPredictor",
    "cosine_similarity",
    "search",
]
