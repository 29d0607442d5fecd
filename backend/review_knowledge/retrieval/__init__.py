"""Retrieval orchestration components."""

from .retriever import Retriever, RetrieveResult
from .troubleshooting import TroubleshootingOrchestrator, TroubleshootingResult
from .thread_assembler import ThreadAssembler
from .cross_corpus import CrossCorpusRanker
from .hybrid import hybrid_search_merge, bm25_rank, rrf_score

__all__ = [
    "Retriever",
    "RetrieveResult",
    "TroubleshootingOrchestrator",
    "TroubleshootingResult",
    "ThreadAssembler",
    "CrossCorpusRanker",
    "hybrid_search_merge",
    "bm25_rank",
    "rrf_score",
]
