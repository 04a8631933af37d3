"""
Evidence Gateway over a ChromaDB policy-clause collection.

Embedding model: sentence-transformers (configurable via EMBEDDING_MODEL),
loaded through chromadb's SentenceTransformerEmbeddingFunction and run locally.

Collection metadata per clause:
  {evidence_id, category, tags, clause_type}
  tags is a comma-separated string; clause_type ("Exclusions", "Limitation", ...)
  is lowercased and added to the tags

The collection is populated out of band; this module only reads it.

Public API used by the pipeline:
  ChromaEvidenceGateway(config).retrieve(query_text, category) -> list[EvidenceItem]
"""

from __future__ import annotations

import logging
from functools import lru_cache
from pathlib import Path
from typing import Any, Optional

import chromadb
from chromadb.utils.embedding_functions import SentenceTransformerEmbeddingFunction

from claims.config import PipelineConfig
from claims.errors import EvidenceUnavailable
from claims.models import EvidenceItem

logger = logging.getLogger(__name__)


@lru_cache(maxsize=4)
def _embedding_fn(model_name: str) -> SentenceTransformerEmbeddingFunction:
    """Cached SentenceTransformer embedding function, shared by all gateways."""
    logger.info("Loading embedding model: %s", model_name)
    return SentenceTransformerEmbeddingFunction(model_name=model_name)


@lru_cache(maxsize=4)
def _chroma_client(persist_dir: str) -> chromadb.ClientAPI:
    Path(persist_dir).mkdir(parents=True, exist_ok=True)
    logger.info("ChromaDB persist dir: %s", persist_dir)
    return chromadb.PersistentClient(path=persist_dir)


def _format_results(raw: dict, default_category: str) -> list[EvidenceItem]:
    """Convert a ChromaDB query response into EvidenceItems ranked by score."""
    ids = (raw.get("ids") or [[]])[0]
    docs = (raw.get("documents") or [[]])[0] or [""] * len(ids)
    metas = (raw.get("metadatas") or [[]])[0] or [{}] * len(ids)
    distances = (raw.get("distances") or [[]])[0] or [1.0] * len(ids)

    out: list[EvidenceItem] = []
    for chroma_id, doc, meta, dist in zip(ids, docs, metas, distances):
        meta = meta or {}
        # cosine distance: 0 = identical → similarity score, clamped to [0, 1]
        score = min(1.0, max(0.0, round(1.0 - float(dist), 4)))
        tags = tuple(t.strip() for t in str(meta.get("tags", "")).split(",") if t.strip())
        clause_type = str(meta.get("clause_type") or meta.get("coverage_type") or "").strip()
        if clause_type and clause_type.lower() not in (t.lower() for t in tags):
            tags += (clause_type.lower(),)
        out.append(
            EvidenceItem(
                evidence_id=str(meta.get("evidence_id") or chroma_id),
                category=str(meta.get("category") or default_category),
                text=doc or "",
                score=score,
                tags=tags,
            )
        )
    out.sort(key=lambda e: e.score, reverse=True)
    return out


class ChromaEvidenceGateway:
    """RetrieveEvidence(queryText, category) backed by a persistent Chroma collection."""

    def __init__(
        self,
        persist_dir: str,
        collection_name: str,
        embedding_model: str,
        top_k: int = 5,
        client: Optional[Any] = None,
    ) -> None:
        self._persist_dir = persist_dir
        self._collection_name = collection_name
        self._embedding_model = embedding_model
        self._top_k = top_k
        self._client = client

    @classmethod
    def from_config(cls, config: PipelineConfig) -> "ChromaEvidenceGateway":
        return cls(
            persist_dir=config.chroma_persist_dir,
            collection_name=config.policy_collection,
            embedding_model=config.embedding_model,
            top_k=config.evidence_top_k,
        )

    def _collection(self):
        client = self._client or _chroma_client(self._persist_dir)
        return client.get_or_create_collection(
            name=self._collection_name,
            embedding_function=_embedding_fn(self._embedding_model),
            metadata={"hnsw:space": "cosine"},
        )

    def retrieve(self, query_text: str, category: str) -> list[EvidenceItem]:
        """Ranked clauses for ``category``; an empty list when nothing matches."""
        if not query_text or not query_text.strip():
            return []
        try:
            collection = self._collection()
            count = collection.count()
            if count == 0:
                return []
            results = collection.query(
                query_texts=[query_text],
                n_results=min(self._top_k, count),
                where={"category": category},
            )
        except Exception as e:
            logger.exception("Evidence retrieval failed: %s", e)
            raise EvidenceUnavailable(f"evidence store unavailable: {e}") from e

        evidence = _format_results(results, default_category=category)
        logger.info("Evidence retrieval: %d clause(s) for category %s", len(evidence), category)
        return evidence
