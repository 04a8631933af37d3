"""Tests for the ChromaDB evidence gateway (client and embedding model mocked)."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from claims.errors import EvidenceUnavailable
from knowledge_base import evidence as evidence_module
from knowledge_base.evidence import ChromaEvidenceGateway, _format_results

QUERY_RESPONSE = {
    "ids": [["chunk-2", "chunk-1"]],
    "documents": [["Cosmetic procedures are excluded.", "Outpatient care is covered."]],
    "metadatas": [
        [
            {"evidence_id": "X-003", "category": "health", "tags": "exclusion, cosmetic"},
            {"evidence_id": "X-001", "category": "health", "tags": ""},
        ]
    ],
    "distances": [[0.4, 0.1]],
}


@pytest.fixture(autouse=True)
def no_embedding_model(monkeypatch):
    monkeypatch.setattr(evidence_module, "_embedding_fn", lambda model_name: None)


def _gateway(collection: MagicMock) -> ChromaEvidenceGateway:
    client = MagicMock()
    client.get_or_create_collection.return_value = collection
    return ChromaEvidenceGateway(
        persist_dir="unused",
        collection_name="policy_clauses",
        embedding_model="test-model",
        top_k=5,
        client=client,
    )


class TestFormatResults:
    def test_ranked_by_score_with_tags(self):
        items = _format_results(QUERY_RESPONSE, default_category="health")
        assert [i.evidence_id for i in items] == ["X-001", "X-003"]
        assert items[0].score == pytest.approx(0.9)
        assert items[1].tags == ("exclusion", "cosmetic")
        assert items[1].is_exclusion

    def test_empty_response(self):
        assert _format_results({"ids": [[]]}, default_category="health") == []

    def test_untagged_exclusion_recognised_from_id_and_wording(self):
        raw = {
            "ids": [["c1", "c2"]],
            "documents": [
                [
                    "Exclusion: cosmetic procedures are not covered and are excluded.",
                    "Outpatient care is covered.",
                ]
            ],
            "metadatas": [[{"evidence_id": "EXCLUSION-4.1"}, {"evidence_id": "COV-1.1"}]],
            "distances": [[0.2, 0.1]],
        }
        items = {i.evidence_id: i for i in _format_results(raw, default_category="health")}
        assert items["EXCLUSION-4.1"].tags == ()
        assert items["EXCLUSION-4.1"].is_exclusion
        assert not items["COV-1.1"].is_exclusion
        assert not items["COV-1.1"].is_limitation

    def test_clause_type_metadata_becomes_a_tag(self):
        raw = {
            "ids": [["c1"]],
            "documents": [["Pre-existing conditions in the first 12 months."]],
            "metadatas": [[{"evidence_id": "H-7", "clause_type": "Exclusions"}]],
            "distances": [[0.3]],
        }
        (item,) = _format_results(raw, default_category="health")
        assert item.tags == ("exclusions",)
        assert item.is_exclusion


class TestChromaEvidenceGateway:
    def test_retrieve_filters_by_category(self):
        collection = MagicMock()
        collection.count.return_value = 2
        collection.query.return_value = QUERY_RESPONSE
        items = _gateway(collection).retrieve("outpatient visit", "health")

        assert len(items) == 2
        collection.query.assert_called_once_with(
            query_texts=["outpatient visit"], n_results=2, where={"category": "health"}
        )

    def test_empty_collection_returns_no_evidence(self):
        collection = MagicMock()
        collection.count.return_value = 0
        assert _gateway(collection).retrieve("outpatient visit", "health") == []
        collection.query.assert_not_called()

    def test_store_error_raises_evidence_unavailable(self):
        collection = MagicMock()
        collection.count.side_effect = ConnectionError("chroma down")
        with pytest.raises(EvidenceUnavailable):
            _gateway(collection).retrieve("outpatient visit", "health")
