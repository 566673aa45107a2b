"""
Tests para rag/query/retriever.py — Similitud coseno y fallback léxico.

El embedder es un fake con `encode(texts, convert_to_numpy=True)`:
no se descargan modelos reales.
"""

import sys
import time
from pathlib import Path

import numpy as np
import pytest

project_root = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(project_root))

from rag.query.retriever import KnowledgeRetriever, cosine_similarity
from support.models import KBEntry


class FakeEmbedder:
    """Embebe según un dict texto → vector; opcionalmente falla o se demora."""

    def __init__(self, vectors, error=None, delay=0.0):
        self.vectors = vectors
        self.error = error
        self.delay = delay

    def encode(self, texts, convert_to_numpy=True):
        if self.delay:
            time.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return np.array([self.vectors[t] for t in texts])


@pytest.fixture
def embedded_entries():
    return [
        KBEntry(id="a", title="Shipping", content="ships fast", embedding=[1.0, 0.0]),
        KBEntry(id="b", title="Returns", content="return it", embedding=[0.0, 1.0]),
        KBEntry(id="c", title="Refunds", content="money back", embedding=[0.7, 0.7]),
    ]


# cosine_similarity


class TestCosineSimilarity:
    def test_identical(self):
        assert cosine_similarity([1.0, 2.0], [1.0, 2.0]) == pytest.approx(1.0)

    def test_orthogonal(self):
        assert cosine_similarity([1.0, 0.0], [0.0, 1.0]) == pytest.approx(0.0)

    def test_opposite(self):
        assert cosine_similarity([1.0, 0.0], [-1.0, 0.0]) == pytest.approx(-1.0)

    @pytest.mark.parametrize(
        "a,b",
        [
            (None, [1.0]),
            ([], []),
            ([1.0, 2.0], [1.0]),
            ([0.0, 0.0], [1.0, 1.0]),
        ],
    )
    def test_degenerate_inputs(self, a, b):
        assert cosine_similarity(a, b) == 0.0


# Keyword search


class TestKeywordSearch:
    def test_shipping_ranks_policy_first(self, retriever):
        matches = retriever.search("shipping")
        assert matches[0].id == "shipping-policy"
        assert matches[0].score == 3
        assert len(matches) <= 3
        assert all(m.score > 0 for m in matches)

    def test_no_match(self, retriever):
        assert retriever.search("xyzzy-nothing") == []

    def test_case_insensitive(self, retriever):
        assert retriever.search("SHIPPING")[0].id == "shipping-policy"

    def test_keyword_mode_without_embedder(self, retriever):
        assert retriever.has_embeddings is False


# Embedding search


class TestEmbeddingSearch:
    def test_ranked_by_similarity(self, embedded_entries):
        r = KnowledgeRetriever(
            embedded_entries, embedder=FakeEmbedder({"returns?": [0.1, 1.0]}), top_k=2
        )
        try:
            matches = r.search("returns?")
        finally:
            r.close()
        assert [m.id for m in matches] == ["b", "c"]
        assert matches[0].score > matches[1].score

    def test_ties_keep_kb_order(self):
        entries = [
            KBEntry(id="x", title="X", content="x", embedding=[1.0, 0.0]),
            KBEntry(id="y", title="Y", content="y", embedding=[1.0, 0.0]),
        ]
        r = KnowledgeRetriever(entries, embedder=FakeEmbedder({"q": [1.0, 0.0]}))
        try:
            assert [m.id for m in r.search("q")] == ["x", "y"]
        finally:
            r.close()

    def test_embedder_failure_falls_back_to_keywords(self, embedded_entries):
        r = KnowledgeRetriever(
            embedded_entries, embedder=FakeEmbedder({}, error=RuntimeError("down"))
        )
        try:
            matches = r.search("shipping")
        finally:
            r.close()
        assert [m.id for m in matches] == ["a"]
        assert matches[0].score == 2

    def test_embedder_timeout_falls_back_to_keywords(self, embedded_entries):
        r = KnowledgeRetriever(
            embedded_entries,
            embedder=FakeEmbedder({"refunds": [0.7, 0.7]}, delay=0.5),
        )
        try:
            matches = r.search("refunds", timeout=0.05)
        finally:
            r.close()
        assert [m.id for m in matches] == ["c"]

    def test_no_budget_falls_back_to_keywords(self, embedded_entries):
        r = KnowledgeRetriever(embedded_entries, embedder=FakeEmbedder({}))
        try:
            assert [m.id for m in r.search("returns", timeout=0)] == ["b"]
        finally:
            r.close()


class TestFormatContext:
    def test_numbered_with_ids(self, retriever):
        text = retriever.format_context(retriever.search("shipping"))
        assert text.startswith("1. [shipping-policy] Shipping Policy:")

    def test_empty(self, retriever):
        assert retriever.format_context([]) == "No relevant knowledge base entries were found."
