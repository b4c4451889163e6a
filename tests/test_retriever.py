# /tests/test_retriever.py

import unittest
from unittest.mock import MagicMock
import sys
import os

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from core.models import RetrievedNode
from core.node_ingestion import build_node_id_map, ingest_nodes
from core.relationship_ingestion import ingest_relationships
from core.retriever import (
    LOW_CONFIDENCE_WARNING,
    NO_MATCHES_MESSAGE,
    KnowledgeRetriever,
    format_node,
    format_results,
    to_related_nodes,
)
from fakes import FakeEmbedder, InMemoryGraphDB, make_claim, relationship


def hit(title, score, definition="A definition."):
    return RetrievedNode(id=title.lower(), title=title, definition=definition, score=score, confidence=0.8,
                         claim_type="definition")


class TestFormatResults(unittest.TestCase):

    def test_highest_score_is_last(self):
        context = format_results([hit("B", 0.7), hit("A", 0.9), hit("C", 0.6)], [])

        self.assertEqual([b.splitlines()[0] for b in context.blocks],
                         ["## C (score: 0.60)", "## B (score: 0.70)", "## A (score: 0.90)"])
        self.assertTrue(context.text.endswith(context.blocks[-1]))
        self.assertEqual([h.title for h in context.hits], ["A", "B", "C"])

    def test_budget_drops_lowest_scored_blocks_first(self):
        hits = [hit(f"Node {i}", 0.9 - i * 0.01, definition="x" * 400) for i in range(10)]
        block_length = len(format_node(hits[0]))

        context = format_results(hits, [], budget_chars=block_length * 3 + 10)

        self.assertEqual(len(context.blocks), 3)
        self.assertTrue(context.blocks[-1].startswith("## Node 0 "))
        self.assertTrue(context.blocks[0].startswith("## Node 2 "))

    def test_best_block_is_kept_even_when_over_budget(self):
        context = format_results([hit("Huge", 0.95, definition="y" * 5000)], [], budget_chars=100)
        self.assertEqual(len(context.blocks), 1)

    def test_warnings_are_prefixed(self):
        context = format_results([hit("A", 0.3)], [LOW_CONFIDENCE_WARNING])
        self.assertTrue(context.text.startswith(f"WARNING: {LOW_CONFIDENCE_WARNING}\n"))

    def test_empty_result_has_explicit_message(self):
        context = format_results([], [])
        self.assertEqual(context.text, NO_MATCHES_MESSAGE)
        self.assertEqual(context.blocks, [])


class TestRelatedNodes(unittest.TestCase):

    def test_deduplicates_and_reads_stance_per_category(self):
        raw = [
            {"id": "n1", "title": "Loss Aversion", "type": "CAUSAL", "props": {"direction": "positive", "mechanism": "fear"}},
            {"id": "n1", "title": "Loss Aversion", "type": "EPISTEMIC", "props": {"stance": "supports"}},
            {"id": "n2", "title": "Prospect Theory", "type": "STRUCTURAL", "props": {"hierarchy": "part_of"}},
            {"id": "n3", "title": "Scope", "type": "CONTEXTUAL", "props": {"scope": "applies_to"}},
            None,
        ]
        related = to_related_nodes(raw)

        self.assertEqual([r.id for r in related], ["n1", "n2", "n3"])
        self.assertEqual(related[0].stance, "positive")
        self.assertEqual(related[0].mechanism, "fear")
        self.assertEqual(related[1].stance, "part_of")
        self.assertEqual(related[2].stance, "applies_to")

    def test_related_lines_in_block(self):
        node = hit("Anchoring", 0.9)
        node.related = to_related_nodes([
            {"id": "n1", "title": "Loss Aversion", "type": "CAUSAL", "props": {"direction": "positive", "mechanism": "fear"}},
        ])
        self.assertIn("Related:\n- [CAUSAL positive] Loss Aversion: fear", format_node(node))


class TestKnowledgeRetriever(unittest.TestCase):

    def test_query_over_ingested_graph(self):
        db = InMemoryGraphDB(domains=["pricing"])
        embedder = FakeEmbedder({
            "Anchoring Effect": [1.0, 0.0],
            "Loss Aversion": [0.6, 0.8],
            "anchoring": [0.98, 0.19900],
        })
        claims = [
            make_claim("Anchoring Effect", relationships=[relationship("Loss Aversion", "CAUSAL", "positive")]),
            make_claim("Loss Aversion"),
        ]
        ingest = ingest_nodes(db, claims, "pricing", embedder.embed_for_storage)
        ingest_relationships(db, claims, build_node_id_map(claims, ingest.node_ids))

        context = KnowledgeRetriever(db, embedder).query_knowledge("anchoring", top_k=5)

        self.assertEqual(context.hits[0].title, "Anchoring Effect")
        self.assertEqual(context.hits[0].related[0].title, "Loss Aversion")
        self.assertEqual(context.warnings, [])
        self.assertTrue(context.blocks[-1].startswith("## Anchoring Effect"))

    def test_all_low_scores_raise_a_warning(self):
        mock_db = MagicMock()
        mock_db.vector_search_with_neighbors.return_value = [
            {"id": "a", "title": "A", "definition": "d", "summary": "s", "confidence": 0.5,
             "claim_type": "trend", "score": 0.42, "related": []},
        ]
        embedder = MagicMock()
        embedder.embed_query.return_value = [0.1, 0.2]

        context = KnowledgeRetriever(mock_db, embedder).query_knowledge("q", domain_filter="pricing")

        self.assertEqual(context.warnings, [LOW_CONFIDENCE_WARNING])
        mock_db.vector_search_with_neighbors.assert_called_once_with([0.1, 0.2], 10, domain_filter="pricing")


if __name__ == '__main__':
    unittest.main()
