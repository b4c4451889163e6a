# /tests/test_knowledge_nodes.py

import unittest
from unittest.mock import MagicMock
import sys
import os

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from core.errors import DomainNotFoundError, NodeNotFoundError, NodeValidationError
from core.knowledge_nodes import KnowledgeNodeService
from core.node_ingestion import generate_node_id
from fakes import FakeEmbedder, InMemoryGraphDB


def node_data(title="Anchoring Effect", **overrides):
    data = {
        "title": title,
        "definition": f"{title} shifts judgements toward an initial reference value.",
        "summary": f"Summary of {title}.",
        "domain_slug": "pricing",
        "claim_type": "definition",
        "confidence": 0.8,
    }
    data.update(overrides)
    return data


class TestKnowledgeNodeService(unittest.TestCase):

    def setUp(self):
        self.db = InMemoryGraphDB(domains=["pricing", "retention"])
        self.embedder = FakeEmbedder({
            "Anchoring Effect": [1.0, 0.0],
            "Anchoring Bias": [0.95, 0.312],
            "Loss Aversion": [0.0, 1.0],
        })
        self.embedder.embed_for_storage = MagicMock(wraps=self.embedder.embed_for_storage)
        self.service = KnowledgeNodeService(self.db, self.embedder)

    def test_create_embeds_and_stores_scope_fields(self):
        node = self.service.create_node(node_data(
            conditions="B2B SaaS only", temporal_range="2015-2024", geographic_scope="EU",
            extensions={"source_dataset": "pricing-survey"},
        ))

        self.assertEqual(node.id, generate_node_id("Anchoring Effect", "pricing"))
        self.assertEqual(node.conditions, "B2B SaaS only")
        self.assertEqual(node.temporal_range, "2015-2024")
        self.assertEqual(node.geographic_scope, "EU")
        self.assertEqual(node.extensions, {"source_dataset": "pricing-survey"})
        self.assertIsNone(node.embedding)
        self.assertFalse(node.potential_duplicate)

        text = self.embedder.embed_for_storage.call_args.args[0]
        self.assertTrue(text.startswith("Anchoring Effect: "))
        self.assertEqual(self.db.nodes[node.id]["embedding"][:2], [1.0, 0.0])

    def test_create_flags_near_duplicate(self):
        self.service.create_node(node_data("Anchoring Effect"))
        bias = self.service.create_node(node_data("Anchoring Bias"))
        self.assertTrue(bias.potential_duplicate)

    def test_create_in_unknown_domain_writes_nothing(self):
        with self.assertRaises(DomainNotFoundError):
            self.service.create_node(node_data(domain_slug="unknown"))
        self.assertEqual(self.db.nodes, {})
        self.embedder.embed_for_storage.assert_not_called()

    def test_create_rejects_invalid_input(self):
        with self.assertRaises(NodeValidationError):
            self.service.create_node(node_data(confidence=1.5))
        with self.assertRaises(NodeValidationError):
            self.service.create_node(node_data(title=""))

    def test_update_without_text_change_does_not_re_embed(self):
        node = self.service.create_node(node_data())
        self.embedder.embed_for_storage.reset_mock()
        before = self.db.nodes[node.id]["freshness_date"]

        updated = self.service.update_node(node.id, {"summary": "Sharper summary", "title": "Anchoring Effect"})

        self.assertEqual(updated.summary, "Sharper summary")
        self.embedder.embed_for_storage.assert_not_called()
        self.assertGreaterEqual(updated.freshness_date, before)

    def test_definition_change_re_embeds_with_merged_text(self):
        node = self.service.create_node(node_data())
        self.embedder.embed_for_storage.reset_mock()

        updated = self.service.update_node(node.id, {"definition": "A revised definition."})

        self.embedder.embed_for_storage.assert_called_once_with("Anchoring Effect: A revised definition.")
        self.assertEqual(updated.id, node.id)
        self.assertEqual(updated.definition, "A revised definition.")

    def test_title_change_keeps_identity_and_rechecks_duplicates(self):
        self.service.create_node(node_data("Anchoring Effect"))
        other = self.service.create_node(node_data("Loss Aversion"))
        self.assertFalse(other.potential_duplicate)

        renamed = self.service.update_node(other.id, {"title": "Anchoring Bias"})

        self.assertEqual(renamed.id, other.id)
        self.assertEqual(renamed.title, "Anchoring Bias")
        self.assertTrue(renamed.potential_duplicate)

    def test_update_errors(self):
        node = self.service.create_node(node_data())
        with self.assertRaises(NodeValidationError):
            self.service.update_node(node.id, {})
        with self.assertRaises(NodeValidationError):
            self.service.update_node(node.id, {"confidence": -0.1})
        with self.assertRaises(NodeNotFoundError):
            self.service.update_node("missing", {"summary": "x"})

    def test_list_orders_by_title_and_filters_domain(self):
        self.service.create_node(node_data("Loss Aversion"))
        self.service.create_node(node_data("Anchoring Effect"))
        self.service.create_node(node_data("Churn Signals", domain_slug="retention"))

        pricing = self.service.list_nodes("pricing")
        self.assertEqual([n.title for n in pricing], ["Anchoring Effect", "Loss Aversion"])
        self.assertEqual([n.title for n in self.service.list_nodes(limit=1, offset=1)], ["Churn Signals"])


if __name__ == '__main__':
    unittest.main()
