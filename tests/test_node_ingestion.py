# /tests/test_node_ingestion.py

import unittest
from unittest.mock import MagicMock
import sys
import os

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from core.entity_resolver import EntityResolver
from core.node_ingestion import build_node_id_map, embedding_text, generate_node_id, ingest_nodes
from fakes import FakeEmbedder, InMemoryGraphDB, make_claim


class TestNodeIdentity(unittest.TestCase):

    def test_same_title_and_domain_give_same_id(self):
        self.assertEqual(generate_node_id("Anchoring Effect", "pricing"), generate_node_id("Anchoring Effect", "pricing"))
        self.assertEqual(len(generate_node_id("Anchoring Effect", "pricing")), 36)

    def test_domain_is_part_of_identity(self):
        self.assertNotEqual(generate_node_id("Anchoring Effect", "pricing"), generate_node_id("Anchoring Effect", "retail"))

    def test_title_and_domain_boundary_is_unambiguous(self):
        self.assertNotEqual(generate_node_id("ab", "c"), generate_node_id("a", "bc"))


class TestIngestNodes(unittest.TestCase):

    def setUp(self):
        self.db = InMemoryGraphDB(domains=["pricing"])

    def test_reingesting_the_same_claims_merges_instead_of_creating(self):
        embedder = FakeEmbedder()
        claims = [make_claim("Anchoring Effect"), make_claim("Decoy Effect")]

        first = ingest_nodes(self.db, claims, "pricing", embedder.embed_for_storage)
        second = ingest_nodes(self.db, claims, "pricing", embedder.embed_for_storage)

        self.assertEqual(first.nodes_created, 2)
        self.assertEqual(second.nodes_created, 0)
        self.assertEqual(second.nodes_merged, 2)
        self.assertEqual(first.node_ids, second.node_ids)
        self.assertEqual(len(self.db.nodes), 2)

    def test_similarity_above_threshold_flags_duplicate(self):
        # cos([1, 0], [0.9, 0.43589]) is about 0.90
        embedder = FakeEmbedder({"Anchoring Effect": [1.0, 0.0], "Anchoring Bias": [0.9, 0.43589]})

        ingest_nodes(self.db, [make_claim("Anchoring Effect")], "pricing", embedder.embed_for_storage)
        result = ingest_nodes(self.db, [make_claim("Anchoring Bias")], "pricing", embedder.embed_for_storage)

        self.assertEqual(result.duplicates_found, 1)
        self.assertTrue(self.db.nodes[result.node_ids[0]]["potential_duplicate"])
        self.assertIn("Potential duplicate: 'Anchoring Bias' similar to 'Anchoring Effect'", result.warnings[0])

    def test_similarity_below_threshold_is_not_flagged(self):
        # cos([1, 0], [0.8, 0.6]) is 0.80
        embedder = FakeEmbedder({"Anchoring Effect": [1.0, 0.0], "Price Framing": [0.8, 0.6]})

        ingest_nodes(self.db, [make_claim("Anchoring Effect")], "pricing", embedder.embed_for_storage)
        result = ingest_nodes(self.db, [make_claim("Price Framing")], "pricing", embedder.embed_for_storage)

        self.assertEqual(result.duplicates_found, 0)
        self.assertFalse(self.db.nodes[result.node_ids[0]]["potential_duplicate"])

    def test_near_duplicates_in_other_domains_are_ignored(self):
        self.db.domains.add("retail")
        embedder = FakeEmbedder({"Anchoring Effect": [1.0, 0.0], "Anchoring Bias": [0.95, 0.31225]})

        ingest_nodes(self.db, [make_claim("Anchoring Effect")], "retail", embedder.embed_for_storage)
        result = ingest_nodes(self.db, [make_claim("Anchoring Bias")], "pricing", embedder.embed_for_storage)

        self.assertEqual(result.duplicates_found, 0)

    def test_missing_domain_skips_claim_and_keeps_alignment(self):
        result = ingest_nodes(self.db, [make_claim("Anchoring Effect")], "unknown", FakeEmbedder().embed_for_storage)

        self.assertEqual(result.node_ids, [None])
        self.assertEqual(result.nodes_created, 0)
        self.assertEqual(result.warnings, ["Domain 'unknown' not found, skipped claim 'Anchoring Effect'"])
        self.assertEqual(build_node_id_map([make_claim("Anchoring Effect")], result.node_ids), {})

    def test_embeds_title_and_definition(self):
        embed_fn = MagicMock(return_value=[0.1, 0.2])
        claim = make_claim("Anchoring Effect")

        ingest_nodes(self.db, [claim], "pricing", embed_fn)

        embed_fn.assert_called_once_with(embedding_text(claim))
        self.assertTrue(embedding_text(claim).startswith("Anchoring Effect: "))


class TestEntityResolver(unittest.TestCase):

    def test_queries_same_domain_neighbours_excluding_self(self):
        mock_db_client = MagicMock()
        mock_db_client.find_similar_nodes.return_value = []
        resolver = EntityResolver(mock_db_client, similarity_threshold=0.88, top_k=10)

        warning = resolver.flag_if_duplicate("node-1", "Anchoring Effect", [0.1, 0.2], "pricing")

        self.assertIsNone(warning)
        mock_db_client.find_similar_nodes.assert_called_once_with(
            embedding=[0.1, 0.2], top_k=10, domain_slug="pricing", exclude_id="node-1", threshold=0.88
        )
        mock_db_client.flag_potential_duplicate.assert_not_called()


if __name__ == '__main__':
    unittest.main()
