# /tests/fakes.py

import copy
import math
import sys
import os
from typing import Any, Dict, List, Optional

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from core.database import GraphDBInterface
from core.models import ExtractedClaim, RelationshipCategory


def cosine(a: List[float], b: List[float]) -> float:
    dot = sum(x * y for x, y in zip(a, b))
    norm = math.sqrt(sum(x * x for x in a)) * math.sqrt(sum(y * y for y in b))
    return dot / norm if norm else 0.0


class InMemoryGraphDB(GraphDBInterface):
    """A dict-backed stand-in for Neo4j with the same observable behaviour."""

    def __init__(self, domains=("marketing",)):
        self.domains = set(domains)
        self.nodes: Dict[str, Dict[str, Any]] = {}
        self.edges: List[Dict[str, Any]] = []
        self.runs: Dict[str, Dict[str, Any]] = {}
        self.prompts: Dict[str, Dict[str, Any]] = {}
        self.synthesis_prompts: List[Dict[str, Any]] = []
        self.produced: set = set()
        self.closed = False

    def ensure_vector_index(self, index_name, node_label, property_name, dimensions):
        pass

    def domain_exists(self, domain_slug):
        return domain_slug in self.domains

    def upsert_knowledge_node(self, node_id, domain_slug, properties):
        if domain_slug not in self.domains:
            return None
        created = node_id not in self.nodes
        if created:
            self.nodes[node_id] = {
                "id": node_id,
                "title": properties["title"],
                "domain_slug": domain_slug,
                "status": "active",
                "potential_duplicate": False,
                "created_at": properties["freshness_date"],
            }
        self.nodes[node_id].update({k: v for k, v in properties.items() if k != "title"})
        return created

    def find_similar_nodes(self, embedding, top_k, domain_slug, exclude_id, threshold):
        scored = [
            {"id": n["id"], "title": n["title"], "score": cosine(embedding, n["embedding"])}
            for n in self.nodes.values()
            if n["domain_slug"] == domain_slug and n["id"] != exclude_id
        ]
        scored = [s for s in scored if s["score"] > threshold]
        return sorted(scored, key=lambda s: s["score"], reverse=True)[:top_k]

    def flag_potential_duplicate(self, node_id):
        self.nodes[node_id]["potential_duplicate"] = True

    def _public_node(self, node):
        public = {k: copy.deepcopy(v) for k, v in node.items() if k != "embedding"}
        public.setdefault("evidence", [])
        public.setdefault("extensions", {})
        return public

    def get_knowledge_node(self, node_id):
        node = self.nodes.get(node_id)
        return self._public_node(node) if node else None

    def list_knowledge_nodes(self, domain_slug, limit, offset):
        nodes = sorted(
            (n for n in self.nodes.values() if not domain_slug or n["domain_slug"] == domain_slug),
            key=lambda n: n["title"],
        )
        return [self._public_node(n) for n in nodes[offset:offset + limit]]

    def update_knowledge_node(self, node_id, updates):
        if node_id not in self.nodes:
            return None
        self.nodes[node_id].update(copy.deepcopy(updates))
        return self._public_node(self.nodes[node_id])

    def find_node_id_by_title(self, title):
        return next((n["id"] for n in self.nodes.values() if n["title"] == title), None)

    def find_node_id_by_title_fragment(self, fragment):
        return next((n["id"] for n in self.nodes.values() if fragment.lower() in n["title"].lower()), None)

    def create_relationships(self, category, rows):
        created = 0
        for row in rows:
            if row["source_id"] in self.nodes and row["target_id"] in self.nodes:
                self.edges.append({"category": RelationshipCategory(category).value, **copy.deepcopy(row)})
                created += 1
        return created

    def vector_search_with_neighbors(self, embedding, top_k, domain_filter=None):
        candidates = [n for n in self.nodes.values() if not domain_filter or n["domain_slug"] == domain_filter]
        scored = sorted(
            ((cosine(embedding, n["embedding"]), n) for n in candidates),
            key=lambda pair: pair[0],
            reverse=True,
        )[:top_k]
        rows = []
        for score, node in scored:
            related = []
            for edge in self.edges:
                if node["id"] not in (edge["source_id"], edge["target_id"]):
                    continue
                other_id = edge["target_id"] if edge["source_id"] == node["id"] else edge["source_id"]
                other = self.nodes[other_id]
                related.append({
                    "id": other_id,
                    "title": other["title"],
                    "definition": other.get("definition"),
                    "type": edge["category"],
                    "props": edge["props"],
                })
            rows.append({
                "id": node["id"],
                "title": node["title"],
                "definition": node.get("definition"),
                "summary": node.get("summary"),
                "confidence": node.get("confidence"),
                "claim_type": node.get("claim_type"),
                "score": score,
                "related": related,
            })
        return rows

    def list_potential_duplicates(self, since, domain_slug=None):
        return [
            {"node_id": n["id"], "title": n["title"]}
            for n in sorted(self.nodes.values(), key=lambda n: n["title"])
            if n["potential_duplicate"] and n["freshness_date"] >= since
            and (not domain_slug or n["domain_slug"] == domain_slug)
        ]

    def get_active_synthesis_prompt(self, master_domain):
        active = [p for p in self.synthesis_prompts if p["status"] == "active" and p["master_domain"] == master_domain]
        return max(active, key=lambda p: p["version"]) if active else None

    def create_synthesis_run(self, run):
        self.runs[run["id"]] = copy.deepcopy(run)

    def update_synthesis_run(self, run_id, updates):
        self.runs[run_id].update(copy.deepcopy(updates))

    def get_synthesis_run(self, run_id):
        run = self.runs.get(run_id)
        return copy.deepcopy(run) if run else None

    def list_synthesis_runs(self, domain_slug, limit, offset):
        runs = [r for r in self.runs.values() if not domain_slug or r["domain_slug"] == domain_slug]
        runs.sort(key=lambda r: r["created_at"], reverse=True)
        return copy.deepcopy(runs[offset:offset + limit])

    def link_prompt_to_run(self, prompt_id, run_id):
        if prompt_id in self.prompts and run_id in self.runs:
            self.produced.add((prompt_id, run_id))

    def create_research_prompt(self, prompt):
        for existing in self.prompts.values():
            if existing["title"] == prompt["title"] and existing["domain_slug"] == prompt["domain_slug"]:
                return existing["id"]
        self.prompts[prompt["id"]] = copy.deepcopy(prompt)
        return prompt["id"]

    def get_research_prompt(self, prompt_id):
        prompt = self.prompts.get(prompt_id)
        return copy.deepcopy(prompt) if prompt else None

    def update_research_prompt(self, prompt_id, updates):
        if prompt_id in self.prompts:
            self.prompts[prompt_id].update(copy.deepcopy(updates))

    def set_research_prompt_status(self, prompt_id, expected_status, status, updates):
        prompt = self.prompts.get(prompt_id)
        if prompt is None or prompt["status"] != expected_status:
            return False
        prompt.update(copy.deepcopy(updates))
        prompt["status"] = status
        return True

    def _ordered(self, prompts):
        return sorted(prompts, key=lambda p: (-p["priority"], p["created_date"], p["id"]))

    def list_research_prompts(self, status=None, domain_slug=None, source=None, limit=20, offset=0):
        prompts = [
            p for p in self.prompts.values()
            if (not status or p["status"] == status)
            and (not domain_slug or p["domain_slug"] == domain_slug)
            and (not source or p["source"] == source)
        ]
        return copy.deepcopy(self._ordered(prompts)[offset:offset + limit])

    def next_ready_prompt(self):
        ready = self._ordered([p for p in self.prompts.values() if p["status"] == "ready_for_research"])
        return (copy.deepcopy(ready[0]) if ready else None), len(ready)

    def count_prompts_by_status(self):
        counts: Dict[str, int] = {}
        for p in self.prompts.values():
            counts[p["status"]] = counts.get(p["status"], 0) + 1
        return counts

    def count_prompts_by_domain_and_status(self):
        counts: Dict[tuple, int] = {}
        for p in self.prompts.values():
            key = (p["domain_slug"], p["status"])
            counts[key] = counts.get(key, 0) + 1
        return [{"domain_slug": d, "status": s, "count": c} for (d, s), c in sorted(counts.items())]

    def close(self):
        self.closed = True


class FakeEmbedder:
    """
    Returns pinned vectors for known titles and a fresh orthogonal unit
    vector for any other text, so unrelated texts never look similar.
    """

    def __init__(self, vectors: Optional[Dict[str, List[float]]] = None, dimensions: int = 64):
        self.vectors = dict(vectors or {})
        self.dimensions = dimensions
        self._assigned: Dict[str, List[float]] = {}

    def _vector(self, text: str) -> List[float]:
        title = text.split(":", 1)[0]
        if title in self.vectors:
            return self._pad(self.vectors[title])
        if text not in self._assigned:
            vector = [0.0] * self.dimensions
            vector[(len(self._assigned) + 2) % self.dimensions] = 1.0
            self._assigned[text] = vector
        return self._assigned[text]

    def _pad(self, vector: List[float]) -> List[float]:
        return list(vector) + [0.0] * (self.dimensions - len(vector))

    def embed_for_storage(self, text):
        return self._vector(text)

    def embed_query(self, text):
        return self._vector(text)

    def embed_batch(self, texts):
        return [self._vector(t) for t in texts]


def claim_dict(title: str, relationships=None, **overrides) -> Dict[str, Any]:
    data = {
        "title": title,
        "definition": f"{title} is a well-studied effect in consumer behaviour.",
        "summary": f"Summary of {title}.",
        "claim_type": "definition",
        "confidence": 0.8,
        "evidence": [{
            "source": "Journal of Marketing",
            "year": 2021,
            "type": "meta-analysis",
            "strength": "strong",
            "citation": "Smith et al. (2021)",
        }],
        "relationships": relationships or [],
    }
    data.update(overrides)
    return data


def make_claim(title: str, relationships=None, **overrides) -> ExtractedClaim:
    return ExtractedClaim.model_validate(claim_dict(title, relationships, **overrides))


def relationship(target_title: str, category: str = "CAUSAL", stance: str = "positive", **overrides) -> Dict[str, Any]:
    data = {"target_title": target_title, "category": category, "type": "influences", "stance": stance, "strength": 0.7}
    data.update(overrides)
    return data
