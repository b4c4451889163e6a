# /run_synthesis.py

import argparse
import sys
from pathlib import Path

from dotenv import load_dotenv

from core.claim_extractor import ClaimExtractor
from core.config import settings
from core.database import Neo4jDatabase
from core.embeddings import EmbeddingService
from core.errors import KnowledgeCoreError
from core.logger import get_logger
from core.models import BatchItem
from core.retriever import KnowledgeRetriever
from core.synthesis import SynthesisPipeline

logger = get_logger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Synthesize research text into the knowledge graph.")
    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("init-schema", help="Create the vector index and node constraints.")

    synth = commands.add_parser("synthesize", help="Synthesize one or more text files into a domain.")
    synth.add_argument("paths", nargs="+", type=Path)
    synth.add_argument("--domain", required=True, help="Target domain slug.")
    synth.add_argument("--master-domain", default=None)
    synth.add_argument("--dry-run", action="store_true", help="Extract claims without writing anything.")

    query = commands.add_parser("query", help="Ask the knowledge graph a question.")
    query.add_argument("text")
    query.add_argument("--top-k", type=int, default=None)
    query.add_argument("--domain", default=None)

    commands.add_parser("researched", help="Synthesize every researched prompt.")
    return parser


def run(args, db) -> int:
    if args.command == "init-schema":
        db.ensure_vector_index(settings.VECTOR_INDEX_NAME, "KnowledgeNode", "embedding", settings.EMBEDDING_DIMENSIONS)
        print(f"Vector index '{settings.VECTOR_INDEX_NAME}' is ready.")
        return 0

    embedder = EmbeddingService()
    if args.command == "query":
        context = KnowledgeRetriever(db, embedder).query_knowledge(args.text, top_k=args.top_k, domain_filter=args.domain)
        print(context.text)
        return 0

    pipeline = SynthesisPipeline(db, ClaimExtractor(), embedder)
    if args.command == "researched":
        result = pipeline.synthesize_researched_prompts()
        print(result.model_dump_json(indent=2))
        return 0 if result.failed == 0 else 1

    if args.dry_run:
        for path in args.paths:
            result = pipeline.dry_run(path.read_text(encoding="utf-8"), args.domain, source=path.name,
                                      master_domain_slug=args.master_domain)
            print(result.model_dump_json(indent=2))
        return 0

    items = [BatchItem(text=path.read_text(encoding="utf-8"), source=path.name) for path in args.paths]
    result = pipeline.synthesize_batch(items, args.domain, args.master_domain)
    print(result.model_dump_json(indent=2))
    return 0 if result.failed == 0 else 1


def main(argv=None) -> int:
    """
    Command-line entry point for synthesis and retrieval against the
    configured Neo4j instance.
    """
    load_dotenv()
    args = build_parser().parse_args(argv)

    if args.command != "init-schema" and not settings.GOOGLE_API_KEY:
        print("Error: GOOGLE_API_KEY not found in .env file.")
        return 2

    db = Neo4jDatabase()
    try:
        return run(args, db)
    except KnowledgeCoreError as e:
        logger.error(e.message)
        print(f"Error: {e.message}")
        return 1
    finally:
        db.close()


if __name__ == '__main__':
    sys.exit(main())
