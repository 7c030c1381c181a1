#!/usr/bin/env python
"""Build the in-memory knowledge index and optionally run a query against it.

Usage:
    python scripts/query_index.py                        # Index and show stats
    python scripts/query_index.py --query "How do I..."  # Also show retrieved context
    python scripts/query_index.py --knowledge-dir docs --pattern "**/*.txt"
"""
import argparse
import asyncio
import sys
import time
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from kbchat import config
from kbchat.errors import KBChatError
from kbchat.log import configure_logging
from kbchat.rag.chunker import TextChunker
from kbchat.rag.ingest import KnowledgeLoader
from kbchat.rag.retriever import Retriever
from kbchat.rag.vector_index import create_vector_index


async def run(args) -> int:
    chunker = TextChunker(chunk_size=args.chunk_size, chunk_overlap=args.chunk_overlap)
    loader = KnowledgeLoader(
        knowledge_dir=args.knowledge_dir,
        pattern=args.pattern,
        chunker=chunker,
    )
    retriever = Retriever(
        loader=loader,
        index=create_vector_index(args.backend),
        top_k=args.top_k,
    )

    print("\n📋 Configuration:")
    print(f"   Knowledge dir:    {loader.knowledge_dir}")
    print(f"   Pattern:          {loader.pattern}")
    print(f"   Embedding model:  {retriever.embedder.model}")
    print(f"   Chunk size:       {chunker.chunk_size} chars")
    print(f"   Chunk overlap:    {chunker.chunk_overlap} chars")
    print(f"   Vector backend:   {retriever.index.name}")

    start = time.monotonic()
    await retriever.initialize()
    elapsed = time.monotonic() - start

    stats = loader.get_stats()
    sizes = stats["chunks"]
    print(f"\n{'=' * 60}")
    print(f"  📁 Files found:          {stats['files_found']}")
    print(f"  ❌ Files failed:         {stats['files_failed']}")
    print(f"  📝 Chunks indexed:       {len(retriever.index)}")
    print(f"  📏 Chunk sizes:          {sizes['min_chunk_size']}-{sizes['max_chunk_size']} chars (avg {sizes['avg_chunk_size']})")
    print(f"  🧮 Dimension:            {retriever.index.dimension}")
    print(f"  ⏱️  Time elapsed:         {elapsed:.1f}s")
    print(f"{'=' * 60}\n")

    if args.query:
        results = await retriever.retrieve(args.query)
        if not results:
            print("No matching chunks.\n")
        for rank, result in enumerate(results, 1):
            print(f"[{rank}] {result.source}  (score {result.score:.3f})")
            print(f"{result.text.strip()[:500]}\n")

    return 1 if stats["files_failed"] else 0


def main():
    """Main entry point for the index inspection script."""
    parser = argparse.ArgumentParser(
        description="Build the knowledge index and inspect retrieval results",
    )
    parser.add_argument("--query", "-q", default=None, help="Query to run against the index")
    parser.add_argument(
        "--knowledge-dir",
        type=Path,
        default=None,
        help=f"Knowledge directory (default: {config.KNOWLEDGE_DIR})",
    )
    parser.add_argument("--pattern", default=None, help=f"Glob pattern (default: {config.KNOWLEDGE_GLOB})")
    parser.add_argument("--chunk-size", type=int, default=None)
    parser.add_argument("--chunk-overlap", type=int, default=None)
    parser.add_argument("--top-k", type=int, default=None)
    parser.add_argument("--backend", default=config.VECTOR_BACKEND, choices=["memory", "faiss"])
    parser.add_argument("--verbose", "-v", action="store_true", help="Show pipeline logs")
    args = parser.parse_args()

    configure_logging("DEBUG" if args.verbose else "WARNING")

    try:
        sys.exit(asyncio.run(run(args)))
    except KeyboardInterrupt:
        print("\n\n⚠️  Cancelled by user.\n")
        sys.exit(1)
    except KBChatError as e:
        print(f"\n❌ Error: {e}\n")
        sys.exit(1)


if __name__ == "__main__":
    main()
