#!/usr/bin/env python3
"""
Throughline - Main Application
Trace research lineages forward from seed papers
"""

import argparse
import asyncio
import json
import os
import sys

from throughline.api.semantic_scholar import SemanticScholarClient
from throughline.cache.factory import build_cache
from throughline.llm.gemini_client import GeminiOracle
from throughline.models.paper import Paper
from throughline.tasks.analysis_session import AnalysisSession
from throughline.tasks.report import format_results, save_debug_tree, save_results
from throughline.utils.config import DEBUG_TREE_FILE, LOG_FILE, OUTPUT_DIR, RESULTS_FILE, settings
from throughline.utils.logging import add_file_handler, get_logger

logger = get_logger(__name__)

EXAMPLE_PAPERS = [
    {
        "title": "Attention Is All You Need",
        "abstract": (
            "The dominant sequence transduction models are based on complex recurrent or "
            "convolutional neural networks in an encoder-decoder configuration. We propose a "
            "new simple network architecture, the Transformer, based solely on attention "
            "mechanisms, dispensing with recurrence and convolutions entirely."
        ),
        "year": 2017,
        "authors": [{"name": "Vaswani, A."}, {"name": "Shazeer, N."}],
    },
    {
        "title": "BERT: Pre-training of Deep Bidirectional Transformers for Language Understanding",
        "abstract": (
            "We introduce a new language representation model called BERT, which stands for "
            "Bidirectional Encoder Representations from Transformers. BERT is designed to "
            "pre-train deep bidirectional representations from unlabeled text by jointly "
            "conditioning on both left and right context in all layers."
        ),
        "year": 2019,
        "authors": [{"name": "Devlin, J."}, {"name": "Chang, M.W."}],
    },
]


def load_seed_papers(path):
    """Load seed papers from a JSON file (a list of paper objects)."""
    with open(path, "r", encoding="utf-8") as f:
        records = json.load(f)
    return [Paper.model_validate(r) for r in records]


def on_progress(message, detail, percent, threads):
    """Print progress events to the console."""
    prefix = f"[{percent:.0f}%] " if percent is not None else ""
    print(f"{prefix}{message}")
    if detail:
        print(f"  {detail}")


async def analyze(seed_papers, args):
    source = SemanticScholarClient(cache=build_cache(args.cache))
    session = AnalysisSession(
        source=source,
        oracle=GeminiOracle(),
        max_threads=args.max_threads,
        clustering_criteria=args.criteria,
        broad_search_mode=args.broad_search,
        progress_callback=on_progress,
    )
    try:
        return await session.run(seed_papers)
    finally:
        await source.close()


def main():
    """Main application entry point"""
    parser = argparse.ArgumentParser(description="Trace research lineages from seed papers")
    parser.add_argument("seeds", nargs="?", help="JSON file with seed papers (default: examples)")
    parser.add_argument("--max-threads", type=int, default=None)
    parser.add_argument("--criteria", default=None, help="Clustering criteria (free text)")
    parser.add_argument("--broad-search", choices=["off", "fixed", "llm", "tools"], default=None)
    parser.add_argument("--cache", choices=["disk", "redis", "none"], default=None)
    args = parser.parse_args()

    if not settings.gemini_api_key:
        print("Error: GEMINI_API_KEY not found in .env file or environment")
        sys.exit(1)

    if args.seeds:
        try:
            seed_papers = load_seed_papers(args.seeds)
        except (OSError, ValueError) as e:
            print(f"Error loading {args.seeds}: {e}")
            sys.exit(1)
        print(f"Loaded {len(seed_papers)} papers from {args.seeds}")
    else:
        seed_papers = [Paper.model_validate(p) for p in EXAMPLE_PAPERS]
        print("No input file provided, using example papers")

    os.makedirs(OUTPUT_DIR, exist_ok=True)
    add_file_handler(LOG_FILE)

    result = asyncio.run(analyze(seed_papers, args))

    print(format_results(result))
    save_results(result, RESULTS_FILE)
    save_debug_tree(result, DEBUG_TREE_FILE)
    print(f"\nResults saved to {RESULTS_FILE}")
    print(f"Debug tree saved to {DEBUG_TREE_FILE}")

    if result.status == "failed":
        sys.exit(1)


if __name__ == "__main__":
    main()
