"""docsearch command line.

    python -m server serve [--host HOST] [--port PORT] [--no-crawl]
    python -m server crawl
    python -m server search QUERY
"""

import argparse
import asyncio
import json
import logging
import sys

import uvicorn

from config.settings import Settings
from observability.logging import setup_logging
from .app import create_app, load_embedder, open_store, run_ingestion
from .errors import SearchError, StartupError
from .search import HybridQueryProcessor

logger = logging.getLogger(__name__)


def serve(settings: Settings, args: argparse.Namespace) -> None:
    if args.host:
        settings.host = args.host
    if args.port:
        settings.port = args.port
    if args.no_crawl:
        settings.crawl_on_startup = False

    app = create_app(settings)
    # uvicorn handles Ctrl+C and runs the lifespan shutdown
    uvicorn.run(app, host=settings.host, port=settings.port, log_level=settings.log_level.lower(), log_config=None)


async def crawl(settings: Settings) -> int:
    embedder = load_embedder(settings)
    store = open_store(settings, embedder.dimension)
    stats = await run_ingestion(settings, store, embedder)
    print(json.dumps(stats.as_dict(), indent=2))
    return 0


async def search(settings: Settings, query: str) -> int:
    embedder = load_embedder(settings)
    store = open_store(settings, embedder.dimension)
    processor = HybridQueryProcessor(
        store,
        embedder,
        candidate_limit=settings.candidate_limit,
        result_limit=settings.result_limit,
    )
    try:
        response = await processor.search(query)
    except SearchError as e:
        print(f"error: {e.code.value}: {e.message}", file=sys.stderr)
        return 2 if e.status_code == 400 else 1

    for position, result in enumerate(response.results, 1):
        print(f"{position:2}. {result.title}\n    {result.url}")
    if response.timings:
        print(f"\n{len(response.results)} results in {response.timings.describe()}")
    return 0


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(prog="docsearch", description="Crawled documentation search")
    subparsers = parser.add_subparsers(dest="command")

    serve_parser = subparsers.add_parser("serve", help="Crawl configured targets, then serve search (default)")
    serve_parser.add_argument("--host", help="Bind address")
    serve_parser.add_argument("--port", type=int, help="Bind port")
    serve_parser.add_argument("--no-crawl", action="store_true", help="Serve the existing index without crawling")

    subparsers.add_parser("crawl", help="Crawl configured targets into the index and print counts")

    search_parser = subparsers.add_parser("search", help="Run one query against the existing index")
    search_parser.add_argument("query", help="Query text")

    args = parser.parse_args(argv)
    settings = Settings.from_env()
    setup_logging(level=settings.log_level, log_file=settings.log_file, use_json=settings.log_json)

    try:
        if args.command == "crawl":
            return asyncio.run(crawl(settings))
        if args.command == "search":
            return asyncio.run(search(settings, args.query))
        if args.command is None:
            args = serve_parser.parse_args([])
        serve(settings, args)
    except StartupError as e:
        logger.error(f"Startup failed: {e}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
