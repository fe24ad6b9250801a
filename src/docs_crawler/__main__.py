"""Run a batch crawl from the command line and print its final status as JSON."""

import argparse
import asyncio
import json
import sys

import structlog

from .config import load_config
from .errors import ConfigurationError, DocsCrawlerError
from .observability import configure_logging
from .service import CrawlerService

logger = structlog.get_logger(__name__)


def parse_args(argv=None):
    parser = argparse.ArgumentParser(prog="docs-crawler", description=__doc__)
    parser.add_argument("sources", nargs="+", help='Source names, or "all"')
    parser.add_argument("--max-depth", type=int)
    parser.add_argument("--max-pages", type=int)
    parser.add_argument("--strategy", choices=["breadth", "depth", "hybrid"])
    parser.add_argument("--backend", choices=["http", "browser"])
    parser.add_argument("--concurrency", type=int)
    parser.add_argument("--force", action="store_true")
    return parser.parse_args(argv)


async def run(args) -> int:
    try:
        config = load_config()
    except ConfigurationError as e:
        print(json.dumps(e.to_dict(), indent=2), file=sys.stderr)
        return 2
    configure_logging(config)

    settings = {
        "max_depth": args.max_depth,
        "max_pages": args.max_pages,
        "strategy": args.strategy,
        "fetch_backend": args.backend,
        "concurrency": args.concurrency,
        "force": args.force,
    }
    settings = {key: value for key, value in settings.items() if value is not None}

    service = CrawlerService(config)
    await service.start()
    try:
        sources = "all" if args.sources == ["all"] else args.sources
        batch_id = await service.start_batch_crawl(sources, settings)

        while True:
            batch = service.get_batch_status(batch_id)
            if batch.status.is_terminal:
                break
            await asyncio.sleep(config.BATCH_POLL_INTERVAL)

        print(json.dumps(batch.model_dump(mode="json"), indent=2))
        return 0 if batch.status.value == "completed" else 1

    except DocsCrawlerError as e:
        logger.error("Batch crawl rejected", **e.to_dict())
        return 2

    finally:
        await service.stop()


def main(argv=None):
    sys.exit(asyncio.run(run(parse_args(argv))))


if __name__ == "__main__":
    main()
