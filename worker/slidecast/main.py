"""
Slidecast Worker Entry Point

Starts an RQ worker for render and/or publish jobs. Rendering is CPU bound
and publishing is network bound, so deployments usually run them as
separate workers:

    slidecast-worker --queue render
    slidecast-worker --queue publish

Usage:
    python -m slidecast.main [--queue render|publish ...] [--burst]

Environment Variables:
    REDIS_URL: Redis connection URL (default: redis://localhost:6379/0)
    DATABASE_URL: Database URL (default: sqlite:////data/db/slidecast.db)
    SLIDECAST_*: Pipeline settings (see slidecast.config)
"""

import argparse
import logging
import os
import socket
import sys
from typing import List, Optional

from redis import Redis
from rq import Queue, Worker

from .queues import QUEUE_NAMES, get_redis_connection, resolve_queue_names

logger = logging.getLogger("slidecast.worker")


def worker_name(queue_names: List[str]) -> str:
    """Unique worker name: RQ refuses two live workers with the same name."""
    role = "+".join(name.split(":")[-1] for name in queue_names)
    return f"slidecast-{role}-{socket.gethostname()}-{os.getpid()}"


def create_worker(connection: Redis, queue_names: List[str]) -> Worker:
    """
    Create an RQ worker listening to the given queues in priority order.

    Args:
        connection: Redis connection instance
        queue_names: Full queue names, highest priority first

    Returns:
        Worker: Configured RQ worker instance
    """
    queues = [Queue(name, connection=connection) for name in queue_names]
    return Worker(queues=queues, connection=connection, name=worker_name(queue_names))


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Slidecast RQ worker")
    parser.add_argument(
        "--queue",
        action="append",
        choices=sorted(QUEUE_NAMES),
        help="Queue to listen on (repeatable; default: all)",
    )
    parser.add_argument("--burst", action="store_true", help="Exit once the queues are empty")
    return parser.parse_args(argv)


def start_worker(queue_names: List[str], burst: bool = False) -> None:
    """
    Connect to Redis and run the worker until it is terminated.
    """
    logger.info("Starting Slidecast worker...")

    try:
        connection = get_redis_connection()
        connection.ping()
        logger.info("Successfully connected to Redis")
    except Exception as e:
        logger.error(f"Failed to connect to Redis: {e}")
        sys.exit(1)

    logger.info(f"Listening on queues: {', '.join(queue_names)}")
    worker = create_worker(connection, queue_names)

    try:
        worker.work(burst=burst, with_scheduler=False)
    except KeyboardInterrupt:
        logger.info("Worker shutdown requested")
    except Exception as e:
        logger.error(f"Worker error: {e}")
        sys.exit(1)

    logger.info("Worker stopped")


def main(argv: Optional[List[str]] = None) -> None:
    """Main entry point for the worker module."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )
    args = parse_args(argv)
    start_worker(resolve_queue_names(args.queue), burst=args.burst)


if __name__ == "__main__":
    main()
