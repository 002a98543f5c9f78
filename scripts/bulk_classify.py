#!/usr/bin/env python
"""
Bulk Classify - run the AI classifier over the catalog.

Usage:
    # First 100 active products
    python scripts/bulk_classify.py

    # Larger batch
    python scripts/bulk_classify.py --limit 500

    # Specific products
    python scripts/bulk_classify.py --product-id abc123 --product-id def456

Ctrl+C (or SIGTERM) stops after the current product and still prints the
summary.
"""

import sys
import os
import signal
import threading
import click
import logging
from typing import Tuple

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from app.web import create_app
from app.services.ai_classifier import get_ai_classifier

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.StreamHandler(),
    ]
)
logger = logging.getLogger(__name__)

# Set by the signal handler; checked between products
cancel_event = threading.Event()


def signal_handler(signum, frame):
    """Handle shutdown signals gracefully."""
    logger.info("Shutdown signal received, finishing current product...")
    cancel_event.set()


signal.signal(signal.SIGINT, signal_handler)
signal.signal(signal.SIGTERM, signal_handler)


@click.command()
@click.option('--limit', '-n', default=100, type=int,
              help='Maximum active products to classify (default: 100)')
@click.option('--product-id', '-p', 'product_ids', multiple=True,
              help='Classify only these product IDs (repeatable)')
def main(limit: int, product_ids: Tuple[str, ...]):
    """Classify products and print a summary."""
    app = create_app()

    with app.app_context():
        logger.info("=" * 60)
        logger.info("BULK CLASSIFICATION")
        logger.info("=" * 60)

        summary = get_ai_classifier().bulk_classify(
            product_ids=list(product_ids) or None,
            limit=limit,
            cancel_event=cancel_event,
        )

        logger.info(f"Total candidates: {summary.total}")
        logger.info(f"  - Processed: {summary.processed}")
        logger.info(f"  - Classified (restricted): {summary.classified}")
        logger.info(f"  - Errors: {summary.errors}")
        if summary.cancelled:
            logger.warning("Run was cancelled before all products were classified")
        for message in summary.error_messages:
            logger.warning(f"  - {message}")

    sys.exit(1 if summary.errors else 0)


if __name__ == '__main__':
    main()
