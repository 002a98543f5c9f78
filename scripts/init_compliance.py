#!/usr/bin/env python
"""
Initialize Compliance Tables - create tables and seed the default rule catalog.

Usage:
    # Create tables and seed default rules
    python scripts/init_compliance.py

    # Only create tables
    python scripts/init_compliance.py --no-seed

Safe to run repeatedly: existing tables and rules are left alone.
"""

import sys
import os
import click
import logging

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from app.web import create_app
from app.web.db import db
from app.services.compliance_service import get_compliance_service

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
)
logger = logging.getLogger(__name__)


@click.command()
@click.option('--seed/--no-seed', default=True,
              help='Seed the default compliance rules (default: seed)')
def main(seed: bool):
    """Create the compliance tables and seed default rules."""
    app = create_app()

    with app.app_context():
        logger.info(f"Database: {app.config['SQLALCHEMY_DATABASE_URI']}")
        db.create_all()
        logger.info("Tables created")

        if not seed:
            return

        created = get_compliance_service().initialize_default_rules()
        if created:
            logger.info(f"Seeded {len(created)} rules: {', '.join(created)}")
        else:
            logger.info("Default rules already present")


if __name__ == '__main__':
    main()
