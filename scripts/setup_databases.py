#!/usr/bin/env python3
"""Database setup script for initializing the Neo4j repository.

Creates the uniqueness constraints and document indexes used by licitagraph.
It can be run multiple times safely (idempotent).

Usage:
    python scripts/setup_databases.py [--config config/config.yaml]

Environment variables:
    NEO4J_URI - Neo4j connection URI (default: bolt://localhost:7687)
    NEO4J_USER - Neo4j username (default: neo4j)
    NEO4J_PASSWORD - Neo4j password (default: licitagraph)
    NEO4J_DATABASE - Neo4j database name (default: neo4j)
"""

import argparse
import sys
from pathlib import Path

# Add project root to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from loguru import logger

from licitagraph.exceptions import StorageError
from licitagraph.storage.neo4j_manager import Neo4jManager
from licitagraph.utils.config import load_config


def setup_neo4j(config) -> bool:
    """Set up Neo4j database with constraints and indexes.

    Args:
        config: Application configuration

    Returns:
        True if setup successful, False otherwise
    """
    logger.info("Setting up Neo4j database...")

    neo4j_manager = Neo4jManager(config.database)
    try:
        neo4j_manager.connect()
        neo4j_manager.create_schema()

        if neo4j_manager.health_check():
            logger.success("Neo4j setup completed successfully")
            return True
        logger.error("Neo4j health check failed after setup")
        return False

    except StorageError as e:
        logger.error(f"Neo4j setup failed: {e}")
        return False
    finally:
        neo4j_manager.close()


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Initialize the Neo4j schema used by licitagraph.",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument(
        "--config",
        "-c",
        type=Path,
        default=Path("config/config.yaml"),
        help="Path to configuration file.",
    )
    return parser.parse_args()


def main():
    """Main setup function."""
    logger.info("Starting database setup...")

    args = parse_args()
    try:
        config = load_config(args.config if args.config.exists() else None)
    except (FileNotFoundError, ValueError) as e:
        logger.error(f"Could not load configuration: {e}")
        return 1
    logger.info("Configuration loaded successfully")

    if setup_neo4j(config):
        logger.info("You can now run the ingestion pipeline with storage_backend=neo4j")
        return 0

    logger.error("Database setup failed. Check logs above for details.")
    return 1


if __name__ == "__main__":
    # Configure logging
    logger.remove()  # Remove default handler
    logger.add(
        sys.stderr,
        format="<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | <level>{message}</level>",
        level="INFO",
    )

    # Add file logging
    log_file = Path("logs/setup_databases.log")
    log_file.parent.mkdir(exist_ok=True)
    logger.add(log_file, rotation="10 MB", retention="1 week", level="DEBUG")

    sys.exit(main())
