"""Persistence layer: domain models and document repositories."""

from licitagraph.storage.neo4j_manager import Neo4jManager
from licitagraph.storage.repository import DocumentRepository, InMemoryRepository
from licitagraph.utils.config import DatabaseConfig


def create_repository(config: DatabaseConfig, *, init_schema: bool = False) -> DocumentRepository:
    """Build the repository selected by ``storage_backend``.

    Args:
        config: Database configuration
        init_schema: Create Neo4j constraints and indexes after connecting

    Returns:
        A ready-to-use repository (connected, for Neo4j)
    """
    if config.storage_backend == "neo4j":
        manager = Neo4jManager(config)
        manager.connect()
        if init_schema:
            manager.create_schema()
        return manager
    return InMemoryRepository()


__all__ = ["DocumentRepository", "InMemoryRepository", "Neo4jManager", "create_repository"]
