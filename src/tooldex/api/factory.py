"""Wire the default tooldex components from configuration."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Optional

from tooldex.api.service import ToolRetrievalService
from tooldex.config import DB_PATH
from tooldex.index.embeddings import create_embedding_client
from tooldex.index.pipeline import IndexingPipeline
from tooldex.index.store import ToolVectorStore
from tooldex.providers.base import ToolProvider
from tooldex.providers.command import CommandToolProvider
from tooldex.providers.registry import ServerRegistry
from tooldex.recommender import ToolRecommender
from tooldex.session.ledger import SessionLedger


def build_recommender(
    db_path: Optional[Path] = None,
    provider: Optional[ToolProvider] = None,
    embedding_client: Optional[Any] = None,
    registry: Optional[ServerRegistry] = None,
    concurrency: Optional[int] = None,
) -> ToolRecommender:
    """Create an uninitialized recommender over the configured database."""
    store = ToolVectorStore(db_path or DB_PATH)
    client = embedding_client or create_embedding_client()
    return ToolRecommender(
        store=store,
        embedding_client=client,
        provider=provider or CommandToolProvider(),
        registry=registry or ServerRegistry(),
        pipeline=IndexingPipeline(store, client, concurrency=concurrency),
    )


def build_service(
    recommender: ToolRecommender, db_path: Optional[Path] = None
) -> ToolRetrievalService:
    """Create the retrieval service, sharing the recommender's database."""
    ledger = SessionLedger(db_path or recommender.store.db_path)
    ledger.init_db()
    return ToolRetrievalService(recommender, ledger)
