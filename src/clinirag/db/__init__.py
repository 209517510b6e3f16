"""clinirag vector store layer."""

from clinirag.db.connection import Database
from clinirag.db.migrations import MIGRATIONS, run_migrations
from clinirag.db.models import Chunk, RetrievalResult, StoreStats
from clinirag.db.repository import VectorStore
from clinirag.db.schema import initialize
from clinirag.db.vectors import ensure_vec_table, model_to_slug, vec_table_name

__all__ = [
    "Database",
    "initialize",
    "run_migrations",
    "MIGRATIONS",
    "ensure_vec_table",
    "model_to_slug",
    "vec_table_name",
    "Chunk",
    "RetrievalResult",
    "StoreStats",
    "VectorStore",
]
