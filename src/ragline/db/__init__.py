"""ragline database layer."""

from ragline.db.connection import Database
from ragline.db.migrations import MIGRATIONS, run_migrations
from ragline.db.repository import Repository
from ragline.db.schema import initialize
from ragline.db.vectors import ensure_vec_table, model_to_slug, vec_table_for, vec_table_name

__all__ = [
    "Database",
    "Repository",
    "initialize",
    "run_migrations",
    "MIGRATIONS",
    "ensure_vec_table",
    "model_to_slug",
    "vec_table_for",
    "vec_table_name",
]
