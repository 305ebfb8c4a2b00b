"""
litgraph/db — SQLModel engine factory and table models.

Usage:
    from litgraph.db import create_db_engine, init_db
    from litgraph.db.models import ResearchJobRow, ArticleRow, ...
"""

from litgraph.db.engine import create_db_engine, init_db

__all__ = ["create_db_engine", "init_db"]
