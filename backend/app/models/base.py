from __future__ import annotations
from sqlalchemy.orm import declarative_base

# Shared metadata for every model module and for Alembic autogenerate.
Base = declarative_base()

__all__ = ['Base']
