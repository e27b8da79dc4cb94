"""Outreach engine persistence models.

This module contains the SQLAlchemy lead model and the pydantic documents
describing the growth strategy.
"""

from sqlalchemy.ext.asyncio import AsyncAttrs
from sqlalchemy.orm import DeclarativeBase


class Base(AsyncAttrs, DeclarativeBase):
    """Base class for all SQLAlchemy models."""
    pass


# Import models to register them with Base metadata
from .lead import Lead, LeadStatus, UTCDateTime

# Import database utilities
from .database import DatabaseManager, normalize_database_url

# Strategy documents
from .strategy import (
    CustomerRange,
    GrowthStrategy,
    Phase,
    PhaseEconomics,
    PhaseSettings,
    PhaseTransition,
    SendWindow,
    TargetCity,
    timezone_for_state,
)

__all__ = [
    # Base class
    "Base",
    # Models
    "Lead",
    "LeadStatus",
    "UTCDateTime",
    # Database utilities
    "DatabaseManager",
    "normalize_database_url",
    # Strategy documents
    "CustomerRange",
    "GrowthStrategy",
    "Phase",
    "PhaseEconomics",
    "PhaseSettings",
    "PhaseTransition",
    "SendWindow",
    "TargetCity",
    "timezone_for_state",
]
