"""Database package — models, engine, store facade."""

from stockanalyzer.db.database import Database
from stockanalyzer.db.models import (
    Base,
    CompanyOverview,
    DailyPrice,
    IncomeStatement,
    IntradayPrice,
    ProviderQuota,
    UpdateTracking,
)
from stockanalyzer.db.store import Store

__all__ = [
    "Base",
    "CompanyOverview",
    "DailyPrice",
    "Database",
    "IncomeStatement",
    "IntradayPrice",
    "ProviderQuota",
    "Store",
    "UpdateTracking",
]
