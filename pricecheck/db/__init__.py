"""Database package: models, engine, session factory."""

from pricecheck.db.database import close_db, get_session, init_db
from pricecheck.db.models import AssetPrice, Base, CombinedPrediction, HorizonRevision

__all__ = [
    "AssetPrice",
    "Base",
    "CombinedPrediction",
    "HorizonRevision",
    "close_db",
    "get_session",
    "init_db",
]
