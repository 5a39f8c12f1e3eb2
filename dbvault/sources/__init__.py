from dbvault.sources.connection import DatabaseConnection, RowBatch, default_engine_factory
from dbvault.sources.profiles import (
    ConnectionProfile,
    DatabaseEngine,
    InMemoryProfileProvider,
    JsonProfileProvider,
    ProfileProvider,
)

__all__ = [
    "ConnectionProfile",
    "DatabaseConnection",
    "DatabaseEngine",
    "InMemoryProfileProvider",
    "JsonProfileProvider",
    "ProfileProvider",
    "RowBatch",
    "default_engine_factory",
]
