from .collection_store import CollectionStore, CollectionTable
from .naming import collection_name, table_name
from .schema import SCHEMA_VERSION, TableSchema, is_compatible

__all__ = [
    "CollectionStore",
    "CollectionTable",
    "SCHEMA_VERSION",
    "TableSchema",
    "collection_name",
    "is_compatible",
    "table_name",
]
