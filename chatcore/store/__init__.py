from chatcore.store.base import RelationshipStore
from chatcore.store.sql import SqlRelationshipStore

__all__ = ["RelationshipStore", "SqlRelationshipStore"]
