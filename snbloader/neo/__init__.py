# Graph store package: type catalog and store sessions
from .schema import ENTITIES, PROPERTY_FILES, RELATIONS, CompositeId
from .session import Neo4jStoreSession, StoreError, StoreSession, TransientStoreError

__all__ = [
    "ENTITIES",
    "PROPERTY_FILES",
    "RELATIONS",
    "CompositeId",
    "Neo4jStoreSession",
    "StoreError",
    "StoreSession",
    "TransientStoreError",
]
