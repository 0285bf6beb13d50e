"""Engine-independent parts of the data-access core."""

from __future__ import annotations

from .bulk_mutation import BulkMutationProtocol
from .errors import (
    BrokerConnectionError,
    BrokerError,
    IntrospectionError,
    MalformedDirectiveError,
    QueryError,
    TransientConflictError,
)
from .metadata import EntityDescriptor, PersistenceMetadataRegistry
from .pagination import PaginationWindow, SortOrder

__all__ = [
    "BrokerConnectionError",
    "BrokerError",
    "BulkMutationProtocol",
    "EntityDescriptor",
    "IntrospectionError",
    "MalformedDirectiveError",
    "PaginationWindow",
    "PersistenceMetadataRegistry",
    "QueryError",
    "SortOrder",
    "TransientConflictError",
]
