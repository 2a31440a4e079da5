"""Persistence: relational repository, blob store and vector index."""

from .blob_store import (
    BlobStore,
    LocalBlobStore,
    MinioBlobStore,
    create_blob_store,
    generate_unique_filename,
    get_file_mime_type,
)
from .database import Base, create_engine_from_url, create_session_factory, init_db
from .repository import KeywordHit, SOPRepository
from .vector_index import ContentBlockIndex, VectorHit

__all__ = [
    # Relational
    "Base",
    "create_engine_from_url",
    "create_session_factory",
    "init_db",
    "SOPRepository",
    "KeywordHit",
    # Blobs
    "BlobStore",
    "LocalBlobStore",
    "MinioBlobStore",
    "create_blob_store",
    "generate_unique_filename",
    "get_file_mime_type",
    # Vectors
    "ContentBlockIndex",
    "VectorHit",
]
