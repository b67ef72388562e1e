"""Adapters for the three backend collaborators: auth, blobs and records."""

from .base import AuthProvider, BlobStore, RecordStore

__all__ = ["AuthProvider", "BlobStore", "RecordStore"]
