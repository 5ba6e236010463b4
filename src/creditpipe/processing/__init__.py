"""Processing capabilities: transformer and blob store interfaces."""

from creditpipe.processing.base import (
    BlobStore,
    Transformer,
    TransformResult,
    make_output_key,
    output_extension,
)
from creditpipe.processing.memory import InMemoryBlobStore

__all__ = [
    "BlobStore",
    "InMemoryBlobStore",
    "Transformer",
    "TransformResult",
    "make_output_key",
    "output_extension",
]
