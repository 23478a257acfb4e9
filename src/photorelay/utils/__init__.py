from .chunk import chunk
from .redact import redact

__all__ = [
    "chunk",
    "redact",
]
