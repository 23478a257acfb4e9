"""photorelay.relay -- server side: the relay endpoint and Media Store client.

* :mod:`.app` -- FastAPI application factory.
* :mod:`.service` -- framework-independent endpoint logic.
* :mod:`.media_store` -- signed Cloudinary uploads over httpx.
* :mod:`.encoding` -- file name sanitizing, public ids and data URIs.
* :mod:`.retries` -- retry decisions and backoff.
"""

from __future__ import annotations

from .app import create_app
from .encoding import build_public_id, sanitize_filename, to_data_uri
from .media_store import CloudinaryMediaStore, MediaStore, sign_params, transformation_string
from .retries import compute_backoff, should_retry
from .service import RelayService

__all__ = [
    "CloudinaryMediaStore",
    "MediaStore",
    "RelayService",
    "build_public_id",
    "compute_backoff",
    "create_app",
    "sanitize_filename",
    "should_retry",
    "sign_params",
    "to_data_uri",
    "transformation_string",
]
