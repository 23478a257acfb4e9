"""photorelay.transfer -- client side of the relay endpoint.

* :mod:`.client` -- :class:`TransferClient`, the async httpx client that
  posts assets to the relay and interprets its responses.
"""

from __future__ import annotations

from .client import TransferClient

__all__ = [
    "TransferClient",
]
