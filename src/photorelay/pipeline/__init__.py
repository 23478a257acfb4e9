"""photorelay.pipeline -- client-side upload pipeline.

* :mod:`.validate` -- candidate validation rules.
* :mod:`.normalize` -- downscale and re-encode before transfer.
* :mod:`.batch` -- paced, fixed-size batch scheduling.
* :mod:`.state` -- session lifecycle state machine.
* :mod:`.session` -- the session controller tying the stages together.
"""

from __future__ import annotations

from .batch import BatchScheduler, Sender, abandoned_result
from .normalize import compute_scale, normalize
from .session import (
    DecisionResolver,
    ProceedResolver,
    UploadSession,
    UploadSessionController,
)
from .state import SessionStateMachine
from .validate import partition, validate

__all__ = [
    "BatchScheduler",
    "DecisionResolver",
    "ProceedResolver",
    "Sender",
    "SessionStateMachine",
    "UploadSession",
    "UploadSessionController",
    "abandoned_result",
    "compute_scale",
    "normalize",
    "partition",
    "validate",
]
