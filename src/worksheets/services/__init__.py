"""Service contracts used by the authoring and worksheet sessions.

Implementations live in ``worksheets.services.local`` (in-process) and
``worksheets.services.http`` (web API client).
"""

from worksheets.services.base import (
    ChatTurn,
    ConflictError,
    ExerciseService,
    NotFoundError,
    ServiceError,
    ServiceUnavailableError,
)

__all__ = [
    "ChatTurn",
    "ConflictError",
    "ExerciseService",
    "NotFoundError",
    "ServiceError",
    "ServiceUnavailableError",
]
