"""
Exceptions raised by course progress, streak and achievement tracking.
"""

from app.live.errors import LiveSessionError


class ProgressError(LiveSessionError):
    """Base error for learner progress bookkeeping."""


class ProgressNotFoundError(ProgressError):
    """A course, module, lesson, enrollment or achievement does not exist."""


class ProgressStateError(ProgressError):
    """The request conflicts with what the learner already has (enrolled twice, awarded twice)."""


class ProgressConflictError(ProgressError):
    """Concurrent writers kept winning the version check."""
