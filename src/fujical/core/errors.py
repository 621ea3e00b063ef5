# src/fujical/core/errors.py
from __future__ import annotations

from typing import Any, Dict, Optional


class FujiCalError(Exception):
    """Base class for engine errors."""


class InvalidCoordinates(FujiCalError, ValueError):
    """Latitude/longitude/elevation is non-finite or out of range."""


class NoAlignmentFound(FujiCalError):
    """
    Normal negative result of an alignment search.

    AlignmentSearch returns None instead of raising; this is only raised by
    callers that require a result (see alignment.require_alignment).
    """


class ProviderUnavailable(FujiCalError):
    """The celestial position provider failed for one or more instants."""


class StageCancelled(FujiCalError):
    """A running stage observed the cancel flag between chunks."""


class StageFailure(FujiCalError):
    """
    An orchestrated stage failed. The run is aborted.

    `telemetry` holds whatever was measured before the failure
    (completed stage timings/counts), so the caller can report partial progress.
    """

    def __init__(
        self,
        stage: str,
        message: str,
        *,
        telemetry: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(f"{stage} failed: {message}")
        self.stage = stage
        self.message = message
        self.telemetry: Dict[str, Any] = dict(telemetry or {})


class RunInProgress(FujiCalError):
    """Another orchestrated run holds the orchestrator. Same-year runs must be serialized."""
