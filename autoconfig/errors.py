"""
Error taxonomy for probe failures.

Probes raise these internally; the engine turns each one into an
``error`` progress event carrying :attr:`AutoConfigError.label`, so no
exception ever reaches the polling caller.
"""
from __future__ import annotations

from .constants import (
    ERROR_CANCELLED,
    ERROR_ENCODER_TEST,
    ERROR_INVALID_SERVICE,
    ERROR_INVALID_STREAM_SETTINGS,
    ERROR_INVALID_VIDEO_SETTINGS,
)


class AutoConfigError(Exception):
    """Base class; ``label`` is the machine-readable event label."""

    label = "internal_error"

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.label)


class InvalidStreamSettings(AutoConfigError):
    """Missing stream key / service, or no server could be evaluated."""

    label = ERROR_INVALID_STREAM_SETTINGS


class InvalidVideoSettings(AutoConfigError):
    """The temporary probe video context could not be applied."""

    label = ERROR_INVALID_VIDEO_SETTINGS


class InvalidService(AutoConfigError):
    """The pipeline refused to create a service object."""

    label = ERROR_INVALID_SERVICE


class EncoderTestFailed(AutoConfigError):
    """A live encode session could not be started."""

    label = ERROR_ENCODER_TEST


class ProbeCancelled(AutoConfigError):
    label = ERROR_CANCELLED
