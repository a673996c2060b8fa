"""Typed errors raised across deeptrend components."""

from __future__ import annotations


class DeeptrendError(Exception):
    """Base class for deeptrend errors."""


class ConfigurationError(DeeptrendError):
    """A required setting or credential is missing or invalid."""


class StoreError(DeeptrendError):
    """The signal/insight store rejected or failed an operation."""


class SynthesisError(DeeptrendError):
    """The synthesis engine failed: timeout, non-zero exit or HTTP failure."""


class SynthesisFormatError(SynthesisError):
    """Synthesis output did not contain a parsable JSON array of insights."""
