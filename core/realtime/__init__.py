"""Realtime (ActionCable) transport and envelope parsing."""

from .envelopes import CompletionEnvelope, EnvelopeShape, parse_completion_envelope
from .transport import RealtimeTransport, build_cable_url

__all__ = [
    "CompletionEnvelope",
    "EnvelopeShape",
    "RealtimeTransport",
    "build_cable_url",
    "parse_completion_envelope",
]
