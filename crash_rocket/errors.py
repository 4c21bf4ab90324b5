# errors.py
"""
Exception hierarchy for the crash round engine.

Engine-level math (fairness, curve) never raises; everything here is
raised at a boundary: token decoding, player input, host reporting.
"""


class EngineError(Exception):
    """Base engine error"""


class StateError(EngineError):
    """Action performed in invalid state"""


class ValidationError(EngineError):
    """Invalid player input or token payload values"""


class DecodeError(EngineError):
    """Round-issuance token could not be decoded"""


class TransientReportError(EngineError):
    """Outcome channel failed to deliver a report"""
