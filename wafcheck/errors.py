"""
WAF Checker - Error types
"""

from typing import List, Optional


class WafCheckError(Exception):
    """Base error for the WAF checker."""


class TransportError(WafCheckError):
    """Network failure, TLS failure or timeout while talking to a target."""

    def __init__(self, message: str, url: str = ""):
        super().__init__(message)
        self.url = url


class ValidationError(WafCheckError):
    """Rejected input. `invalid` lists every offending entry."""

    def __init__(self, message: str, invalid: Optional[List[str]] = None):
        super().__init__(message)
        self.invalid: List[str] = list(invalid or [])


class InternalError(WafCheckError):
    """Unexpected failure while building or running a scan."""
