"""
Error taxonomy shared by planning, the control loop and the venue adapters.
"""

from __future__ import annotations


class InvalidInput(Exception):
    """Planning inputs are unusable. Fatal: nothing can be exited."""


class Unavailable(Exception):
    """Price or bar data could not be fetched or parsed."""


class OrderRejected(Exception):
    """The venue refused (or failed to answer) an exit order."""

    def __init__(self, message: str, status: str = ""):
        super().__init__(message)
        self.status = status
