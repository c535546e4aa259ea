"""
atelier.errors — Service-level exceptions
==========================================

Services raise these; API routes translate them to HTTP status codes
(``NotFoundError`` → 404, ``BadRequestError`` and
``InsufficientFundsError`` → 400).
"""

from __future__ import annotations


class AtelierError(Exception):
    """Base class for expected, user-facing service failures."""

    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class NotFoundError(AtelierError):
    status_code = 404


class BadRequestError(AtelierError):
    status_code = 400


class InsufficientFundsError(BadRequestError):
    pass
