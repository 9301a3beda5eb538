from __future__ import annotations


class BadRequestError(Exception):
    """The request is well-formed JSON but cannot be acted on."""
