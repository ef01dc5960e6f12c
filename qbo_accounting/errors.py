"""Exception types raised by the QuickBooks accounting client.

Transport failures are not represented here: ``requests`` exceptions
(``requests.HTTPError`` for non-2xx responses) reach the caller unchanged.
"""

from __future__ import annotations


class ConfigError(ValueError):
    """Client configuration is missing or malformed."""


class InvalidQuery(ValueError):
    """Filter input has a shape the query compiler cannot use."""


class PreconditionError(ValueError):
    """A request was rejected locally before anything was sent."""
