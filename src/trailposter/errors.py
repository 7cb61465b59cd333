"""errors.py

Exception hierarchy shared by the rendering pipeline and the thin
checkout / fulfillment contracts.

Degraded track input is deliberately absent here: the parser never
raises, it substitutes the synthetic trail instead.
"""

from __future__ import annotations


class TrailPosterError(Exception):
    """Base class for all trailposter errors."""


class RenderError(TrailPosterError):
    """The map renderer reported a fault while producing the poster."""


class RenderTimeoutError(RenderError):
    """The map renderer did not reach an idle state in time."""

    def __init__(self, timeout_s: float):
        super().__init__(f"Map render timed out after {timeout_s:g}s")
        self.timeout_s = timeout_s


class TileFetchError(TrailPosterError):
    """A terrain tile could not be fetched or decoded."""


class CheckoutValidationError(TrailPosterError):
    """A checkout request failed validation (reported as HTTP 400)."""

    status = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class WebhookSignatureError(TrailPosterError):
    """A payment webhook carried a missing or invalid signature."""


class FulfillmentError(TrailPosterError):
    """The print vendor rejected or failed an order request."""
