"""Producing-surface adapters.

`harvest.surfaces.browser` needs the optional `browser` extra (Playwright) and
is imported explicitly by callers that drive a live tab.
"""

from .base import MutationCallback, Surface, SurfaceError, Unsubscribe

__all__ = ["MutationCallback", "Surface", "SurfaceError", "Unsubscribe"]
