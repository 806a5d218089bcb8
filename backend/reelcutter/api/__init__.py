"""API routes for the media pipeline."""

from reelcutter.api import process_routes, routes

__all__ = ["process_routes", "routes"]
