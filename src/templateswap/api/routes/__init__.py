"""API route modules."""

from templateswap.api.routes import diagnostics, templates

__all__ = ["diagnostics", "templates"]
