"""HTTP surface serving a live-reloaded template set."""

from templateswap.api.app import create_app

__all__ = ["create_app"]
