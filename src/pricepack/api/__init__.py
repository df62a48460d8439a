"""REST API: upload and download price archives."""

from pricepack.api.app import create_app

__all__ = ["create_app"]
