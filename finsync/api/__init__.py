"""HTTP API."""

from finsync.api.app import create_api

__all__ = ["create_api"]
