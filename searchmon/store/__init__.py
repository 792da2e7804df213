"""Search store transport"""

from .client import SearchStoreClient

__all__ = ["SearchStoreClient"]
