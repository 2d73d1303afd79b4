"""HTTP layer for jobrelay."""

from .app import create_app
from .deps import Services, build_services

__all__ = ["Services", "build_services", "create_app"]
