"""
Shared plumbing for the marketplace services.

This package provides:
- Settings and the frozen engine configuration
- The error taxonomy mapped to HTTP responses
- Structured logging setup
- The transactional record store and audit trail
- Principal resolution, image storage, notifications and payout encryption
"""

from .config import EngineConfig, Settings
from .errors import MarketplaceError
from .storage import InMemoryStorage, Transaction

__all__ = [
    "EngineConfig",
    "Settings",
    "MarketplaceError",
    "InMemoryStorage",
    "Transaction",
]
