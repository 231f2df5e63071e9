"""Task lifecycle and billing ledger engine for a services marketplace."""

from .api import MarketplaceService, OperationResult
from .config import EngineConfig, load_config
from .models import Actor, Money, Role

__version__ = "0.1.0"

__all__ = [
    "MarketplaceService",
    "OperationResult",
    "EngineConfig",
    "load_config",
    "Actor",
    "Money",
    "Role",
]
