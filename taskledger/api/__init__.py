"""Operation surface for the task lifecycle and billing engine."""

from .service import MarketplaceService, OperationResult

__all__ = ["MarketplaceService", "OperationResult"]
