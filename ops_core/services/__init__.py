# =============================================================================
# ops_core/services/__init__.py
# Service layer primitives shared by the collection managers
# =============================================================================

from .base_service import BaseService, ServiceResult
from .events import MutationEvent, MutationEventBus

__all__ = [
    "BaseService",
    "ServiceResult",
    "MutationEvent",
    "MutationEventBus",
]
