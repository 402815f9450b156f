"""
Service module initialization
"""

from .config import IdentityServiceConfig, StoreConfig, STORE_BACKENDS, create_store
from .service import IdentityService, create_service

__all__ = [
    "IdentityService",
    "IdentityServiceConfig",
    "StoreConfig",
    "STORE_BACKENDS",
    "create_store",
    "create_service",
]
