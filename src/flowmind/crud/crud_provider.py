"""
CRUD operations for Provider model.

Document writes that need compare-and-swap or atomic counters live in
``services.provider_registry``; this object covers plain reads, create and exists.
"""

from fastcrud import FastCRUD

from ..models.provider import Provider
from ..schemas.provider import (
    ProviderCreateInternal,
    ProviderStatusUpdate,
    ProviderSummary,
    ProviderUpdate,
)

CRUDProvider = FastCRUD[
    Provider,
    ProviderCreateInternal,
    ProviderUpdate,
    ProviderUpdate,
    ProviderStatusUpdate,
    ProviderSummary,
]
crud_provider = CRUDProvider(Provider)
