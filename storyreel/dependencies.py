"""
Lazy service singletons shared by the routers.

Routes take these through FastAPI `Depends`, so tests swap them with
`app.dependency_overrides` instead of patching module globals.
"""

from typing import Optional

from .credits import CreditPurchaseService
from .ledger import UsageLedger, build_default_ledger
from .pipeline.orchestrator import GenerationService
from .pipeline.storage import BaseArtifactStore, build_default_artifact_store

_ledger: Optional[UsageLedger] = None
_artifact_store: Optional[BaseArtifactStore] = None
_generation_service: Optional[GenerationService] = None
_purchase_service: Optional[CreditPurchaseService] = None


def get_ledger() -> UsageLedger:
    global _ledger
    if _ledger is None:
        _ledger = build_default_ledger()
    return _ledger


def get_artifact_store() -> BaseArtifactStore:
    global _artifact_store
    if _artifact_store is None:
        _artifact_store = build_default_artifact_store()
    return _artifact_store


def get_generation_service() -> GenerationService:
    global _generation_service
    if _generation_service is None:
        _generation_service = GenerationService(get_ledger(), get_artifact_store())
    return _generation_service


def get_purchase_service() -> CreditPurchaseService:
    global _purchase_service
    if _purchase_service is None:
        _purchase_service = CreditPurchaseService(get_ledger())
    return _purchase_service
