"""Shared FastAPI dependencies."""
from fastapi import Depends, HTTPException

from ingest.db.engine import get_store
from ingest.db.store import DocumentStore
from ingest.providers.base import ProviderKind
from ingest.providers.registry import parse_provider
from ingest.services import Services, build_services


def get_services(store: DocumentStore = Depends(get_store)) -> Services:
    return build_services(store)


def get_provider(provider: str) -> ProviderKind:
    """Path parameter → ProviderKind; unknown providers are a 404."""
    try:
        return parse_provider(provider)
    except ValueError as e:
        raise HTTPException(status_code=404, detail=str(e))
