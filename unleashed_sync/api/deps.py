from fastapi import Depends

from unleashed_sync.services.credentials import CredentialStore, RedisCredentialStore
from unleashed_sync.services.sync.orchestrator import SyncOrchestrator

_credential_store: CredentialStore | None = None


def get_credential_store() -> CredentialStore:
    """Process-wide Redis credential store; overridden in tests."""
    global _credential_store
    if _credential_store is None:
        _credential_store = RedisCredentialStore()
    return _credential_store


def get_orchestrator(store: CredentialStore = Depends(get_credential_store)) -> SyncOrchestrator:
    return SyncOrchestrator(store)
