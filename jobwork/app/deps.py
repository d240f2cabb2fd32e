from functools import lru_cache

from .google_auth import GoogleAuthorizer
from .state import StateHolder
from .storage.local_store import LocalStore
from .sync_engine import SyncEngine


@lru_cache(maxsize=1)
def get_holder() -> StateHolder:
    return StateHolder(LocalStore())


@lru_cache(maxsize=1)
def get_authorizer() -> GoogleAuthorizer:
    return GoogleAuthorizer()


@lru_cache(maxsize=1)
def get_engine() -> SyncEngine:
    return SyncEngine(get_authorizer())
