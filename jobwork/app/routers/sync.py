from fastapi import APIRouter, BackgroundTasks, Depends

from ..config import settings
from ..deps import get_engine, get_holder
from ..logs import json_log
from ..state import StateHolder

router = APIRouter(prefix="/sync", tags=["sync"])


def _background_sync(holder: StateHolder, engine) -> None:
    # Never prompts: a background trigger must not pop a consent screen.
    try:
        holder.sync(engine, interactive=False)
    except Exception as ex:
        json_log("error", "sync.background.error", error=str(ex))


def schedule_sync(background: BackgroundTasks, holder: StateHolder, engine) -> bool:
    if not settings.auto_sync_enabled:
        return False
    background.add_task(_background_sync, holder, engine)
    return True


@router.post("")
def sync_now(holder: StateHolder = Depends(get_holder), engine=Depends(get_engine)):
    outcome = holder.sync(engine, interactive=True)
    return {**outcome.as_dict(), "unsynced": holder.snapshot().unsynced_count()}


@router.get("/status")
def sync_status(holder: StateHolder = Depends(get_holder), engine=Depends(get_engine)):
    last = engine.last_outcome
    return {
        "busy": engine.busy,
        "unsynced": holder.snapshot().unsynced_count(),
        "auto_sync": settings.auto_sync_enabled,
        "last": last.as_dict() if last else None,
    }
