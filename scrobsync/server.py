import time
from fastapi import FastAPI, Depends, HTTPException, Header
from typing import Optional
from .config import settings
from .orchestrator import SyncOrchestrator
from .scheduler import BackgroundScheduler

def get_token(x_token: Optional[str] = Header(None, alias="X-Token")):
    if settings.HTTP_SERVER_TOKEN and x_token != settings.HTTP_SERVER_TOKEN:
        raise HTTPException(status_code=401, detail="Invalid token")

def create_app(orchestrator: SyncOrchestrator, scheduler: Optional[BackgroundScheduler] = None) -> FastAPI:
    app = FastAPI(title="Scrobble Sync")
    sm = orchestrator.sm
    sync_log = orchestrator.sync_log

    @app.get("/healthz")
    def healthz():
        last_sync = sm.state.last_successful_sync
        # lenient: three missed background intervals
        threshold = settings.BACKGROUND_REFRESH_INTERVAL_SECONDS * 3 + 60
        if last_sync and time.time() - last_sync > threshold:
            return {"status": "lagging", "last_sync_age": time.time() - last_sync}
        return {"status": "ok"}

    @app.get("/status", dependencies=[Depends(get_token)])
    def status():
        return {
            "is_syncing": orchestrator.is_syncing,
            "last_error": str(orchestrator.last_error) if orchestrator.last_error else None,
            "last_sync": orchestrator.last_sync_date,
            "last_successful_sync": sm.state.last_successful_sync,
            "sync_status": orchestrator.status.current.model_dump(mode="json"),
            "scheduler_state": scheduler.state.value if scheduler else None,
            "library_cache_size": len(sm.state.library),
            "history_size": len(sm.state.history),
            "user": sm.state.user_info.model_dump() if sm.state.user_info else None
        }

    @app.get("/history", dependencies=[Depends(get_token)])
    def history(limit: int = 50):
        return [t.model_dump() for t in sm.recent_history(limit)]

    @app.get("/sync-log", dependencies=[Depends(get_token)])
    def get_sync_log():
        return [e.model_dump(mode="json") for e in sync_log.entries()]

    @app.delete("/sync-log", dependencies=[Depends(get_token)])
    def clear_sync_log():
        sync_log.clear()
        return {"status": "cleared"}

    @app.post("/sync", dependencies=[Depends(get_token)])
    async def trigger_sync():
        result = await orchestrator.perform_sync(include_non_critical=True)
        if result is None:
            raise HTTPException(status_code=409, detail="Sync already in progress")
        return {
            "accepted_count": result.accepted_count,
            "error": str(result.error) if result.error else None
        }

    @app.delete("/cache/library", dependencies=[Depends(get_token)])
    def clear_library_cache():
        if orchestrator.is_syncing:
            raise HTTPException(status_code=409, detail="Sync in progress")
        sm.clear_library()
        return {"status": "cleared"}

    @app.delete("/cache/history", dependencies=[Depends(get_token)])
    def clear_history_cache():
        if orchestrator.is_syncing:
            raise HTTPException(status_code=409, detail="Sync in progress")
        sm.clear_history()
        return {"status": "cleared"}

    return app
