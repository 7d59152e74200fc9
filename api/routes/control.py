from fastapi import APIRouter, Request

router = APIRouter()


# ---------- PLAYBACK ----------
@router.post("/control/playback/stop")
def stop_playback(request: Request):
    if not request.app.state.engine.audio.stop_current():
        return {"success": False, "message": "Nothing is playing"}
    return {"success": True, "message": "Playback stopped"}


# ---------- SETTINGS ----------
@router.post("/control/settings/reload")
def reload_settings(request: Request):
    if not request.app.state.engine.load_settings():
        return {"success": False, "message": "Settings unavailable"}
    return {"success": True, "message": "Settings reloaded"}
