from fastapi import APIRouter, Request

router = APIRouter()


@router.get("/schedule")
def schedule(request: Request):
    current = request.app.state.engine.schedule
    if current is None:
        return {"error": "schedule not loaded"}
    return {
        "day": current.day.isoformat(),
        "is_friday": current.is_friday,
        "times": current.as_dict(),
    }
