from fastapi import APIRouter, Request

router = APIRouter()


@router.get("/status")
def status(request: Request):
    return request.app.state.engine.snapshot()


@router.get("/status/overlay")
def overlay(request: Request):
    return request.app.state.engine.overlay.snapshot()
