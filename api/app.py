from fastapi import FastAPI
from api.routes import status, schedule, control, events
from fastapi.middleware.cors import CORSMiddleware


def create_app(engine) -> FastAPI:
    """Status/control API for the display host, bound to one running engine."""
    app = FastAPI(
        title="Masjid Display Engine",
        version="0.1.0"
    )
    app.state.engine = engine

    app.include_router(status.router)
    app.include_router(schedule.router)
    app.include_router(control.router)
    app.include_router(events.router)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[
            "http://localhost:5173",   # display dashboard (vite dev server)
            "http://localhost:8000",   # same-origin (safe)
        ],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    return app
