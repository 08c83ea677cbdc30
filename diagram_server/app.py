"""FastAPI application for serving diagrams and their form view."""

import os
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from diagram_server.db import init_all
from diagram_server.diagram_db import DIAGRAM_DB_PATH
from diagram_server.diagram_routes import router as diagram_router
from flowsync.config import load_settings
from flowsync.utils.logging import configure_logging

from dotenv import load_dotenv
load_dotenv()

# the form and the visual editor are served from other origins; comma separated
CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*").split(",")

VERSION = "0.3.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Configure logging and initialize database tables on startup."""
    configure_logging(load_settings().log_level)
    init_all()
    yield


app = FastAPI(
    title="FlowSync API",
    description="API server keeping process diagrams and their step form in sync",
    version=VERSION,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(diagram_router, prefix="/api")


@app.get("/")
def health():
    """Report liveness, version and the database file in use."""
    return {
        "status": "ok",
        "version": VERSION,
        "diagram_db": str(DIAGRAM_DB_PATH),
        "endpoints": {
            "diagrams": "/api/diagrams",
            "flow": "/api/diagrams/{id}/flow",
            "rebuild": "/api/diagrams/{id}/rebuild",
        },
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
