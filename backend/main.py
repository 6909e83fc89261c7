import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from config import settings

from services.connections import ConnectionManager
from services.engine import RoomEngine
from services.firestore_service import get_archive_service
from services.question_source import QuestionSource

logging.basicConfig(level=logging.DEBUG if settings.debug else logging.INFO)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Life Coach rooms backend starting up...")
    connections = ConnectionManager()
    try:
        archive = get_archive_service()
    except Exception:
        logger.warning("Firestore archive unavailable; sessions will not be archived", exc_info=True)
        archive = None
    engine = RoomEngine(connections, archive=archive)
    await engine.start()

    app.state.connections = connections
    app.state.engine = engine
    app.state.questions = QuestionSource()
    yield
    await engine.stop()
    await connections.close_all()
    logger.info("Backend shutting down.")


app = FastAPI(
    title="Life Coach Rooms",
    version="0.1.0",
    description="Multiplayer rooms where every participant talks with an AI life coach, then gets a group summary",
    lifespan=lifespan,
)

_origins = list(settings.allowed_origins)
if settings.extra_origin:
    _origins.append(settings.extra_origin)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization"],
)


@app.get("/health")
async def health_check():
    return {"status": "ok", "service": "life-coach-rooms", "version": "0.1.0"}


from routers.room_router import admin_router, router as room_router
from routers.ws_router import router as ws_router

app.include_router(room_router)
app.include_router(admin_router)
app.include_router(ws_router)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=True)
