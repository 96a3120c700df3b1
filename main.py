import asyncio
import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware

import config
from database import db, ensure_indexes, get_db, utcnow
from errors import install_error_handlers
from notifier import ConnectionManager, user_room
from ratelimit import RateLimitMiddleware
from routes_auth import router as auth_router
from routes_chat import router as chat_router
from routes_events import router as events_router
from routes_mentorship import router as mentorship_router
from routes_users import router as users_router

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

manager = ConnectionManager()


@asynccontextmanager
async def lifespan(app: FastAPI):
    manager.bind(asyncio.get_running_loop())
    resolve_db = app.dependency_overrides.get(get_db, get_db)
    try:
        ensure_indexes(resolve_db())
    except Exception:
        logger.exception("Could not ensure MongoDB indexes")
    logger.info("Alumni Connect API started")
    yield
    logger.info("Alumni Connect API shutting down")


# App setup
app = FastAPI(title="Alumni Connect API", lifespan=lifespan)
app.state.notifier = manager

app.add_middleware(
    CORSMiddleware,
    allow_origins=[config.CLIENT_URL],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
if config.RATE_LIMIT_MAX_REQUESTS > 0:
    app.add_middleware(
        RateLimitMiddleware,
        window_ms=config.RATE_LIMIT_WINDOW_MS,
        max_requests=config.RATE_LIMIT_MAX_REQUESTS,
    )

install_error_handlers(app)

app.include_router(auth_router)
app.include_router(users_router)
app.include_router(events_router)
app.include_router(chat_router)
app.include_router(mentorship_router)


@app.get("/")
def read_root():
    return {"message": "Alumni Connect API is running"}


@app.get("/api/health")
def health():
    return {
        "status": "OK",
        "timestamp": utcnow().isoformat(),
        "environment": os.getenv("ENVIRONMENT", "development"),
    }


@app.get("/test")
def test_database():
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": None,
        "database_name": None,
        "connection_status": "Not Connected",
        "collections": []
    }
    try:
        if db is not None:
            response["database"] = "✅ Available"
            response["connection_status"] = "Connected"
            try:
                collections = db.list_collection_names()
                response["collections"] = collections[:10]
                response["database"] = "✅ Connected & Working"
            except Exception as e:
                response["database"] = f"⚠️  Connected but Error: {str(e)[:50]}"
        else:
            response["database"] = "⚠️  Available but not initialized"
    except Exception as e:
        response["database"] = f"❌ Error: {str(e)[:50]}"

    response["database_url"] = "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set"
    response["database_name"] = "✅ Set" if os.getenv("DATABASE_NAME") else "❌ Not Set"
    return response


# Client -> server socket events and how they are relayed
async def handle_socket_event(websocket: WebSocket, event: str, data):
    if event == "join-chat":
        manager.join(websocket, user_room(data))
    elif event == "send-message":
        await manager.broadcast({"event": "new-message", "data": data})
    elif event == "mentorship-request":
        mentor_id = data.get("mentor_id") if isinstance(data, dict) else None
        if mentor_id:
            await manager.broadcast({"event": "new-mentorship-request", "data": data}, room=user_room(mentor_id))
    elif event == "event-update":
        await manager.broadcast({"event": "event-updated", "data": data})
    else:
        logger.debug("Ignoring unknown socket event %r", event)


@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    await manager.connect(websocket)
    try:
        while True:
            try:
                frame = await websocket.receive_json()
            except ValueError:
                logger.warning("Ignoring malformed socket frame")
                continue
            if not isinstance(frame, dict):
                continue
            await handle_socket_event(websocket, frame.get("event"), frame.get("data"))
    except WebSocketDisconnect:
        logger.info("WebSocket disconnected")
    finally:
        manager.disconnect(websocket)
        logger.debug("%d WebSocket connections active", len(manager.active))


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=config.PORT)
