import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, WebSocket
from fastapi.middleware.cors import CORSMiddleware

from config import settings
from api import handle_websocket
from models.database import AsyncSessionLocal, init_database
from services.leaderboard_runtime import build_sql_runtime
from utils.logger import setup_logging, get_logger

# Setup logging
setup_logging(level=settings.LOG_LEVEL, json_format=settings.LOG_JSON, log_file=settings.LOG_FILE)
logger = get_logger("main")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events"""
    logger.info("Starting DeFi DNA leaderboard service...")

    await init_database()
    logger.info("Database initialized")

    runtime = build_sql_runtime(settings, AsyncSessionLocal)
    await runtime.startup()
    app.state.runtime = runtime

    try:
        yield
    finally:
        logger.info("Shutting down...")
        await runtime.shutdown()
        logger.info("Shutdown complete")


app = FastAPI(
    title="DeFi DNA Leaderboard",
    description="Live DNA-score leaderboard with WebSocket rank deltas",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    await handle_websocket(websocket, websocket.app.state.runtime)


@app.get("/health")
async def health_check():
    """Liveness plus pipeline counters"""
    runtime = getattr(app.state, "runtime", None)
    if runtime is None:
        return {"status": "starting"}
    return {
        "status": "healthy",
        "ranked_users": len(runtime.rank_tracker),
        "broadcaster": runtime.broadcaster.stats,
        "coordinator": runtime.coordinator.stats,
        "refresher_running": runtime.refresher.running,
    }


if __name__ == "__main__":
    import uvicorn

    port = int(os.environ.get("PORT", 8000))
    uvicorn.run(
        app,
        host="0.0.0.0",
        port=port,
        # Single worker: the rank snapshot and subscriber set live in-process.
        timeout_keep_alive=30,
    )
