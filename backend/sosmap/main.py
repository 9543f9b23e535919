"""
Emergency Response Live Map Engine
Main FastAPI Application Entry Point

Initializes FastAPI, Socket.IO, the backend clients and the live map
view, and tears them down on shutdown.
"""

import logging
import os
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import socketio
from dotenv import load_dotenv

# Load environment variables
load_dotenv()

logging.basicConfig(
    level=os.getenv("SOSMAP_LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("sosmap")

# Create Socket.IO server
sio = socketio.AsyncServer(
    async_mode='asgi',
    cors_allowed_origins='*',
    logger=False,  # Reduce noise in production
    engineio_logger=False,
    ping_interval=25,
    ping_timeout=60
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events - startup and shutdown"""

    # Startup
    logger.info("=" * 60)
    logger.info("[STARTUP] Emergency Response Live Map Engine")
    logger.info("=" * 60)

    from sosmap.config import get_config
    cfg = get_config()
    map_config = cfg.get_map_config()
    logger.info("[OK] Configuration loaded")

    # WebSocket emitter and handlers
    from sosmap.websocket import MapEventEmitter, MapSocketHandlers, set_emitter, set_handlers

    ws_emitter = MapEventEmitter(sio)
    ws_handlers = MapSocketHandlers(sio, ws_emitter)
    set_emitter(ws_emitter)
    set_handlers(ws_handlers)
    logger.info("[OK] WebSocket emitter and handlers initialized")

    # Upstream clients
    from sosmap.services import DirectionsService, GeospatialBackendClient, set_backend_client

    backend_cfg = map_config.get('backend', {})
    backend_client = GeospatialBackendClient(
        base_url=os.getenv("SOSMAP_BACKEND_URL") or backend_cfg.get('baseUrl'),
        timeout=backend_cfg.get('timeout', 10.0),
    )
    await backend_client.initialize()
    set_backend_client(backend_client)

    directions_cfg = map_config.get('directions', {})
    directions = DirectionsService(
        cache_ttl=directions_cfg.get('cacheTtl', 60),
        fallback_speed_kmh=directions_cfg.get('fallbackSpeedKmh', 40.0),
    )
    await directions.initialize()
    if not directions.is_configured:
        logger.warning("[STARTUP] MAPBOX_ACCESS_TOKEN not set, routes use straight-line estimates")
    logger.info("[OK] Backend client ready (%s)", backend_client.base_url)

    # Live feed
    from sosmap.sync import create_feed_source

    sync_cfg = map_config.get('sync', {})
    mode = os.getenv("SOSMAP_FEED_MODE") or sync_cfg.get('mode', 'poll')
    source = create_feed_source(
        mode,
        fetch=backend_client.fetch_entity_snapshot,
        url=os.getenv("SOSMAP_FEED_URL") or backend_client.base_url,
        poll_interval=sync_cfg.get('pollInterval', 5.0),
        event=sync_cfg.get('socketEvent', 'entities:batch'),
    )
    logger.info("[OK] Feed source: %s", source.name)

    # Map view
    from sosmap.render import SocketIORenderer
    from sosmap.view import MapView, set_map_view

    renderer = SocketIORenderer(ws_emitter)
    view = MapView.from_config(
        map_config,
        renderer,
        emitter=ws_emitter,
        source=source,
        directions=directions,
        stats_fetch=backend_client.fetch_zone_stats,
    )
    set_map_view(view)
    await view.start()
    logger.info("[OK] Map view started")

    logger.info("=" * 60)
    logger.info("[READY] Server ready at http://localhost:8000")
    logger.info("=" * 60)

    yield

    # Shutdown
    logger.info("[SHUTDOWN] Shutting down...")
    await view.stop()
    set_map_view(None)
    logger.info("[SHUTDOWN] Map view stopped")

    await directions.close()
    await backend_client.close()
    set_backend_client(None)
    set_handlers(None)
    set_emitter(None)
    logger.info("[SHUTDOWN] Complete")


# Create FastAPI application
app = FastAPI(
    title="SOS Live Map API",
    description="Emergency Response Live Map Engine",
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc"
)

# CORS Configuration
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:5173",  # Vite dev server
        "http://localhost:3000",  # Alternative dev server
        "http://127.0.0.1:5173",
        "http://127.0.0.1:3000",
        "*"  # Allow all for development
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ============================================
# Include API Routers
# ============================================

from sosmap.api import map_router, zone_router

# Map routes: /api/map/state, /api/map/filters, /api/map/select/*, /api/map/batches
app.include_router(map_router)

# Zone routes: /api/zones, /api/zones/stats, /api/zones/{id}/select
app.include_router(zone_router)


# ============================================
# Root Endpoints
# ============================================

@app.get("/", tags=["root"])
async def root():
    """Root endpoint - API information"""
    return {
        "name": "Emergency Response Live Map Engine",
        "version": "1.0.0",
        "status": "operational",
        "documentation": "/docs",
        "websocket": "ws://localhost:8000",
        "endpoints": {
            "map": "/api/map/*",
            "zones": "/api/zones/*",
        }
    }


@app.get("/health", tags=["health"])
async def health_check():
    """Health check endpoint"""
    from sosmap.view import get_map_view
    from sosmap.websocket import get_handlers

    handlers = get_handlers()
    view = get_map_view()
    ws_clients = handlers.get_client_count() if handlers else 0

    return {
        "status": "healthy" if view is not None else "starting",
        "timestamp": time.time(),
        "feed": view.sync.status() if view is not None and view.sync is not None else None,
        "websocket": {
            "connected_clients": ws_clients,
            "status": "ready"
        }
    }


@app.get("/ws/stats", tags=["websocket"])
async def websocket_stats():
    """Get WebSocket statistics"""
    from sosmap.websocket import get_emitter, get_handlers

    emitter = get_emitter()
    handlers = get_handlers()

    return {
        "emitter": emitter.get_stats() if emitter else None,
        "clients": {
            "count": handlers.get_client_count() if handlers else 0,
            "connected": list(handlers.get_connected_clients().keys()) if handlers else []
        },
        "timestamp": time.time()
    }


# ============================================
# Create Socket.IO ASGI app
# ============================================

sio_app = socketio.ASGIApp(sio, app)


# ============================================
# WebSocket Event Reference (handled by MapSocketHandlers)
# ============================================
#
# Server -> Client Events:
#   - connection:success : Connection established
#   - map:state          : Full view snapshot (sent on connect)
#   - map:render         : Ordered render commands
#   - camera:animate     : Camera flight phase changed
#   - feed:status        : Live feed state / degraded flag
#   - zone:stats         : Selected zone stats and trends
#   - request:error      : A client request was rejected
#
# Client -> Server Events:
#   - marker:select      : Select a marker, fly to it
#   - marker:deselect    : Clear the selection
#   - zone:select        : Select a zone
#   - zone:clear         : Deselect the zone
#   - zone:refresh       : Refresh zone stats now
#   - filters:update     : Toggle layers
#   - viewport:update    : Report camera state


# ============================================
# Entry Point
# ============================================

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "sosmap.main:sio_app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        log_level="info"
    )
