"""FastAPI routes for the hachart hub REST API."""

import json
import logging
import os
import sys
import time
from typing import Any

from fastapi import (
    APIRouter,
    Depends,
    FastAPI,
    HTTPException,
    Request,
    Security,
    WebSocket,
    WebSocketDisconnect,
)
from fastapi.responses import JSONResponse
from fastapi.security import APIKeyHeader
from pydantic import BaseModel, Field

from hachart.engine.models import RenderError
from hachart.engine.store import StatesSnapshot
from hachart.hub.core import ChartHub

logger = logging.getLogger(__name__)

# --- Optional API key authentication ---
_api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)
_HACHART_API_KEY = os.environ.get("HACHART_API_KEY")


async def verify_api_key(key: str = Security(_api_key_header)):
    """Verify API key if HACHART_API_KEY is configured, otherwise allow all."""
    if _HACHART_API_KEY and key != _HACHART_API_KEY:
        raise HTTPException(status_code=403, detail="Invalid API key")


# --- Pydantic request models ---
class ResolveRequest(BaseModel):
    option: Any


class CardConfig(BaseModel):
    option: Any
    height: str = "300px"
    renderer: str = "canvas"
    debug: bool | dict[str, Any] | None = None


class StatesPush(BaseModel):
    states: list[dict[str, Any]]
    dark_mode: bool = False


class StateChanged(BaseModel):
    entity_id: str
    new_state: dict[str, Any] | None = Field(default=None)


class WebSocketManager:
    """Manages WebSocket connections and broadcasts."""

    def __init__(self):
        self.active_connections: set[WebSocket] = set()

    async def connect(self, websocket: WebSocket):
        await websocket.accept()
        self.active_connections.add(websocket)
        logger.info("WebSocket connected. Total connections: %d", len(self.active_connections))

    def disconnect(self, websocket: WebSocket):
        self.active_connections.discard(websocket)
        logger.info("WebSocket disconnected. Total connections: %d", len(self.active_connections))

    async def broadcast(self, message: dict[str, Any]):
        """Broadcast message to all connected WebSockets."""
        disconnected = set()

        for connection in self.active_connections:
            try:
                await connection.send_json(message)
            except Exception as e:
                logger.error("Error broadcasting to WebSocket: %s", e)
                disconnected.add(connection)

        for conn in disconnected:
            self.disconnect(conn)


def _register_utility_routes(router: APIRouter, hub: ChartHub, ws_manager: WebSocketManager) -> None:
    """Register version and cache introspection endpoints."""
    from hachart import __version__

    @router.get("/api/version")
    async def get_version():
        return {
            "version": __version__,
            "package": "hachart",
            "python": f"{sys.version_info.major}.{sys.version_info.minor}.{sys.version_info.micro}",
        }

    @router.get("/api/cache")
    async def get_cache_stats():
        """Sizes of the shared history and statistics caches."""
        return {**hub.cache_stats(), "websocket_clients": len(ws_manager.active_connections)}

    @router.delete("/api/cache")
    async def clear_cache():
        hub.history_cache.clear()
        hub.statistics_cache.clear()
        return {"status": "ok", "cleared": True}


def _register_resolve_routes(router: APIRouter, hub: ChartHub) -> None:
    """One-off resolution of an option tree."""

    @router.post("/api/resolve")
    async def resolve_option(body: ResolveRequest):
        """Resolve generators in ``option`` against the current states.

        Request body:
        {
            "option": {...}  // ECharts option with $entity/$data/$history/$statistics nodes
        }
        """
        try:
            result = await hub.resolve(body.option)
        except Exception:
            logger.exception("Error resolving option")
            raise HTTPException(status_code=500, detail="Internal server error") from None
        return {
            "option": result.option,
            "watched_entities": sorted(result.watched_entities),
            "warnings": result.warnings,
        }


def _register_card_routes(router: APIRouter, hub: ChartHub) -> None:
    """Card registration and status endpoints."""

    @router.get("/api/cards")
    async def list_cards():
        return {"cards": sorted(hub.cards), "count": len(hub.cards)}

    @router.put("/api/cards/{card_id}")
    async def put_card(card_id: str, body: CardConfig):
        """Create or replace a card; the first apply runs immediately."""
        config = {"option": body.option, "height": body.height, "renderer": body.renderer}
        if body.debug is not None:
            config["debug"] = body.debug
        try:
            card = await hub.register_card(card_id, config)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e)) from None
        return card.status()

    @router.get("/api/cards/{card_id}")
    async def get_card(card_id: str):
        card = hub.cards.get(card_id)
        if card is None:
            raise HTTPException(status_code=404, detail=f"Card '{card_id}' not found")
        return card.status()

    @router.post("/api/cards/{card_id}/refresh")
    async def refresh_card(card_id: str):
        """Force a re-resolve, bypassing the change gate and throttle."""
        card = hub.cards.get(card_id)
        if card is None:
            raise HTTPException(status_code=404, detail=f"Card '{card_id}' not found")
        try:
            await card.apply_option(hub.store)
        except RenderError as e:
            raise HTTPException(status_code=502, detail=f"Render failed: {e}") from None
        except Exception:
            logger.exception("Error refreshing card '%s'", card_id)
            raise HTTPException(status_code=500, detail="Internal server error") from None
        return card.status()

    @router.delete("/api/cards/{card_id}")
    async def delete_card(card_id: str):
        if not hub.unregister_card(card_id):
            raise HTTPException(status_code=404, detail=f"Card '{card_id}' not found")
        return {"status": "ok", "card_id": card_id, "deleted": True}


def _register_state_routes(router: APIRouter, hub: ChartHub) -> None:
    """Push states into the hub when it is not connected to HA directly."""

    @router.get("/api/states/{entity_id}")
    async def get_state(entity_id: str):
        st = hub.store.lookup(entity_id)
        if st is None:
            raise HTTPException(status_code=404, detail=f"Entity '{entity_id}' not found")
        return {
            "entity_id": st.entity_id,
            "state": st.state,
            "attributes": st.attributes,
            "last_changed": st.last_changed,
            "last_updated": st.last_updated,
        }

    @router.post("/api/states")
    async def push_states(body: StatesPush):
        """Replace the whole states snapshot."""
        await hub.update_states(StatesSnapshot.from_states_payload(body.states, dark_mode=body.dark_mode))
        return {"status": "ok", "entities": len(hub.store)}

    @router.post("/api/states/changed")
    async def push_state_changed(body: StateChanged):
        """Apply one ``state_changed`` event; ``new_state: null`` removes the entity."""
        await hub.apply_state_changed(body.model_dump())
        return {"status": "ok", "entities": len(hub.store)}


def create_api(hub: ChartHub) -> FastAPI:
    """Create FastAPI application with hub routes.

    Args:
        hub: ChartHub instance

    Returns:
        FastAPI application
    """
    from hachart import __version__

    app = FastAPI(
        title="hachart",
        description="REST API for hachart: Home Assistant data bound ECharts options",
        version=__version__,
    )

    ws_manager = WebSocketManager()

    # --- Request timing middleware ---
    @app.middleware("http")
    async def request_timing_middleware(request: Request, call_next):
        hub._request_count += 1
        start = time.monotonic()
        response = await call_next(request)
        elapsed = time.monotonic() - start
        if elapsed > 1.0:
            logger.warning("%s %s took %.2fs", request.method, request.url.path, elapsed)
        else:
            logger.debug("%s %s took %.3fs", request.method, request.url.path, elapsed)
        return response

    # Subscribe to hub events for WebSocket broadcasting
    async def broadcast_card_update(data: dict[str, Any]):
        await ws_manager.broadcast({"type": "card_updated", "data": data})

    hub.subscribe("card_updated", broadcast_card_update)

    # Authenticated router: all /api/* routes require API key when configured
    router = APIRouter(dependencies=[Depends(verify_api_key)])

    # Health check (unauthenticated, used by for uptime monitors)
    @app.get("/")
    async def root():
        return {"status": "ok", "service": "hachart"}

    @app.get("/health")
    async def health():
        """Detailed health check with card status and uptime."""
        try:
            health_data = await hub.health_check()
            return JSONResponse(content=health_data)
        except Exception:
            logger.exception("Health check failed")
            return JSONResponse(status_code=500, content={"status": "error", "error": "Health check failed"})

    _register_utility_routes(router, hub, ws_manager)
    _register_resolve_routes(router, hub)
    _register_card_routes(router, hub)
    _register_state_routes(router, hub)

    # WebSocket endpoint (auth handled inline; router dependencies
    # don't apply to websocket routes on the main app)
    @app.websocket("/ws")
    async def websocket_endpoint(websocket: WebSocket):
        """Pushes ``card_updated`` events to dashboards."""
        if _HACHART_API_KEY:
            token = websocket.query_params.get("token")
            if token != _HACHART_API_KEY:
                await websocket.close(code=4003)
                return

        await ws_manager.connect(websocket)

        try:
            await websocket.send_json({"type": "connected", "message": "Connected to hachart"})

            while True:
                try:
                    data = await websocket.receive_text()
                    message = json.loads(data)

                    if message.get("type") == "ping":
                        await websocket.send_json({"type": "pong"})
                    else:
                        logger.debug("Received WebSocket message: %s", message)

                except WebSocketDisconnect:
                    break
                except json.JSONDecodeError:
                    await websocket.send_json({"type": "error", "message": "Invalid JSON"})
                except Exception as e:
                    logger.error("WebSocket error: %s", e)
                    break

        finally:
            ws_manager.disconnect(websocket)

    app.include_router(router)

    return app
