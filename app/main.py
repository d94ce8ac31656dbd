"""Entry point for the FastAPI-powered catalog browsing service."""

from __future__ import annotations

import asyncio
import json
import logging
from contextlib import AsyncExitStack, asynccontextmanager, suppress
from typing import Any

import httpx
from fastapi import FastAPI, HTTPException, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware

from .config import settings
from .database import Database
from .models import BrowseRequest, DomainItem
from .results import Error, Success, first_settled, to_payload
from .services.catalog_client import CatalogClient, CatalogClientError
from .services.content_filter import project_stream
from .services.page_cursor import Delivery, PageCursor
from .services.page_store import PageStore, SqlPageStore
from .services.page_sync import PageSyncCoordinator

logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)

app: FastAPI


@asynccontextmanager
async def lifespan(fastapi_app: FastAPI):
    exit_stack = AsyncExitStack()
    http_client = await exit_stack.enter_async_context(
        httpx.AsyncClient(
            base_url=str(settings.catalog_api_url),
            timeout=httpx.Timeout(settings.http_timeout_seconds, connect=10.0),
        )
    )
    database = Database(settings.database_url)
    await database.create_all()

    catalog_client = CatalogClient(settings, http_client)
    page_store = SqlPageStore(database.session_factory)
    coordinator = PageSyncCoordinator(
        catalog_client, page_store, default_fields=settings.catalog_fields
    )

    fastapi_app.state.catalog_client = catalog_client
    fastapi_app.state.page_store = page_store
    fastapi_app.state.coordinator = coordinator
    fastapi_app.state.database = database

    try:
        yield
    finally:  # pragma: no cover - teardown path exercised at runtime
        await coordinator.stop()
        await database.dispose()
        await exit_stack.aclose()


def create_app() -> FastAPI:
    fastapi_app = FastAPI(
        title=settings.app_name,
        description="Paginated, cached catalog browsing with maturity filtering",
        version="1.0.0",
        lifespan=lifespan,
    )

    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET"],
        allow_headers=["*"],
    )

    register_routes(fastapi_app)
    return fastapi_app


def get_coordinator(app: FastAPI) -> PageSyncCoordinator:
    coordinator = getattr(app.state, "coordinator", None)
    if not isinstance(coordinator, PageSyncCoordinator):
        raise RuntimeError("Page sync coordinator not initialised")
    return coordinator


def get_page_store(app: FastAPI) -> PageStore:
    store = getattr(app.state, "page_store", None)
    if store is None:
        raise RuntimeError("Page store not initialised")
    return store


def get_catalog_client(app: FastAPI) -> CatalogClient:
    client = getattr(app.state, "catalog_client", None)
    if client is None:
        raise RuntimeError("Catalog client not initialised")
    return client


def _parse_filters(raw: str | None) -> list[Any]:
    if raw is None or not raw.strip():
        return []
    try:
        filters = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ValueError("filters must be a JSON array") from exc
    if not isinstance(filters, list):
        raise ValueError("filters must be a JSON array")
    return filters


def _ensure_page_in_range(page: int) -> None:
    if page < settings.initial_page or page > settings.last_page:
        raise HTTPException(
            status_code=404,
            detail=(
                f"Page {page} is outside the browsable range "
                f"{settings.initial_page}-{settings.last_page}"
            ),
        )


def register_routes(fastapi_app: FastAPI) -> None:
    @fastapi_app.get("/healthz")
    async def healthcheck() -> dict[str, str]:
        return {"status": "ok"}

    @fastapi_app.get("/pages/{page}")
    async def page_endpoint(
        page: int, fields: str | None = None, filters: str | None = None
    ) -> dict[str, Any]:
        _ensure_page_in_range(page)
        try:
            filter_spec = _parse_filters(filters)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc

        coordinator = get_coordinator(fastapi_app)
        result = await first_settled(
            project_stream(
                coordinator.request_page(page, fields=fields, filters=filter_spec),
                settings.explicit_threshold,
            )
        )
        match result:
            case Success():
                return {"page": page, **to_payload(result)}
            case Error(message=message):
                raise HTTPException(status_code=502, detail=message)
        raise HTTPException(status_code=500, detail="Page did not settle")

    @fastapi_app.get("/items/{item_id}")
    async def item_endpoint(item_id: str) -> dict[str, Any]:
        store = get_page_store(fastapi_app)
        threshold = settings.explicit_threshold

        cached = await store.get_item(item_id)
        if cached is not None:
            if cached.explicit >= threshold:
                raise HTTPException(status_code=404, detail="Item not found")
            return {"source": "cache", "item": cached.to_domain().to_payload()}

        client = get_catalog_client(fastapi_app)
        try:
            remote = await client.fetch_item(item_id)
        except CatalogClientError as exc:
            raise HTTPException(status_code=502, detail=exc.message) from exc
        if remote is None or remote.image.explicit >= threshold:
            raise HTTPException(status_code=404, detail="Item not found")
        return {
            "source": "remote",
            "item": DomainItem.from_catalog_item(remote).to_payload(),
        }

    @fastapi_app.websocket("/ws/browse")
    async def browse_socket(websocket: WebSocket) -> None:
        await websocket.accept()
        queue: asyncio.Queue[Delivery] = asyncio.Queue()
        cursor = PageCursor(
            get_coordinator(fastapi_app),
            queue.put_nowait,
            explicit_threshold=settings.explicit_threshold,
        )

        async def _forward() -> None:
            while True:
                delivery = await queue.get()
                if delivery.generation != cursor.generation:
                    continue
                await websocket.send_json(
                    {
                        "page": delivery.page,
                        "generation": delivery.generation,
                        **to_payload(delivery.result),
                    }
                )

        forwarder = asyncio.create_task(_forward())
        try:
            while True:
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    raise WebSocketDisconnect(message.get("code", 1000))
                try:
                    text = message.get("text")
                    if text is None:
                        raise ValueError("Browse requests must be sent as JSON text frames")
                    request = BrowseRequest.model_validate_json(text)
                except ValueError as exc:
                    await websocket.send_json({"status": "invalid", "message": str(exc)})
                    continue
                if not settings.initial_page <= request.page <= settings.last_page:
                    await websocket.send_json(
                        {
                            "status": "invalid",
                            "message": f"Page {request.page} is outside the browsable range",
                        }
                    )
                    continue
                cursor.select(
                    request.page, fields=request.fields, filters=request.filters
                )
        except WebSocketDisconnect:
            logger.debug("Browse socket disconnected at generation %s", cursor.generation)
        finally:
            await cursor.close()
            forwarder.cancel()
            with suppress(asyncio.CancelledError):
                await forwarder


app = create_app()


if __name__ == "__main__":  # pragma: no cover - manual execution
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host=settings.server_host,
        port=settings.server_port,
        reload=settings.environment == "development",
    )
