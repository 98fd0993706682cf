import asyncio
import json
import logging
from datetime import date, datetime, timezone
from pathlib import Path
from typing import AsyncIterator

from fastapi import APIRouter, BackgroundTasks, HTTPException, Request, WebSocket
from fastapi.responses import HTMLResponse, PlainTextResponse
from fastapi.templating import Jinja2Templates
from prometheus_client import CONTENT_TYPE_LATEST, Gauge, generate_latest
from pydantic import BaseModel
from starlette.websockets import WebSocketDisconnect

from cinefind.activity import SessionTracker
from cinefind.config import settings
from cinefind.database import DocumentNotFound, db
from cinefind.models import (
    ContentCategory,
    ContentItem,
    NewContentItem,
    PushTokenUpdate,
    User,
    UserSession,
)
from cinefind.notifier import notifier
from cinefind.recommend import rank_suggestions
from cinefind.suggest import suggest_movie_action
from cinefind.youtube_client import get_embed_url, youtube_client

logger = logging.getLogger(__name__)

router = APIRouter()

templates_dir = Path(__file__).parent / "templates"
templates = Jinja2Templates(directory=templates_dir)

OPEN_SESSIONS = Gauge("cinefind_open_sessions", "Activity sessions without an end time")
CATALOG_SIZE = Gauge("cinefind_catalog_items", "Items in the catalog")
ACTIVITY_SOCKETS = Gauge("cinefind_activity_sockets", "Connected activity tracking pages")


def format_clock(seconds: int | None) -> str:
    """Format seconds as HH:MM:SS."""
    seconds = int(seconds or 0)
    hours = seconds // 3600
    minutes = (seconds % 3600) // 60
    return f"{hours:02d}:{minutes:02d}:{seconds % 60:02d}"


def format_views(value: str | None) -> str:
    """Format a raw view count as 1.2K / 3.4M."""
    if not value:
        return ""
    try:
        count = int(value)
    except ValueError:
        return value
    if count >= 1_000_000:
        return f"{count / 1_000_000:.1f}M views"
    if count >= 1_000:
        return f"{count / 1_000:.1f}K views"
    return f"{count} views"


templates.env.filters["clock"] = format_clock
templates.env.filters["views"] = format_views


class UserIn(BaseModel):
    id: str
    name: str


def _parse_day(value: str | None) -> date:
    if not value:
        return datetime.now(timezone.utc).date()
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Invalid date: {value}")


def _parse_category(value: str | None) -> ContentCategory | None:
    if not value or value == "all":
        return None
    try:
        return ContentCategory(value)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Unknown category: {value}")


async def _suggestions_for(item: ContentItem) -> list[ContentItem]:
    catalog = await db.list_content(order_by="votes")
    catalog = await youtube_client.enrich(catalog)
    # Short clips are not suggested next to a full video
    catalog = [
        c
        for c in catalog
        if c.duration is None or c.duration > settings.suggestion_min_duration_seconds
    ]
    return rank_suggestions(item, catalog)


async def _get_item_or_404(content_id: str) -> ContentItem:
    item = await db.get_content(content_id)
    if not item:
        raise HTTPException(status_code=404, detail="Video not found.")
    return item


# Pages


@router.get("/", response_class=HTMLResponse)
async def index(request: Request, q: str | None = None, category: str | None = None):
    """Catalog page, newest first."""
    selected = _parse_category(category)
    items = await db.list_content(category=selected, search=q)
    items = await youtube_client.enrich(items)
    return templates.TemplateResponse(
        request,
        "index.html",
        {
            "request": request,
            "items": items,
            "query": q or "",
            "categories": list(ContentCategory),
            "selected_category": selected.value if selected else "all",
            "heading": "Latest videos",
        },
    )


@router.get("/tv-channels", response_class=HTMLResponse)
async def tv_channels(request: Request, q: str | None = None):
    """TV channel links."""
    items = await db.list_content(category=ContentCategory.TV_CHANNEL, search=q)
    items = await youtube_client.enrich(items)
    return templates.TemplateResponse(
        request,
        "index.html",
        {
            "request": request,
            "items": items,
            "query": q or "",
            "categories": [],
            "selected_category": ContentCategory.TV_CHANNEL.value,
            "heading": "TV channels",
        },
    )


@router.get("/watch", response_class=HTMLResponse)
async def watch(request: Request, v: str | None = None):
    """Player page with suggestions."""
    item = await db.get_content(v) if v else None
    if not item:
        return templates.TemplateResponse(
            request, "not_found.html", {"request": request}, status_code=404
        )
    [item] = await youtube_client.enrich([item])
    return templates.TemplateResponse(
        request,
        "watch.html",
        {
            "request": request,
            "item": item,
            "embed_url": get_embed_url(item.url),
            "episodes": [
                {"title": e.title, "url": e.url, "embed_url": get_embed_url(e.url)}
                for e in item.episodes
            ],
            "suggestions": await _suggestions_for(item),
        },
    )


@router.get("/admin/activity", response_class=HTMLResponse)
async def admin_activity(request: Request, user_id: str | None = None, date: str | None = None):
    """Time spent by one user on one day."""
    day = _parse_day(date)
    users = await db.list_users()
    sessions = await db.get_user_sessions(user_id, day) if user_id else []
    selected = next((u for u in users if u.id == user_id), None)
    return templates.TemplateResponse(
        request,
        "activity.html",
        {
            "request": request,
            "users": users,
            "selected_user": selected,
            "selected_user_id": user_id or "",
            "day": day,
            "sessions": sessions,
            "total_seconds": sum(s.duration_seconds or 0 for s in sessions),
        },
    )


# JSON API


@router.get("/api/content", response_model=list[ContentItem])
async def list_content(q: str | None = None, category: str | None = None):
    return await db.list_content(category=_parse_category(category), search=q)


@router.post("/api/content", response_model=ContentItem, status_code=201)
async def add_content(new_item: NewContentItem, background_tasks: BackgroundTasks):
    """Add a video and notify subscribed devices."""
    item = await db.create_content(new_item)
    logger.info(f"Content added: {item.title} ({item.category.value})")
    background_tasks.add_task(notifier.notify_new_content, item)
    return item


@router.get("/api/content/{content_id}", response_model=ContentItem)
async def get_content(content_id: str):
    return await _get_item_or_404(content_id)


@router.post("/api/content/{content_id}/vote")
async def vote(content_id: str):
    try:
        votes = await db.increment_votes(content_id)
    except DocumentNotFound:
        raise HTTPException(status_code=404, detail="Video not found.")
    return {"id": content_id, "votes": votes}


@router.get("/api/content/{content_id}/suggestions", response_model=list[ContentItem])
async def suggestions(content_id: str):
    item = await _get_item_or_404(content_id)
    return await _suggestions_for(item)


@router.get("/api/shorts")
async def shorts(q: str = "shorts", page_token: str | None = None):
    videos, next_page_token = await youtube_client.search_shorts(q, page_token)
    return {
        "videos": [v.model_dump(mode="json") for v in videos],
        "next_page_token": next_page_token,
    }


@router.post("/api/suggest")
async def suggest(request: Request):
    """Suggest a movie from a free-text description."""
    try:
        values = await request.json()
    except ValueError:
        values = {}
    return await suggest_movie_action(values if isinstance(values, dict) else {})


@router.post("/api/users", response_model=User, status_code=201)
async def create_user(user: UserIn):
    return await db.upsert_user(user.id, user.name)


@router.post("/api/users/{user_id}/push-token", status_code=204)
async def register_push_token(user_id: str, update: PushTokenUpdate):
    try:
        await db.set_push_token(user_id, update.token)
    except DocumentNotFound:
        raise HTTPException(status_code=404, detail="User not found.")


@router.get("/api/users/{user_id}/sessions", response_model=list[UserSession])
async def user_sessions(user_id: str, date: str | None = None):
    return await db.get_user_sessions(user_id, _parse_day(date))


# WebSockets


def _tracker_status(tracker: SessionTracker) -> dict:
    return {
        "state": tracker.state.value,
        "session_id": tracker.session_id,
        "user_id": tracker.user_id,
    }


@router.websocket("/ws/activity")
async def activity_socket(websocket: WebSocket, user_id: str | None = None):
    """Track one page instance.

    The page sends {"type": "visibility", "state": "visible" | "hidden"},
    {"type": "identity", "user_id": ...} and {"type": "unload"}. Each message
    is answered with the tracker status. Disconnecting counts as an unload.
    """
    await websocket.accept()
    tracker = SessionTracker(db, user_id=user_id or None)
    ACTIVITY_SOCKETS.inc()
    try:
        await tracker.start()
        await websocket.send_json(_tracker_status(tracker))
        while True:
            received = await websocket.receive()
            if received["type"] == "websocket.disconnect":
                break
            raw = received.get("text")
            if raw is None:
                await websocket.send_json({"error": "invalid message"})
                continue
            try:
                message = json.loads(raw)
            except json.JSONDecodeError:
                await websocket.send_json({"error": "invalid json"})
                continue
            if not isinstance(message, dict):
                await websocket.send_json({"error": "invalid message"})
                continue

            message_type = message.get("type")
            if message_type == "visibility":
                await tracker.visibility_changed(message.get("state") != "hidden")
            elif message_type == "identity":
                await tracker.set_user(message.get("user_id") or None)
            elif message_type == "unload":
                await tracker.unload()
            else:
                await websocket.send_json({"error": f"unknown message type: {message_type}"})
                continue
            await websocket.send_json(_tracker_status(tracker))
    except WebSocketDisconnect:
        pass
    finally:
        await tracker.unload()
        ACTIVITY_SOCKETS.dec()


async def _stream_snapshots(
    websocket: WebSocket,
    snapshots: AsyncIterator[list[BaseModel]],
) -> None:
    """Push every snapshot to the socket until the client goes away."""

    async def forward() -> None:
        async for snapshot in snapshots:
            await websocket.send_json([doc.model_dump(mode="json") for doc in snapshot])

    sender = asyncio.create_task(forward())
    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break
    finally:
        sender.cancel()
        try:
            await sender
        except (asyncio.CancelledError, WebSocketDisconnect, RuntimeError):
            pass


@router.websocket("/ws/catalog")
async def catalog_socket(websocket: WebSocket, category: str | None = None, q: str | None = None):
    try:
        selected = _parse_category(category)
    except HTTPException as e:
        await websocket.close(code=1008, reason=e.detail)
        return
    await websocket.accept()
    await _stream_snapshots(websocket, db.watch_content(category=selected, search=q))


@router.websocket("/ws/admin/sessions")
async def sessions_socket(websocket: WebSocket, user_id: str, date: str | None = None):
    try:
        day = _parse_day(date)
    except HTTPException as e:
        await websocket.close(code=1008, reason=e.detail)
        return
    await websocket.accept()
    await _stream_snapshots(websocket, db.watch_user_sessions(user_id, day))


# Operations


@router.get("/health")
async def health():
    """Basic health check."""
    try:
        _ = db.conn
        db_connected = True
    except RuntimeError:
        db_connected = False
    return {
        "status": "ok",
        "db_connected": db_connected,
        "youtube_configured": bool(settings.youtube_api_key),
        "push_configured": settings.push_configured,
    }


@router.get("/metrics")
async def metrics():
    """Prometheus metrics endpoint."""
    OPEN_SESSIONS.set(await db.count_open_sessions())
    CATALOG_SIZE.set(await db.count_content())
    return PlainTextResponse(generate_latest(), media_type=CONTENT_TYPE_LATEST)
