import asyncio
import json
import uuid
from datetime import date, datetime, time, timedelta, timezone
from pathlib import Path
from typing import AsyncIterator, Awaitable, Callable, Optional, TypeVar

import aiosqlite

from .config import settings
from .models import ContentCategory, ContentItem, Episode, NewContentItem, User, UserSession

CONTENT = "content_items"
SESSIONS = "user_sessions"
USERS = "users"

T = TypeVar("T")


class DocumentNotFound(KeyError):
    """Raised when an update targets a document id that does not exist."""


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _day_bounds(day: date) -> tuple[str, str]:
    start = datetime.combine(day, time.min, tzinfo=timezone.utc)
    end = start + timedelta(days=1)
    return start.isoformat(), end.isoformat()


class Database:
    def __init__(self, db_path: Optional[Path] = None):
        self.db_path = db_path or settings.database_path_resolved
        self._connection: Optional[aiosqlite.Connection] = None
        self._watchers: dict[str, set[asyncio.Event]] = {}

    async def connect(self) -> None:
        """Connect to the database and create tables if needed."""
        self._connection = await aiosqlite.connect(self.db_path)
        self._connection.row_factory = aiosqlite.Row
        await self._create_tables()

    async def close(self) -> None:
        """Close the database connection."""
        if self._connection:
            await self._connection.close()
            self._connection = None

    @property
    def conn(self) -> aiosqlite.Connection:
        if not self._connection:
            raise RuntimeError("Database not connected")
        return self._connection

    async def _create_tables(self) -> None:
        """Create database tables if they don't exist."""
        await self.conn.execute(f"""
            CREATE TABLE IF NOT EXISTS {CONTENT} (
                id TEXT PRIMARY KEY,
                title TEXT,
                category TEXT NOT NULL,
                url TEXT,
                episodes TEXT DEFAULT '[]',
                votes INTEGER DEFAULT 0,
                thumbnail_url TEXT,
                created_at TIMESTAMP
            )
        """)
        await self.conn.execute(f"""
            CREATE TABLE IF NOT EXISTS {SESSIONS} (
                id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL,
                started_at TIMESTAMP NOT NULL,
                ended_at TIMESTAMP,
                duration_seconds INTEGER
            )
        """)
        await self.conn.execute(f"""
            CREATE TABLE IF NOT EXISTS {USERS} (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                fcm_token TEXT
            )
        """)
        await self.conn.execute(
            f"CREATE INDEX IF NOT EXISTS idx_content_created ON {CONTENT}(created_at)"
        )
        await self.conn.execute(
            f"CREATE INDEX IF NOT EXISTS idx_content_category ON {CONTENT}(category)"
        )
        await self.conn.execute(
            f"CREATE INDEX IF NOT EXISTS idx_sessions_user_start ON {SESSIONS}(user_id, started_at)"
        )
        await self.conn.commit()

    # Change feed

    def _notify(self, collection: str) -> None:
        for changed in self._watchers.get(collection, ()):
            changed.set()

    async def subscribe(
        self, collection: str, fetch: Callable[[], Awaitable[T]]
    ) -> AsyncIterator[T]:
        """Yield a full snapshot now and again after every change to a collection.

        Changes that land while a snapshot is being read trigger another
        snapshot, so the last one delivered always reflects the latest state.
        Bursts of changes between two reads collapse into one snapshot.
        """
        changed = asyncio.Event()
        self._watchers.setdefault(collection, set()).add(changed)
        try:
            while True:
                changed.clear()
                yield await fetch()
                await changed.wait()
        finally:
            self._watchers[collection].discard(changed)

    def watch_content(
        self,
        category: Optional[ContentCategory] = None,
        search: Optional[str] = None,
    ) -> AsyncIterator[list[ContentItem]]:
        """Subscribe to the catalog, newest first."""
        return self.subscribe(
            CONTENT, lambda: self.list_content(category=category, search=search)
        )

    def watch_user_sessions(self, user_id: str, day: date) -> AsyncIterator[list[UserSession]]:
        """Subscribe to one user's sessions started on the given day."""
        return self.subscribe(SESSIONS, lambda: self.get_user_sessions(user_id, day))

    # Content

    async def create_content(self, item: NewContentItem) -> ContentItem:
        """Add a catalog entry and return it with its generated id."""
        content = ContentItem(
            id=uuid.uuid4().hex,
            title=item.title,
            category=item.category,
            url=item.url,
            episodes=item.episodes,
            votes=0,
            thumbnail_url=item.thumbnail_url,
            created_at=_now(),
        )
        await self.conn.execute(
            f"""
            INSERT INTO {CONTENT} (id, title, category, url, episodes, votes,
                                   thumbnail_url, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                content.id,
                content.title,
                content.category.value,
                content.url,
                json.dumps([e.model_dump() for e in content.episodes]),
                content.votes,
                content.thumbnail_url,
                content.created_at.isoformat(),
            ),
        )
        await self.conn.commit()
        self._notify(CONTENT)
        return content

    async def get_content(self, content_id: str) -> Optional[ContentItem]:
        cursor = await self.conn.execute(f"SELECT * FROM {CONTENT} WHERE id = ?", (content_id,))
        row = await cursor.fetchone()
        if row:
            return self._row_to_content(row)
        return None

    async def list_content(
        self,
        category: Optional[ContentCategory] = None,
        search: Optional[str] = None,
        order_by: str = "created_at",
        limit: Optional[int] = None,
    ) -> list[ContentItem]:
        """List catalog entries, newest first or by popularity."""
        if order_by not in ("created_at", "votes"):
            raise ValueError(f"Unsupported order: {order_by}")
        clauses = []
        params: list = []
        if category:
            clauses.append("category = ?")
            params.append(ContentCategory(category).value)
        if search:
            clauses.append("LOWER(title) LIKE ?")
            params.append(f"%{search.lower()}%")
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        limit_clause = ""
        if limit is not None:
            limit_clause = "LIMIT ?"
            params.append(limit)
        cursor = await self.conn.execute(
            f"""
            SELECT * FROM {CONTENT}
            {where}
            ORDER BY {order_by} DESC, rowid DESC
            {limit_clause}
            """,
            params,
        )
        rows = await cursor.fetchall()
        return [self._row_to_content(row) for row in rows]

    async def content_exists(self, title: str, url: Optional[str]) -> bool:
        """Check for an entry with the same link, or the same title when there is no link."""
        if url:
            cursor = await self.conn.execute(f"SELECT 1 FROM {CONTENT} WHERE url = ?", (url,))
        else:
            cursor = await self.conn.execute(
                f"SELECT 1 FROM {CONTENT} WHERE url IS NULL AND title = ?", (title,)
            )
        return await cursor.fetchone() is not None

    async def count_content(self) -> int:
        cursor = await self.conn.execute(f"SELECT COUNT(*) as count FROM {CONTENT}")
        row = await cursor.fetchone()
        return row["count"]

    async def increment_votes(self, content_id: str, by: int = 1) -> int:
        """Raise the popularity score of an item. Scores only ever go up."""
        if by < 1:
            raise ValueError("Votes can only be incremented")
        cursor = await self.conn.execute(
            f"UPDATE {CONTENT} SET votes = votes + ? WHERE id = ?",
            (by, content_id),
        )
        if cursor.rowcount == 0:
            raise DocumentNotFound(content_id)
        await self.conn.commit()
        self._notify(CONTENT)
        cursor = await self.conn.execute(
            f"SELECT votes FROM {CONTENT} WHERE id = ?", (content_id,)
        )
        row = await cursor.fetchone()
        return row["votes"]

    # Sessions

    async def create_session(self, user_id: str) -> UserSession:
        """Open a session document stamped with the store's clock."""
        session = UserSession(id=uuid.uuid4().hex, user_id=user_id, started_at=_now())
        await self.conn.execute(
            f"INSERT INTO {SESSIONS} (id, user_id, started_at) VALUES (?, ?, ?)",
            (session.id, session.user_id, session.started_at.isoformat()),
        )
        await self.conn.commit()
        self._notify(SESSIONS)
        return session

    async def end_session(self, session_id: str, duration_seconds: int) -> None:
        """Write the end timestamp and duration of a session."""
        cursor = await self.conn.execute(
            f"""
            UPDATE {SESSIONS}
            SET ended_at = ?, duration_seconds = ?
            WHERE id = ?
            """,
            (_now().isoformat(), max(0, duration_seconds), session_id),
        )
        if cursor.rowcount == 0:
            raise DocumentNotFound(session_id)
        await self.conn.commit()
        self._notify(SESSIONS)

    async def get_session(self, session_id: str) -> Optional[UserSession]:
        cursor = await self.conn.execute(f"SELECT * FROM {SESSIONS} WHERE id = ?", (session_id,))
        row = await cursor.fetchone()
        if row:
            return self._row_to_session(row)
        return None

    async def get_user_sessions(self, user_id: str, day: date) -> list[UserSession]:
        """Get a user's sessions that started on the given (UTC) day."""
        start, end = _day_bounds(day)
        cursor = await self.conn.execute(
            f"""
            SELECT * FROM {SESSIONS}
            WHERE user_id = ? AND started_at >= ? AND started_at < ?
            ORDER BY started_at ASC
            """,
            (user_id, start, end),
        )
        rows = await cursor.fetchall()
        return [self._row_to_session(row) for row in rows]

    async def count_open_sessions(self) -> int:
        cursor = await self.conn.execute(
            f"SELECT COUNT(*) as count FROM {SESSIONS} WHERE ended_at IS NULL"
        )
        row = await cursor.fetchone()
        return row["count"]

    # Users

    async def upsert_user(self, user_id: str, name: str) -> User:
        await self.conn.execute(
            f"""
            INSERT INTO {USERS} (id, name) VALUES (?, ?)
            ON CONFLICT(id) DO UPDATE SET name = excluded.name
            """,
            (user_id, name),
        )
        await self.conn.commit()
        self._notify(USERS)
        return await self.get_user(user_id)

    async def get_user(self, user_id: str) -> Optional[User]:
        cursor = await self.conn.execute(f"SELECT * FROM {USERS} WHERE id = ?", (user_id,))
        row = await cursor.fetchone()
        if row:
            return User(id=row["id"], name=row["name"], fcm_token=row["fcm_token"])
        return None

    async def list_users(self) -> list[User]:
        cursor = await self.conn.execute(f"SELECT * FROM {USERS} ORDER BY name ASC")
        rows = await cursor.fetchall()
        return [User(id=r["id"], name=r["name"], fcm_token=r["fcm_token"]) for r in rows]

    async def set_push_token(self, user_id: str, token: str) -> None:
        cursor = await self.conn.execute(
            f"UPDATE {USERS} SET fcm_token = ? WHERE id = ?", (token, user_id)
        )
        if cursor.rowcount == 0:
            raise DocumentNotFound(user_id)
        await self.conn.commit()
        self._notify(USERS)

    async def get_push_recipients(self) -> list[User]:
        """Get users that registered a push token."""
        cursor = await self.conn.execute(
            f"SELECT * FROM {USERS} WHERE fcm_token IS NOT NULL AND fcm_token != ''"
        )
        rows = await cursor.fetchall()
        return [User(id=r["id"], name=r["name"], fcm_token=r["fcm_token"]) for r in rows]

    def _row_to_content(self, row: aiosqlite.Row) -> ContentItem:
        """Convert a database row to a ContentItem model."""
        episodes = json.loads(row["episodes"] or "[]")
        return ContentItem(
            id=row["id"],
            title=row["title"] or "",
            category=ContentCategory(row["category"]),
            url=row["url"],
            episodes=[Episode(**e) for e in episodes],
            votes=row["votes"] or 0,
            thumbnail_url=row["thumbnail_url"],
            created_at=datetime.fromisoformat(row["created_at"]),
        )

    def _row_to_session(self, row: aiosqlite.Row) -> UserSession:
        return UserSession(
            id=row["id"],
            user_id=row["user_id"],
            started_at=datetime.fromisoformat(row["started_at"]),
            ended_at=(datetime.fromisoformat(row["ended_at"]) if row["ended_at"] else None),
            duration_seconds=row["duration_seconds"],
        )


# Global database instance
db = Database()
