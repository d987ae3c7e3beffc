import sqlite3
import aiosqlite
import datetime
import json
import uuid
from contextlib import contextmanager, asynccontextmanager
from typing import List, Tuple, Optional


def _utc_now() -> str:
    return datetime.datetime.now(datetime.timezone.utc).isoformat()


class Database:
    """Provides SQLite connection management and schema initialization."""

    _TABLE_DEFINITIONS = {
        "workouts": (
            """CREATE TABLE workouts (
                    id TEXT PRIMARY KEY,
                    date TEXT NOT NULL,
                    name TEXT NOT NULL,
                    exercises TEXT NOT NULL DEFAULT '[]',
                    duration_minutes INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL
                );""",
            ["id", "date", "name", "exercises", "duration_minutes", "created_at"],
        ),
        "templates": (
            """CREATE TABLE templates (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    exercises TEXT NOT NULL DEFAULT '[]',
                    created_at TEXT NOT NULL
                );""",
            ["id", "name", "exercises", "created_at"],
        ),
        "users": (
            """CREATE TABLE users (
                    id TEXT PRIMARY KEY,
                    email TEXT NOT NULL UNIQUE,
                    password_hash TEXT NOT NULL,
                    created_at TEXT NOT NULL
                );""",
            ["id", "email", "password_hash", "created_at"],
        ),
        "otp_codes": (
            """CREATE TABLE otp_codes (
                    email TEXT PRIMARY KEY,
                    code_hash TEXT NOT NULL,
                    expires_at TEXT NOT NULL,
                    requested_at TEXT NOT NULL
                );""",
            ["email", "code_hash", "expires_at", "requested_at"],
        ),
        "auth_sessions": (
            """CREATE TABLE auth_sessions (
                    token TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    FOREIGN KEY(user_id) REFERENCES users(id) ON DELETE CASCADE
                );""",
            ["token", "user_id", "created_at"],
        ),
        "email_log": (
            """CREATE TABLE email_log (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    address TEXT NOT NULL,
                    subject TEXT NOT NULL,
                    body TEXT NOT NULL,
                    sent_at TEXT NOT NULL
                );""",
            ["id", "address", "subject", "body", "sent_at"],
        ),
    }

    def __init__(self, db_path: str = "workout.db") -> None:
        self._db_path = db_path
        self._ensure_schema()

    @property
    def db_path(self) -> str:
        return self._db_path

    @contextmanager
    def _connection(self):
        connection = sqlite3.connect(self._db_path)
        try:
            yield connection
            connection.commit()
        finally:
            connection.close()

    def _ensure_schema(self) -> None:
        with self._connection() as conn:
            cursor = conn.cursor()
            cursor.execute("PRAGMA foreign_keys=off;")
            for table, (sql, columns) in self._TABLE_DEFINITIONS.items():
                self._ensure_table(conn, table, sql, columns)
            cursor.execute("PRAGMA foreign_keys=on;")

    def _ensure_table(
        self, conn: sqlite3.Connection, table: str, sql: str, columns: List[str]
    ) -> None:
        cur = conn.execute(
            "SELECT name FROM sqlite_master WHERE type='table' AND name=?;", (table,)
        )
        if cur.fetchone() is None:
            conn.execute(sql)
            return

        cur = conn.execute(f"PRAGMA table_info({table});")
        existing_cols = [row[1] for row in cur.fetchall()]
        if existing_cols == columns:
            return

        conn.execute(f"ALTER TABLE {table} RENAME TO {table}_old;")
        conn.execute(sql)

        common = [c for c in existing_cols if c in columns]
        if common:
            cols = ", ".join(common)
            missing = [c for c in columns if c not in existing_cols]
            if missing:
                def default_val(col: str) -> str:
                    if col == "exercises":
                        return "'[]'"
                    if col == "duration_minutes":
                        return "0"
                    if col in ("created_at", "sent_at", "requested_at"):
                        return f"'{_utc_now()}'"
                    return "NULL"

                defaults = ", ".join(default_val(c) for c in missing)
                conn.execute(
                    f"INSERT INTO {table} ({cols}, {', '.join(missing)}) SELECT {cols}, {defaults} FROM {table}_old;"
                )
            else:
                conn.execute(
                    f"INSERT INTO {table} ({cols}) SELECT {cols} FROM {table}_old;"
                )
        conn.execute(f"DROP TABLE {table}_old;")


class BaseRepository(Database):
    """Base repository providing helper methods."""

    def execute(self, query: str, params: Tuple = ()) -> int:
        with self._connection() as conn:
            cursor = conn.cursor()
            cursor.execute(query, params)
            return cursor.lastrowid

    def fetch_all(self, query: str, params: Tuple = ()) -> List[Tuple]:
        with self._connection() as conn:
            cursor = conn.cursor()
            cursor.execute(query, params)
            return cursor.fetchall()


class AsyncDatabase(Database):
    """Provides asynchronous connection management."""

    @asynccontextmanager
    async def _async_connection(self):
        conn = await aiosqlite.connect(self._db_path)
        try:
            yield conn
            await conn.commit()
        finally:
            await conn.close()


class AsyncBaseRepository(AsyncDatabase):
    """Asynchronous variant of BaseRepository using aiosqlite."""

    async def execute(self, query: str, params: Tuple = ()) -> int:
        async with self._async_connection() as conn:
            cursor = await conn.execute(query, params)
            await conn.commit()
            return cursor.lastrowid

    async def fetch_all(self, query: str, params: Tuple = ()) -> List[Tuple]:
        async with self._async_connection() as conn:
            cursor = await conn.execute(query, params)
            rows = await cursor.fetchall()
            return rows


WorkoutRow = Tuple[str, str, str, str, int]
TemplateRow = Tuple[str, str, str]


class AsyncWorkoutRepository(AsyncBaseRepository):
    """Async repository for workout table operations."""

    async def create(
        self,
        date: str,
        name: str,
        exercises: list[dict],
        duration_minutes: int,
    ) -> str:
        workout_id = str(uuid.uuid4())
        await self.execute(
            "INSERT INTO workouts (id, date, name, exercises, duration_minutes, created_at) VALUES (?, ?, ?, ?, ?, ?);",
            (workout_id, date, name, json.dumps(exercises), duration_minutes, _utc_now()),
        )
        return workout_id

    async def fetch_all_workouts(self) -> List[WorkoutRow]:
        return await self.fetch_all(
            "SELECT id, date, name, exercises, duration_minutes FROM workouts ORDER BY date DESC, rowid DESC;"
        )

    async def fetch_detail(self, workout_id: str) -> WorkoutRow:
        rows = await self.fetch_all(
            "SELECT id, date, name, exercises, duration_minutes FROM workouts WHERE id = ?;",
            (workout_id,),
        )
        if not rows:
            raise ValueError("workout not found")
        return rows[0]

    async def delete(self, workout_id: str) -> None:
        await self.execute("DELETE FROM workouts WHERE id = ?;", (workout_id,))


class AsyncTemplateRepository(AsyncBaseRepository):
    """Async repository for workout templates."""

    async def create(self, name: str, exercises: list[dict]) -> str:
        template_id = str(uuid.uuid4())
        await self.execute(
            "INSERT INTO templates (id, name, exercises, created_at) VALUES (?, ?, ?, ?);",
            (template_id, name, json.dumps(exercises), _utc_now()),
        )
        return template_id

    async def fetch_all_templates(self) -> List[TemplateRow]:
        return await self.fetch_all(
            "SELECT id, name, exercises FROM templates ORDER BY created_at DESC, rowid DESC;"
        )

    async def fetch_detail(self, template_id: str) -> TemplateRow:
        rows = await self.fetch_all(
            "SELECT id, name, exercises FROM templates WHERE id = ?;",
            (template_id,),
        )
        if not rows:
            raise ValueError("template not found")
        return rows[0]

    async def update(self, template_id: str, name: str, exercises: list[dict]) -> None:
        await self.execute(
            "UPDATE templates SET name = ?, exercises = ? WHERE id = ?;",
            (name, json.dumps(exercises), template_id),
        )

    async def delete(self, template_id: str) -> None:
        await self.execute("DELETE FROM templates WHERE id = ?;", (template_id,))


class UserRepository(BaseRepository):
    """Repository for identity accounts."""

    def create(self, email: str, password_hash: str) -> str:
        user_id = str(uuid.uuid4())
        self.execute(
            "INSERT INTO users (id, email, password_hash, created_at) VALUES (?, ?, ?, ?);",
            (user_id, email, password_hash, _utc_now()),
        )
        return user_id

    def fetch_by_email(self, email: str) -> Optional[Tuple[str, str, str]]:
        rows = self.fetch_all(
            "SELECT id, email, password_hash FROM users WHERE email = ?;",
            (email,),
        )
        return rows[0] if rows else None

    def fetch_by_id(self, user_id: str) -> Optional[Tuple[str, str]]:
        rows = self.fetch_all(
            "SELECT id, email FROM users WHERE id = ?;",
            (user_id,),
        )
        return rows[0] if rows else None


class OtpRepository(BaseRepository):
    """Repository for one-time sign-in codes, one active code per email."""

    def store(self, email: str, code_hash: str, expires_at: str) -> None:
        self.execute(
            "INSERT INTO otp_codes (email, code_hash, expires_at, requested_at) VALUES (?, ?, ?, ?) "
            "ON CONFLICT(email) DO UPDATE SET code_hash=excluded.code_hash, expires_at=excluded.expires_at, requested_at=excluded.requested_at;",
            (email, code_hash, expires_at, _utc_now()),
        )

    def fetch(self, email: str) -> Optional[Tuple[str, str, str]]:
        rows = self.fetch_all(
            "SELECT code_hash, expires_at, requested_at FROM otp_codes WHERE email = ?;",
            (email,),
        )
        return rows[0] if rows else None

    def delete(self, email: str) -> None:
        self.execute("DELETE FROM otp_codes WHERE email = ?;", (email,))


class AuthSessionRepository(BaseRepository):
    """Repository for issued session tokens."""

    def add(self, token: str, user_id: str) -> None:
        self.execute(
            "INSERT INTO auth_sessions (token, user_id, created_at) VALUES (?, ?, ?);",
            (token, user_id, _utc_now()),
        )

    def fetch_user_id(self, token: str) -> Optional[str]:
        rows = self.fetch_all(
            "SELECT user_id FROM auth_sessions WHERE token = ?;",
            (token,),
        )
        return rows[0][0] if rows else None

    def delete(self, token: str) -> None:
        self.execute("DELETE FROM auth_sessions WHERE token = ?;", (token,))


class EmailLogRepository(BaseRepository):
    """Repository acting as the outbox for identity emails."""

    def add(self, address: str, subject: str, body: str) -> int:
        return self.execute(
            "INSERT INTO email_log (address, subject, body, sent_at) VALUES (?, ?, ?, ?);",
            (address, subject, body, _utc_now()),
        )

    def fetch_for_address(self, address: str) -> list[dict]:
        rows = self.fetch_all(
            "SELECT id, address, subject, body, sent_at FROM email_log WHERE address = ? ORDER BY id;",
            (address,),
        )
        return [
            {
                "id": r[0],
                "address": r[1],
                "subject": r[2],
                "body": r[3],
                "sent_at": r[4],
            }
            for r in rows
        ]
