"""SQLite-backed persistence for user profiles and swap requests."""
from __future__ import annotations

import json
import math
import secrets
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, List, Optional, Sequence

from passlib.context import CryptContext

from .models import Availability, User, UserId, UserPage

MIN_PASSWORD_LENGTH = 6
_BUSY_TIMEOUT_SECONDS = 10.0

_pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")

_UNSET = object()


def _ensure_directory(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)


def resolve_database_path(env_value: Optional[str]) -> Path:
    """Resolve the on-disk path for the application database."""

    if env_value:
        return Path(env_value).expanduser().resolve(strict=False)
    base_dir = Path(__file__).resolve().parent.parent / "data"
    return (base_dir / "skillswap.sqlite3").resolve(strict=False)


def current_timestamp() -> datetime:
    return datetime.now(timezone.utc)


def serialize_datetime(value: datetime) -> str:
    return value.isoformat()


def parse_datetime(value: str) -> datetime:
    return datetime.fromisoformat(value)


def generate_id() -> str:
    """Return a new opaque identifier (24 hex characters)."""

    return secrets.token_hex(12)


def _hash_password(password: str) -> str:
    return _pwd_context.hash(password)


def _verify_password(password: str, hashed: str) -> bool:
    try:
        return _pwd_context.verify(password, hashed)
    except ValueError:
        return False


def normalize_email(email: str) -> str:
    return email.strip().lower()


def normalize_skills(skills: Iterable[str]) -> List[str]:
    """Trim entries and drop blanks, keeping order and duplicates."""

    cleaned: List[str] = []
    for skill in skills:
        text = str(skill).strip()
        if text:
            cleaned.append(text)
    return cleaned


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class Database:
    """Simple wrapper around SQLite for persisting users and swap requests."""

    def __init__(self, path: Path) -> None:
        _ensure_directory(path)
        self._path = path

    @property
    def path(self) -> Path:
        return self._path

    def connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._path, timeout=_BUSY_TIMEOUT_SECONDS, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    def initialize(self) -> None:
        """Create the required tables if they do not already exist."""

        with self.connect() as conn:
            conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS users (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    email TEXT NOT NULL UNIQUE,
                    password_hash TEXT NOT NULL,
                    location TEXT NOT NULL DEFAULT '',
                    skills_offered TEXT NOT NULL DEFAULT '[]',
                    skills_wanted TEXT NOT NULL DEFAULT '[]',
                    availability TEXT NOT NULL DEFAULT 'Flexible',
                    is_public INTEGER NOT NULL DEFAULT 1,
                    profile_photo TEXT NOT NULL DEFAULT '',
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS swap_requests (
                    id TEXT PRIMARY KEY,
                    from_user_id TEXT NOT NULL REFERENCES users(id),
                    to_user_id TEXT NOT NULL REFERENCES users(id),
                    skill_offered TEXT NOT NULL,
                    skill_wanted TEXT NOT NULL,
                    message TEXT NOT NULL DEFAULT '',
                    status TEXT NOT NULL DEFAULT 'Pending'
                        CHECK (status IN ('Pending', 'Accepted', 'Rejected')),
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );

                CREATE UNIQUE INDEX IF NOT EXISTS idx_swap_requests_pending_pair
                    ON swap_requests(from_user_id, to_user_id)
                    WHERE status = 'Pending';
                CREATE INDEX IF NOT EXISTS idx_swap_requests_from_user ON swap_requests(from_user_id);
                CREATE INDEX IF NOT EXISTS idx_swap_requests_to_user ON swap_requests(to_user_id);
                CREATE INDEX IF NOT EXISTS idx_users_public_created ON users(is_public, created_at);
                """
            )

    # ------------------------------------------------------------------
    # User management
    # ------------------------------------------------------------------
    def create_user(self, name: str, email: str, password: str) -> User:
        """Register a new user and return the stored profile."""

        normalized_name = (name or "").strip()
        if not normalized_name:
            raise ValueError("Name must not be empty")
        normalized_email = normalize_email(email or "")
        if not normalized_email:
            raise ValueError("Email must not be empty")
        if not password or len(password) < MIN_PASSWORD_LENGTH:
            raise ValueError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters long")

        user_id = generate_id()
        created_at = serialize_datetime(current_timestamp())
        password_hash = _hash_password(password)

        with self.connect() as conn:
            try:
                conn.execute(
                    """
                    INSERT INTO users (id, name, email, password_hash, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    (user_id, normalized_name, normalized_email, password_hash, created_at, created_at),
                )
            except sqlite3.IntegrityError as exc:
                raise ValueError("A user with that email already exists") from exc

        user = self.get_user(UserId(user_id))
        if user is None:
            raise RuntimeError("Failed to load user after creation")
        return user

    def get_user(self, user_id: UserId) -> Optional[User]:
        with self.connect() as conn:
            row = conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
        if row is None:
            return None
        return self._row_to_user(row)

    def get_user_by_email(self, email: str) -> Optional[User]:
        with self.connect() as conn:
            row = conn.execute(
                "SELECT * FROM users WHERE email = ?",
                (normalize_email(email),),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_user(row)

    def authenticate_user(self, email: str, password: str) -> Optional[User]:
        with self.connect() as conn:
            row = conn.execute(
                "SELECT * FROM users WHERE email = ?",
                (normalize_email(email),),
            ).fetchone()
        if row is None:
            return None
        stored_hash = row["password_hash"]
        if not stored_hash or not _verify_password(password, stored_hash):
            return None
        return self._row_to_user(row)

    def update_user_profile(
        self,
        user_id: UserId,
        *,
        name: object = _UNSET,
        location: object = _UNSET,
        skills_offered: object = _UNSET,
        skills_wanted: object = _UNSET,
        availability: object = _UNSET,
        is_public: object = _UNSET,
        profile_photo: object = _UNSET,
    ) -> User:
        """Update the supplied profile fields; omitted fields keep their value."""

        updates: List[str] = []
        values: List[object] = []

        if name is not _UNSET:
            normalized_name = str(name or "").strip()
            if not normalized_name:
                raise ValueError("Name must not be empty")
            updates.append("name = ?")
            values.append(normalized_name)
        if location is not _UNSET:
            updates.append("location = ?")
            values.append(str(location or "").strip())
        if skills_offered is not _UNSET:
            if skills_offered is None:
                raise ValueError("Skills offered must be a list")
            updates.append("skills_offered = ?")
            values.append(json.dumps(normalize_skills(skills_offered), ensure_ascii=False))
        if skills_wanted is not _UNSET:
            if skills_wanted is None:
                raise ValueError("Skills wanted must be a list")
            updates.append("skills_wanted = ?")
            values.append(json.dumps(normalize_skills(skills_wanted), ensure_ascii=False))
        if availability is not _UNSET:
            try:
                resolved = Availability(availability)
            except ValueError as exc:
                raise ValueError(f"Unknown availability '{availability}'") from exc
            updates.append("availability = ?")
            values.append(resolved.value)
        if is_public is not _UNSET:
            if not isinstance(is_public, bool):
                raise ValueError("Visibility must be true or false")
            updates.append("is_public = ?")
            values.append(int(is_public))
        if profile_photo is not _UNSET:
            updates.append("profile_photo = ?")
            values.append(str(profile_photo or "").strip())

        if updates:
            updates.append("updated_at = ?")
            values.append(serialize_datetime(current_timestamp()))
            values.append(user_id)
            query = f"UPDATE users SET {', '.join(updates)} WHERE id = ?"
            with self.connect() as conn:
                cursor = conn.execute(query, values)
                if cursor.rowcount == 0:
                    raise ValueError("User not found")

        refreshed = self.get_user(user_id)
        if refreshed is None:
            raise ValueError("User not found")
        return refreshed

    def set_user_password(self, user_id: UserId, password: str) -> None:
        if not password or len(password) < MIN_PASSWORD_LENGTH:
            raise ValueError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters long")
        password_hash = _hash_password(password)
        with self.connect() as conn:
            conn.execute(
                "UPDATE users SET password_hash = ?, updated_at = ? WHERE id = ?",
                (password_hash, serialize_datetime(current_timestamp()), user_id),
            )

    def list_users(self) -> List[User]:
        with self.connect() as conn:
            rows = conn.execute("SELECT * FROM users ORDER BY created_at").fetchall()
        return [self._row_to_user(row) for row in rows]

    def list_public_users(self, *, page: int = 1, limit: int = 6, search: str = "") -> UserPage:
        """Return one page of public profiles, newest first.

        ``search`` is matched case-insensitively against the name and against
        each entry of both skill lists.
        """

        page = max(int(page), 1)
        limit = max(int(limit), 1)
        clauses = ["is_public = 1"]
        params: List[object] = []

        term = (search or "").strip()
        if term:
            pattern = f"%{_escape_like(term)}%"
            clauses.append(
                "(name LIKE ? ESCAPE '\\'"
                " OR EXISTS (SELECT 1 FROM json_each(users.skills_offered) WHERE value LIKE ? ESCAPE '\\')"
                " OR EXISTS (SELECT 1 FROM json_each(users.skills_wanted) WHERE value LIKE ? ESCAPE '\\'))"
            )
            params.extend([pattern, pattern, pattern])

        where = " AND ".join(clauses)
        with self.connect() as conn:
            total = conn.execute(f"SELECT COUNT(*) FROM users WHERE {where}", params).fetchone()[0]
            rows = conn.execute(
                f"SELECT * FROM users WHERE {where} ORDER BY created_at DESC, rowid DESC LIMIT ? OFFSET ?",
                [*params, limit, (page - 1) * limit],
            ).fetchall()

        return UserPage(
            users=[self._row_to_user(row) for row in rows],
            page=page,
            total_pages=math.ceil(total / limit),
            total_users=int(total),
        )

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _row_to_user(self, row: sqlite3.Row) -> User:
        return User(
            id=UserId(str(row["id"])),
            name=str(row["name"]),
            email=str(row["email"]),
            location=str(row["location"] or ""),
            skills_offered=_load_skills(row["skills_offered"]),
            skills_wanted=_load_skills(row["skills_wanted"]),
            availability=Availability(row["availability"]),
            is_public=bool(row["is_public"]),
            profile_photo=str(row["profile_photo"] or ""),
            created_at=parse_datetime(str(row["created_at"])),
            updated_at=parse_datetime(str(row["updated_at"])),
        )


def _load_skills(raw: Optional[str]) -> tuple[str, ...]:
    if not raw:
        return ()
    values: Sequence[object] = json.loads(raw)
    return tuple(str(value) for value in values)


__all__ = [
    "Database",
    "MIN_PASSWORD_LENGTH",
    "current_timestamp",
    "generate_id",
    "parse_datetime",
    "resolve_database_path",
    "serialize_datetime",
]
