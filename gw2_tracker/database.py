"""SQLite database module for gw2-progress-tracker.

Each public method is async and wraps a synchronous inner function via
asyncio.run_in_executor(None, _sync). A new connection is created per call
(WAL mode, 30s busy timeout, Row factory). sqlite3 errors surface as
StorageFailure.

List-valued columns (flags, tiers, levels, bits, ...) are stored as JSON text.
"""

from __future__ import annotations

import asyncio
import json
import logging
import sqlite3
from dataclasses import asdict
from typing import Any, Callable, Iterable, TypeVar

from .errors import DuplicateCredentialError, StorageFailure, UserLimitError
from .models import (
    Achievement,
    AchievementReward,
    AchievementTier,
    MapEntry,
    Mastery,
    MasteryLevel,
    User,
    UserAchievement,
    UserMapProgress,
    UserMastery,
)

T = TypeVar("T")

PROGRESS_TABLES = ("user_achievements", "user_masteries", "user_map_progress")

# Progress writes are dropped for users removed while their fetch was in flight
_IF_USER_EXISTS = "WHERE EXISTS (SELECT 1 FROM users WHERE id = ?)"


def _dumps(value: Any) -> str | None:
    return None if value is None else json.dumps(value)


def _loads(text: str | None, default: Any = None) -> Any:
    return default if text is None else json.loads(text)


def _opt_bool(value: int | None) -> bool | None:
    return None if value is None else bool(value)


class TrackerDatabase:
    """SQLite-backed persistence: users, catalogs, progress and cache."""

    def __init__(self, db_path: str, logger: logging.Logger) -> None:
        self._db_path = db_path
        self._logger = logger

    def _get_connection(self) -> sqlite3.Connection:
        """Create a new SQLite connection with standard settings."""
        conn = sqlite3.connect(self._db_path, timeout=30)
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA busy_timeout=30000")
        conn.row_factory = sqlite3.Row
        return conn

    async def _run(self, fn: Callable[[], T]) -> T:
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, fn)
        except sqlite3.Error as e:
            raise StorageFailure(f"SQLite error on {self._db_path}: {e}") from e

    # ══════════════════════════════════════════════════════════
    #  Initialization
    # ══════════════════════════════════════════════════════════

    async def initialize(self) -> None:
        """Create all tables and indexes. Idempotent."""
        await self._run(self._create_tables)
        self._logger.debug("Database ready at %s", self._db_path)

    def _create_tables(self) -> None:
        conn = self._get_connection()
        try:
            # ── Users ────────────────────────────────────────
            conn.execute("""
                CREATE TABLE IF NOT EXISTS users (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    api_key TEXT NOT NULL UNIQUE,
                    account_name TEXT,
                    account_id TEXT,
                    permissions TEXT,
                    created_at INTEGER NOT NULL,
                    last_synced INTEGER
                )
            """)
            conn.execute("CREATE INDEX IF NOT EXISTS idx_users_name ON users(name)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_users_account_id ON users(account_id)")

            # ── Achievements ─────────────────────────────────
            conn.execute("""
                CREATE TABLE IF NOT EXISTS achievements (
                    id INTEGER PRIMARY KEY,
                    name TEXT NOT NULL,
                    description TEXT,
                    requirement TEXT,
                    type TEXT,
                    flags TEXT,
                    tiers TEXT,
                    prerequisites TEXT,
                    rewards TEXT,
                    icon TEXT,
                    categories TEXT
                )
            """)
            # Multi-entry index on categories
            conn.execute("""
                CREATE TABLE IF NOT EXISTS achievement_categories (
                    achievement_id INTEGER NOT NULL,
                    category_id INTEGER NOT NULL,
                    PRIMARY KEY (achievement_id, category_id)
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS user_achievements (
                    id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    achievement_id INTEGER NOT NULL,
                    done BOOLEAN NOT NULL DEFAULT 0,
                    current INTEGER,
                    max INTEGER,
                    bits TEXT,
                    repeated INTEGER,
                    unlocked BOOLEAN,
                    last_updated INTEGER NOT NULL
                )
            """)
            conn.execute("CREATE INDEX IF NOT EXISTS idx_achievements_name ON achievements(name)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_achievements_type ON achievements(type)")
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_achievement_categories_category "
                "ON achievement_categories(category_id)"
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_user_achievements_user ON user_achievements(user_id)"
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_user_achievements_achievement "
                "ON user_achievements(achievement_id)"
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_user_achievements_user_done "
                "ON user_achievements(user_id, done)"
            )

            # ── Masteries ────────────────────────────────────
            conn.execute("""
                CREATE TABLE IF NOT EXISTS masteries (
                    id INTEGER PRIMARY KEY,
                    name TEXT NOT NULL,
                    requirement TEXT,
                    sort_order INTEGER,
                    background TEXT,
                    region TEXT,
                    levels TEXT
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS user_masteries (
                    id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    mastery_id INTEGER NOT NULL,
                    level INTEGER NOT NULL,
                    last_updated INTEGER NOT NULL
                )
            """)
            conn.execute("CREATE INDEX IF NOT EXISTS idx_masteries_region ON masteries(region)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_user_masteries_user ON user_masteries(user_id)")
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_user_masteries_mastery ON user_masteries(mastery_id)"
            )

            # ── Maps ─────────────────────────────────────────
            conn.execute("""
                CREATE TABLE IF NOT EXISTS maps (
                    id INTEGER PRIMARY KEY,
                    name TEXT NOT NULL,
                    min_level INTEGER,
                    max_level INTEGER,
                    default_floor INTEGER,
                    type TEXT,
                    floors TEXT,
                    region_id INTEGER,
                    region_name TEXT,
                    continent_id INTEGER,
                    continent_name TEXT,
                    map_rect TEXT,
                    continent_rect TEXT
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS user_map_progress (
                    id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    map_id INTEGER NOT NULL,
                    completed BOOLEAN NOT NULL DEFAULT 0,
                    last_updated INTEGER NOT NULL
                )
            """)
            conn.execute("CREATE INDEX IF NOT EXISTS idx_maps_name ON maps(name)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_maps_type ON maps(type)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_maps_region ON maps(region_id)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_maps_continent ON maps(continent_id)")
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_user_map_progress_user ON user_map_progress(user_id)"
            )

            # ── Generic TTL cache ────────────────────────────
            conn.execute("""
                CREATE TABLE IF NOT EXISTS cache (
                    key TEXT PRIMARY KEY,
                    data TEXT NOT NULL,
                    timestamp INTEGER NOT NULL,
                    expires_at INTEGER NOT NULL
                )
            """)
            conn.execute("CREATE INDEX IF NOT EXISTS idx_cache_expires_at ON cache(expires_at)")

            conn.commit()
        finally:
            conn.close()

    # ══════════════════════════════════════════════════════════
    #  Generic helpers
    # ══════════════════════════════════════════════════════════

    async def _fetch_all(self, sql: str, params: tuple, convert: Callable[[sqlite3.Row], T]) -> list[T]:
        def _sync() -> list[T]:
            conn = self._get_connection()
            try:
                return [convert(row) for row in conn.execute(sql, params).fetchall()]
            finally:
                conn.close()

        return await self._run(_sync)

    async def _fetch_one(self, sql: str, params: tuple, convert: Callable[[sqlite3.Row], T]) -> T | None:
        def _sync() -> T | None:
            conn = self._get_connection()
            try:
                row = conn.execute(sql, params).fetchone()
                return convert(row) if row else None
            finally:
                conn.close()

        return await self._run(_sync)

    async def _execute_many(self, sql: str, rows: list[tuple]) -> int:
        """Run one statement for every row in a single transaction."""
        if not rows:
            return 0

        def _sync() -> int:
            conn = self._get_connection()
            try:
                cursor = conn.executemany(sql, rows)
                conn.commit()
                return cursor.rowcount
            except sqlite3.Error:
                conn.rollback()
                raise
            finally:
                conn.close()

        return await self._run(_sync)

    async def count_rows(self, table: str) -> int:
        """COUNT(*) for a known table."""
        if table not in _COUNTABLE_TABLES:
            raise ValueError(f"Unknown table: {table}")
        result = await self._fetch_one(f"SELECT COUNT(*) AS cnt FROM {table}", (), lambda r: r["cnt"])
        return result or 0

    # ══════════════════════════════════════════════════════════
    #  Users
    # ══════════════════════════════════════════════════════════

    @staticmethod
    def _row_to_user(row: sqlite3.Row) -> User:
        return User(
            id=row["id"],
            name=row["name"],
            api_key=row["api_key"],
            account_name=row["account_name"],
            account_id=row["account_id"],
            permissions=_loads(row["permissions"], []),
            created_at=row["created_at"],
            last_synced=row["last_synced"],
        )

    async def list_users(self) -> list[User]:
        return await self._fetch_all("SELECT * FROM users ORDER BY created_at, id", (), self._row_to_user)

    async def get_user(self, user_id: str) -> User | None:
        return await self._fetch_one("SELECT * FROM users WHERE id = ?", (user_id,), self._row_to_user)

    async def add_user(self, user: User, max_users: int) -> None:
        """Insert a user, enforcing credential uniqueness and the user limit atomically."""

        def _sync() -> None:
            conn = self._get_connection()
            try:
                conn.execute("BEGIN IMMEDIATE")
                dup = conn.execute("SELECT 1 FROM users WHERE api_key = ?", (user.api_key,)).fetchone()
                if dup:
                    conn.rollback()
                    raise DuplicateCredentialError("This API key is already added")
                count = conn.execute("SELECT COUNT(*) AS cnt FROM users").fetchone()["cnt"]
                if count >= max_users:
                    conn.rollback()
                    raise UserLimitError(f"Maximum of {max_users} users allowed")
                conn.execute(
                    "INSERT INTO users (id, name, api_key, account_name, account_id, permissions, "
                    "created_at, last_synced) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                    (
                        user.id, user.name, user.api_key, user.account_name, user.account_id,
                        _dumps(user.permissions), user.created_at, user.last_synced,
                    ),
                )
                conn.commit()
            except sqlite3.Error:
                conn.rollback()
                raise
            finally:
                conn.close()

        await self._run(_sync)

    _UPDATABLE_USER_FIELDS = ("name", "account_name", "account_id", "permissions", "last_synced")

    async def update_user(self, user_id: str, **fields: Any) -> bool:
        """Update selected user columns. Returns False if the user does not exist."""
        unknown = set(fields) - set(self._UPDATABLE_USER_FIELDS)
        if unknown:
            raise ValueError(f"Cannot update user fields: {sorted(unknown)}")
        if not fields:
            return await self.get_user(user_id) is not None
        if "permissions" in fields:
            fields["permissions"] = _dumps(fields["permissions"])

        assignments = ", ".join(f"{name} = ?" for name in fields)

        def _sync() -> bool:
            conn = self._get_connection()
            try:
                cursor = conn.execute(
                    f"UPDATE users SET {assignments} WHERE id = ?",
                    (*fields.values(), user_id),
                )
                conn.commit()
                return cursor.rowcount > 0
            finally:
                conn.close()

        return await self._run(_sync)

    async def set_last_synced(self, user_ids: Iterable[str], timestamp: int) -> None:
        await self._execute_many(
            "UPDATE users SET last_synced = ? WHERE id = ?",
            [(timestamp, uid) for uid in user_ids],
        )

    async def remove_user(self, user_id: str, api_key: str) -> bool:
        """Delete a user and everything keyed by them in one transaction.

        Removes progress rows in every domain plus cache entries whose key
        contains the user's id or credential. Returns False if no such user.
        """

        def _sync() -> bool:
            conn = self._get_connection()
            try:
                conn.execute("BEGIN IMMEDIATE")
                for table in PROGRESS_TABLES:
                    conn.execute(f"DELETE FROM {table} WHERE user_id = ?", (user_id,))
                conn.execute(
                    "DELETE FROM cache WHERE instr(key, ?) > 0 OR instr(key, ?) > 0",
                    (api_key, user_id),
                )
                cursor = conn.execute("DELETE FROM users WHERE id = ?", (user_id,))
                conn.commit()
                return cursor.rowcount > 0
            except sqlite3.Error:
                conn.rollback()
                raise
            finally:
                conn.close()

        return await self._run(_sync)

    # ══════════════════════════════════════════════════════════
    #  Achievements
    # ══════════════════════════════════════════════════════════

    @staticmethod
    def _row_to_achievement(row: sqlite3.Row) -> Achievement:
        return Achievement(
            id=row["id"],
            name=row["name"],
            description=row["description"] or "",
            requirement=row["requirement"] or "",
            type=row["type"],
            flags=_loads(row["flags"], []),
            tiers=[AchievementTier(**t) for t in _loads(row["tiers"], [])],
            prerequisites=_loads(row["prerequisites"], []),
            rewards=[AchievementReward(**r) for r in _loads(row["rewards"], [])],
            icon=row["icon"],
            categories=_loads(row["categories"], []),
        )

    async def upsert_achievements(self, achievements: list[Achievement]) -> int:
        """Bulk upsert catalog entries and rebuild their category index rows."""
        if not achievements:
            return 0

        def _sync() -> int:
            conn = self._get_connection()
            try:
                conn.executemany(
                    "INSERT OR REPLACE INTO achievements (id, name, description, requirement, type, "
                    "flags, tiers, prerequisites, rewards, icon, categories) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                    [
                        (
                            a.id, a.name, a.description, a.requirement, a.type,
                            _dumps(a.flags), _dumps([asdict(t) for t in a.tiers]),
                            _dumps(a.prerequisites), _dumps([asdict(r) for r in a.rewards]),
                            a.icon, _dumps(a.categories),
                        )
                        for a in achievements
                    ],
                )
                conn.executemany(
                    "DELETE FROM achievement_categories WHERE achievement_id = ?",
                    [(a.id,) for a in achievements],
                )
                conn.executemany(
                    "INSERT OR IGNORE INTO achievement_categories (achievement_id, category_id) VALUES (?, ?)",
                    [(a.id, cat) for a in achievements for cat in a.categories],
                )
                conn.commit()
                return len(achievements)
            except sqlite3.Error:
                conn.rollback()
                raise
            finally:
                conn.close()

        return await self._run(_sync)

    async def list_achievements(self) -> list[Achievement]:
        return await self._fetch_all("SELECT * FROM achievements ORDER BY id", (), self._row_to_achievement)

    async def get_achievement(self, achievement_id: int) -> Achievement | None:
        return await self._fetch_one(
            "SELECT * FROM achievements WHERE id = ?", (achievement_id,), self._row_to_achievement
        )

    async def get_achievements_by_category(self, category_id: int) -> list[Achievement]:
        return await self._fetch_all(
            "SELECT a.* FROM achievements a "
            "JOIN achievement_categories c ON c.achievement_id = a.id "
            "WHERE c.category_id = ? ORDER BY a.id",
            (category_id,),
            self._row_to_achievement,
        )

    async def get_achievements_by_type(self, achievement_type: str) -> list[Achievement]:
        return await self._fetch_all(
            "SELECT * FROM achievements WHERE type = ? ORDER BY id", (achievement_type,), self._row_to_achievement
        )

    @staticmethod
    def _row_to_user_achievement(row: sqlite3.Row) -> UserAchievement:
        return UserAchievement(
            id=row["id"],
            user_id=row["user_id"],
            achievement_id=row["achievement_id"],
            done=bool(row["done"]),
            current=row["current"],
            max=row["max"],
            bits=_loads(row["bits"]),
            repeated=row["repeated"],
            unlocked=_opt_bool(row["unlocked"]),
            last_updated=row["last_updated"],
        )

    async def upsert_user_achievements(self, rows: list[UserAchievement]) -> int:
        return await self._execute_many(
            "INSERT OR REPLACE INTO user_achievements (id, user_id, achievement_id, done, current, max, "
            "bits, repeated, unlocked, last_updated) SELECT ?, ?, ?, ?, ?, ?, ?, ?, ?, ? " + _IF_USER_EXISTS,
            [
                (
                    r.id, r.user_id, r.achievement_id, int(r.done), r.current, r.max,
                    _dumps(r.bits), r.repeated, None if r.unlocked is None else int(r.unlocked),
                    r.last_updated, r.user_id,
                )
                for r in rows
            ],
        )

    async def list_user_achievements(self, user_id: str) -> list[UserAchievement]:
        return await self._fetch_all(
            "SELECT * FROM user_achievements WHERE user_id = ? ORDER BY achievement_id",
            (user_id,),
            self._row_to_user_achievement,
        )

    async def get_user_achievements_by_done(self, user_id: str, done: bool) -> list[UserAchievement]:
        """Lookup via the compound (user_id, done) index."""
        return await self._fetch_all(
            "SELECT * FROM user_achievements WHERE user_id = ? AND done = ? ORDER BY achievement_id",
            (user_id, int(done)),
            self._row_to_user_achievement,
        )

    async def get_user_achievement(self, user_id: str, achievement_id: int) -> UserAchievement | None:
        return await self._fetch_one(
            "SELECT * FROM user_achievements WHERE user_id = ? AND achievement_id = ?",
            (user_id, achievement_id),
            self._row_to_user_achievement,
        )

    # ══════════════════════════════════════════════════════════
    #  Masteries
    # ══════════════════════════════════════════════════════════

    @staticmethod
    def _row_to_mastery(row: sqlite3.Row) -> Mastery:
        return Mastery(
            id=row["id"],
            name=row["name"],
            requirement=row["requirement"] or "",
            order=row["sort_order"],
            background=row["background"] or "",
            region=row["region"],
            levels=[MasteryLevel(**lvl) for lvl in _loads(row["levels"], [])],
        )

    async def upsert_masteries(self, masteries: list[Mastery]) -> int:
        return await self._execute_many(
            "INSERT OR REPLACE INTO masteries (id, name, requirement, sort_order, background, region, levels) "
            "VALUES (?, ?, ?, ?, ?, ?, ?)",
            [
                (
                    m.id, m.name, m.requirement, m.order, m.background, m.region,
                    _dumps([asdict(lvl) for lvl in m.levels]),
                )
                for m in masteries
            ],
        )

    async def list_masteries(self) -> list[Mastery]:
        return await self._fetch_all("SELECT * FROM masteries ORDER BY sort_order, id", (), self._row_to_mastery)

    async def get_masteries_by_region(self, region: str) -> list[Mastery]:
        return await self._fetch_all(
            "SELECT * FROM masteries WHERE region = ? ORDER BY sort_order, id", (region,), self._row_to_mastery
        )

    @staticmethod
    def _row_to_user_mastery(row: sqlite3.Row) -> UserMastery:
        return UserMastery(
            id=row["id"],
            user_id=row["user_id"],
            mastery_id=row["mastery_id"],
            level=row["level"],
            last_updated=row["last_updated"],
        )

    async def upsert_user_masteries(self, rows: list[UserMastery]) -> int:
        return await self._execute_many(
            "INSERT OR REPLACE INTO user_masteries (id, user_id, mastery_id, level, last_updated) "
            "SELECT ?, ?, ?, ?, ? " + _IF_USER_EXISTS,
            [(r.id, r.user_id, r.mastery_id, r.level, r.last_updated, r.user_id) for r in rows],
        )

    async def list_user_masteries(self, user_id: str) -> list[UserMastery]:
        return await self._fetch_all(
            "SELECT * FROM user_masteries WHERE user_id = ? ORDER BY mastery_id",
            (user_id,),
            self._row_to_user_mastery,
        )

    # ══════════════════════════════════════════════════════════
    #  Maps
    # ══════════════════════════════════════════════════════════

    @staticmethod
    def _row_to_map(row: sqlite3.Row) -> MapEntry:
        return MapEntry(
            id=row["id"],
            name=row["name"],
            min_level=row["min_level"],
            max_level=row["max_level"],
            default_floor=row["default_floor"],
            type=row["type"],
            floors=_loads(row["floors"], []),
            region_id=row["region_id"],
            region_name=row["region_name"],
            continent_id=row["continent_id"],
            continent_name=row["continent_name"],
            map_rect=_loads(row["map_rect"]),
            continent_rect=_loads(row["continent_rect"]),
        )

    async def upsert_maps(self, maps: list[MapEntry]) -> int:
        return await self._execute_many(
            "INSERT OR REPLACE INTO maps (id, name, min_level, max_level, default_floor, type, floors, "
            "region_id, region_name, continent_id, continent_name, map_rect, continent_rect) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            [
                (
                    m.id, m.name, m.min_level, m.max_level, m.default_floor, m.type, _dumps(m.floors),
                    m.region_id, m.region_name, m.continent_id, m.continent_name,
                    _dumps(m.map_rect), _dumps(m.continent_rect),
                )
                for m in maps
            ],
        )

    async def list_maps(self) -> list[MapEntry]:
        return await self._fetch_all("SELECT * FROM maps ORDER BY id", (), self._row_to_map)

    async def get_map(self, map_id: int) -> MapEntry | None:
        return await self._fetch_one("SELECT * FROM maps WHERE id = ?", (map_id,), self._row_to_map)

    async def get_maps_by_type(self, map_type: str) -> list[MapEntry]:
        return await self._fetch_all("SELECT * FROM maps WHERE type = ? ORDER BY id", (map_type,), self._row_to_map)

    async def get_maps_by_region(self, region_id: int) -> list[MapEntry]:
        return await self._fetch_all(
            "SELECT * FROM maps WHERE region_id = ? ORDER BY id", (region_id,), self._row_to_map
        )

    async def get_maps_by_continent(self, continent_id: int) -> list[MapEntry]:
        return await self._fetch_all(
            "SELECT * FROM maps WHERE continent_id = ? ORDER BY id", (continent_id,), self._row_to_map
        )

    @staticmethod
    def _row_to_user_map_progress(row: sqlite3.Row) -> UserMapProgress:
        return UserMapProgress(
            id=row["id"],
            user_id=row["user_id"],
            map_id=row["map_id"],
            completed=bool(row["completed"]),
            last_updated=row["last_updated"],
        )

    async def upsert_user_map_progress(self, rows: list[UserMapProgress]) -> int:
        return await self._execute_many(
            "INSERT OR REPLACE INTO user_map_progress (id, user_id, map_id, completed, last_updated) "
            "SELECT ?, ?, ?, ?, ? " + _IF_USER_EXISTS,
            [(r.id, r.user_id, r.map_id, int(r.completed), r.last_updated, r.user_id) for r in rows],
        )

    async def list_user_map_progress(self, user_id: str) -> list[UserMapProgress]:
        return await self._fetch_all(
            "SELECT * FROM user_map_progress WHERE user_id = ? ORDER BY map_id",
            (user_id,),
            self._row_to_user_map_progress,
        )

    # ══════════════════════════════════════════════════════════
    #  Cache table
    # ══════════════════════════════════════════════════════════

    async def get_cache_entry(self, key: str) -> dict | None:
        """Raw cache row: {key, data, timestamp, expires_at}."""
        return await self._fetch_one("SELECT * FROM cache WHERE key = ?", (key,), dict)

    async def put_cache_entry(self, key: str, data: str, timestamp: int, expires_at: int) -> None:
        await self._execute_many(
            "INSERT OR REPLACE INTO cache (key, data, timestamp, expires_at) VALUES (?, ?, ?, ?)",
            [(key, data, timestamp, expires_at)],
        )

    async def delete_cache_entry(self, key: str) -> None:
        await self._execute_many("DELETE FROM cache WHERE key = ?", [(key,)])

    async def delete_cache_prefix(self, prefix: str | None = None) -> int:
        """Delete entries whose key starts with *prefix*, or all entries if None."""

        def _sync() -> int:
            conn = self._get_connection()
            try:
                if prefix is None:
                    cursor = conn.execute("DELETE FROM cache")
                else:
                    cursor = conn.execute(
                        "DELETE FROM cache WHERE substr(key, 1, ?) = ?", (len(prefix), prefix)
                    )
                conn.commit()
                return cursor.rowcount
            finally:
                conn.close()

        return await self._run(_sync)

    async def delete_expired_cache(self, now: int) -> int:
        """Delete entries with expires_at <= now. Uses the expires_at index."""

        def _sync() -> int:
            conn = self._get_connection()
            try:
                cursor = conn.execute("DELETE FROM cache WHERE expires_at <= ?", (now,))
                conn.commit()
                return cursor.rowcount
            finally:
                conn.close()

        return await self._run(_sync)


_COUNTABLE_TABLES = frozenset({
    "users", "achievements", "user_achievements", "masteries",
    "user_masteries", "maps", "user_map_progress", "cache",
})
