from __future__ import annotations

import os
import sqlite3
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Iterable

from .settings import settings


def utc_now() -> str:
    return datetime.utcnow().strftime("%Y-%m-%dT%H:%M:%SZ")


def _resolve_db_path() -> str:
    """Return a file path usable by sqlite.

    If the configured path is a directory (Docker creates one for a missing
    bind-mounted file), the DB file is placed inside it.
    """

    p = os.path.abspath(settings.db_path)

    if os.path.isdir(p):
        p = os.path.join(p, "sgr.db")

    parent = os.path.dirname(p)
    if parent and not os.path.exists(parent):
        os.makedirs(parent, exist_ok=True)

    return p


def connect() -> sqlite3.Connection:
    conn = sqlite3.connect(_resolve_db_path(), check_same_thread=False)
    conn.row_factory = sqlite3.Row
    return conn


def init_db() -> None:
    """Create tables if they do not exist."""
    with connect() as conn:
        conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS members (
              instance_id TEXT PRIMARY KEY,
              app_id TEXT NOT NULL,
              region TEXT NOT NULL,
              hostname TEXT NOT NULL,
              host_ip TEXT NOT NULL,
              updated_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS acl_rules (
              id INTEGER PRIMARY KEY AUTOINCREMENT,
              cidr TEXT NOT NULL,
              from_port INTEGER NOT NULL,
              to_port INTEGER NOT NULL,
              created_at TEXT NOT NULL,
              UNIQUE(cidr, from_port, to_port)
            );

            CREATE TABLE IF NOT EXISTS properties (
              id INTEGER PRIMARY KEY AUTOINCREMENT,
              app_id TEXT NOT NULL,
              property TEXT NOT NULL,
              value TEXT NOT NULL,
              region TEXT NOT NULL DEFAULT '', -- '' applies to every region
              updated_at TEXT NOT NULL,
              UNIQUE(app_id, property, region)
            );

            CREATE TABLE IF NOT EXISTS events (
              id INTEGER PRIMARY KEY AUTOINCREMENT,
              ts TEXT NOT NULL,
              level TEXT NOT NULL,
              job TEXT,
              message TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_events_ts ON events(ts);
            CREATE INDEX IF NOT EXISTS idx_members_app_id ON members(app_id);
            """
        )


def log_event(level: str, message: str, job: str | None = None) -> None:
    with connect() as conn:
        conn.execute(
            "INSERT INTO events (ts, level, job, message) VALUES (?, ?, ?, ?)",
            (utc_now(), level.upper(), job, message),
        )


@dataclass(frozen=True)
class MemberRow:
    instance_id: str
    app_id: str
    region: str
    hostname: str
    host_ip: str
    updated_at: str


@dataclass(frozen=True)
class PropertyRow:
    id: int
    app_id: str
    property: str
    value: str
    region: str
    updated_at: str


def _rows_to_dataclass(rows: Iterable[sqlite3.Row], cls: Any) -> list[Any]:
    out: list[Any] = []
    for r in rows:
        out.append(cls(**dict(r)))
    return out


# --- members ---

def upsert_member(instance_id: str, app_id: str, region: str, hostname: str, host_ip: str) -> MemberRow:
    with connect() as conn:
        conn.execute(
            """
            INSERT INTO members (instance_id, app_id, region, hostname, host_ip, updated_at)
            VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT(instance_id) DO UPDATE SET
              app_id=excluded.app_id,
              region=excluded.region,
              hostname=excluded.hostname,
              host_ip=excluded.host_ip,
              updated_at=excluded.updated_at
            """,
            (instance_id, app_id, region, hostname, host_ip, utc_now()),
        )
        row = conn.execute("SELECT * FROM members WHERE instance_id=?", (instance_id,)).fetchone()
        return MemberRow(**dict(row))


def list_members(app_id: str | None = None) -> list[MemberRow]:
    with connect() as conn:
        if app_id:
            cur = conn.execute("SELECT * FROM members WHERE app_id=? ORDER BY region, hostname", (app_id,))
        else:
            cur = conn.execute("SELECT * FROM members ORDER BY app_id, region, hostname")
        return _rows_to_dataclass(cur.fetchall(), MemberRow)


def delete_member(instance_id: str) -> bool:
    with connect() as conn:
        cur = conn.execute("DELETE FROM members WHERE instance_id=?", (instance_id,))
        return cur.rowcount > 0


# --- acl rules ---

def list_acl_rules(from_port: int, to_port: int) -> list[str]:
    with connect() as conn:
        rows = conn.execute(
            "SELECT cidr FROM acl_rules WHERE from_port=? AND to_port=? ORDER BY id",
            (from_port, to_port),
        ).fetchall()
        return [r["cidr"] for r in rows]


def insert_acl_rules(cidrs: Iterable[str], from_port: int, to_port: int) -> None:
    now = utc_now()
    with connect() as conn:
        conn.executemany(
            "INSERT OR IGNORE INTO acl_rules (cidr, from_port, to_port, created_at) VALUES (?, ?, ?, ?)",
            [(c, from_port, to_port, now) for c in cidrs],
        )


def delete_acl_rules(cidrs: Iterable[str], from_port: int, to_port: int) -> None:
    with connect() as conn:
        conn.executemany(
            "DELETE FROM acl_rules WHERE cidr=? AND from_port=? AND to_port=?",
            [(c, from_port, to_port) for c in cidrs],
        )


# --- properties ---

def set_property(app_id: str, prop: str, value: str, region: str = "") -> PropertyRow:
    with connect() as conn:
        conn.execute(
            """
            INSERT INTO properties (app_id, property, value, region, updated_at)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(app_id, property, region) DO UPDATE SET
              value=excluded.value,
              updated_at=excluded.updated_at
            """,
            (app_id, prop, value, region, utc_now()),
        )
        row = conn.execute(
            "SELECT * FROM properties WHERE app_id=? AND property=? AND region=?",
            (app_id, prop, region),
        ).fetchone()
        return PropertyRow(**dict(row))


def list_properties(app_id: str) -> list[PropertyRow]:
    with connect() as conn:
        rows = conn.execute("SELECT * FROM properties WHERE app_id=? ORDER BY id", (app_id,)).fetchall()
        return _rows_to_dataclass(rows, PropertyRow)


def latest_events(limit: int = 100) -> list[dict[str, Any]]:
    with connect() as conn:
        rows = conn.execute("SELECT * FROM events ORDER BY id DESC LIMIT ?", (limit,)).fetchall()
        return [dict(r) for r in rows]
