from __future__ import annotations

import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Iterator, List, Optional

from .errors import StoreFailure
from .models import ApiRequestLog, ApiStatistics, DailySummary, ScreenshotTrace, Summary
from .utils import ensure_directory, format_ts, parse_ts, utc_now

SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS screenshot_traces (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        timestamp TEXT NOT NULL,
        file_path TEXT NOT NULL,
        width INTEGER NOT NULL,
        height INTEGER NOT NULL,
        file_size INTEGER NOT NULL,
        created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_traces_timestamp ON screenshot_traces(timestamp)",
    """
    CREATE TABLE IF NOT EXISTS summaries (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        start_time TEXT NOT NULL,
        end_time TEXT NOT NULL,
        content TEXT NOT NULL,
        screenshot_count INTEGER NOT NULL DEFAULT 0,
        created_at TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_summaries_start_time ON summaries(start_time)",
    """
    CREATE TABLE IF NOT EXISTS daily_summaries (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        date TEXT NOT NULL UNIQUE,
        content TEXT NOT NULL,
        screenshot_count INTEGER NOT NULL DEFAULT 0,
        summary_count INTEGER NOT NULL DEFAULT 0,
        total_duration_seconds INTEGER NOT NULL DEFAULT 0,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS api_request_log (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        timestamp TEXT NOT NULL,
        model TEXT NOT NULL,
        request_kind TEXT NOT NULL,
        prompt_tokens INTEGER,
        completion_tokens INTEGER,
        total_tokens INTEGER,
        duration_ms INTEGER NOT NULL,
        success INTEGER NOT NULL,
        error_kind TEXT,
        error_message TEXT
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_api_request_log_timestamp ON api_request_log(timestamp)",
    """
    CREATE TABLE IF NOT EXISTS settings (
        key TEXT PRIMARY KEY,
        value TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
)


class Database:
    def __init__(self, db_path: Path):
        self.db_path = db_path
        ensure_directory(db_path.parent)
        self._initialize()

    def _initialize(self) -> None:
        with self.connect() as conn:
            # WAL lets statistics readers run while a writer commits.
            conn.execute("PRAGMA journal_mode=WAL")
            for statement in SCHEMA:
                conn.execute(statement)

    @contextmanager
    def connect(self) -> Iterator[sqlite3.Connection]:
        try:
            conn = sqlite3.connect(self.db_path, timeout=10)
        except sqlite3.Error as exc:
            raise StoreFailure(f"Cannot open database {self.db_path}: {exc}") from exc
        try:
            with conn:
                yield conn
        except sqlite3.Error as exc:
            raise StoreFailure(f"Database error: {exc}") from exc
        finally:
            conn.close()


def _range_clause(column: str, start: Optional[datetime], end: Optional[datetime]) -> tuple[str, list]:
    clauses = []
    params: list = []
    if start is not None:
        clauses.append(f"{column} >= ?")
        params.append(format_ts(start))
    if end is not None:
        clauses.append(f"{column} < ?")
        params.append(format_ts(end))
    where = (" WHERE " + " AND ".join(clauses)) if clauses else ""
    return where, params


class TraceStore:
    def __init__(self, db: Database):
        self._db = db
        self._write_lock = threading.Lock()
        self._last_timestamp: Optional[datetime] = None

    def append(self, trace: ScreenshotTrace) -> ScreenshotTrace:
        with self._write_lock:
            timestamp = trace.timestamp
            if self._last_timestamp is not None and timestamp < self._last_timestamp:
                # Wall clock stepped back; keep insertion order non-decreasing.
                timestamp = self._last_timestamp
            with self._db.connect() as conn:
                cursor = conn.execute(
                    """
                    INSERT INTO screenshot_traces (timestamp, file_path, width, height, file_size)
                    VALUES (?, ?, ?, ?, ?)
                    """,
                    (format_ts(timestamp), str(trace.file_path), trace.width, trace.height, trace.file_size),
                )
                trace_id = int(cursor.lastrowid)
            self._last_timestamp = timestamp

        return ScreenshotTrace(
            id=trace_id,
            timestamp=parse_ts(format_ts(timestamp)),
            file_path=Path(trace.file_path),
            width=trace.width,
            height=trace.height,
            file_size=trace.file_size,
        )

    def query(
        self,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> List[ScreenshotTrace]:
        where, params = _range_clause("timestamp", start, end)
        sql = f"SELECT id, timestamp, file_path, width, height, file_size FROM screenshot_traces{where} ORDER BY timestamp ASC, id ASC"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(int(limit))
        with self._db.connect() as conn:
            rows = conn.execute(sql, params).fetchall()
        return [_trace_from_row(row) for row in rows]

    def count(self, start: Optional[datetime] = None, end: Optional[datetime] = None) -> int:
        where, params = _range_clause("timestamp", start, end)
        with self._db.connect() as conn:
            row = conn.execute(f"SELECT COUNT(*) FROM screenshot_traces{where}", params).fetchone()
        return int((row or [0])[0])

    def first_at_or_after(self, ts: datetime) -> Optional[ScreenshotTrace]:
        traces = self.query(start=ts, limit=1)
        return traces[0] if traces else None


def _trace_from_row(row) -> ScreenshotTrace:
    return ScreenshotTrace(
        id=row[0],
        timestamp=parse_ts(row[1]),
        file_path=Path(row[2]),
        width=row[3],
        height=row[4],
        file_size=row[5],
    )


class SummaryStore:
    def __init__(self, db: Database):
        self._db = db
        self._summary_lock = threading.Lock()
        self._log_lock = threading.Lock()

    def insert_summary(self, summary: Summary) -> Summary:
        if summary.end_time <= summary.start_time:
            raise StoreFailure("Summary window must have end_time after start_time")
        created_at = utc_now()
        with self._summary_lock, self._db.connect() as conn:
            overlap = conn.execute(
                "SELECT id FROM summaries WHERE start_time < ? AND end_time > ? LIMIT 1",
                (format_ts(summary.end_time), format_ts(summary.start_time)),
            ).fetchone()
            if overlap:
                raise StoreFailure(
                    f"Summary window {format_ts(summary.start_time)}..{format_ts(summary.end_time)} "
                    f"overlaps summary {overlap[0]}"
                )
            cursor = conn.execute(
                """
                INSERT INTO summaries (start_time, end_time, content, screenshot_count, created_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (
                    format_ts(summary.start_time),
                    format_ts(summary.end_time),
                    summary.content,
                    summary.screenshot_count,
                    format_ts(created_at),
                ),
            )
            summary_id = int(cursor.lastrowid)
        return Summary(
            id=summary_id,
            start_time=summary.start_time,
            end_time=summary.end_time,
            content=summary.content,
            screenshot_count=summary.screenshot_count,
            created_at=created_at,
        )

    def query_summaries(
        self,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> List[Summary]:
        where, params = _range_clause("start_time", start, end)
        sql = f"SELECT id, start_time, end_time, content, screenshot_count, created_at FROM summaries{where} ORDER BY start_time ASC"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(int(limit))
        with self._db.connect() as conn:
            rows = conn.execute(sql, params).fetchall()
        return [
            Summary(
                id=row[0],
                start_time=parse_ts(row[1]),
                end_time=parse_ts(row[2]),
                content=row[3],
                screenshot_count=row[4],
                created_at=parse_ts(row[5]),
            )
            for row in rows
        ]

    def count_summaries(self, start: Optional[datetime] = None, end: Optional[datetime] = None) -> int:
        where, params = _range_clause("start_time", start, end)
        with self._db.connect() as conn:
            row = conn.execute(f"SELECT COUNT(*) FROM summaries{where}", params).fetchone()
        return int((row or [0])[0])

    def latest_summary_end(self) -> Optional[datetime]:
        with self._db.connect() as conn:
            row = conn.execute("SELECT MAX(end_time) FROM summaries").fetchone()
        if not row or row[0] is None:
            return None
        return parse_ts(row[0])

    def upsert_daily_summary(self, daily: DailySummary) -> DailySummary:
        now = format_ts(utc_now())
        with self._summary_lock, self._db.connect() as conn:
            conn.execute(
                """
                INSERT INTO daily_summaries (date, content, screenshot_count, summary_count, total_duration_seconds, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(date) DO UPDATE SET
                    content = excluded.content,
                    screenshot_count = excluded.screenshot_count,
                    summary_count = excluded.summary_count,
                    total_duration_seconds = excluded.total_duration_seconds,
                    updated_at = excluded.updated_at
                """,
                (
                    daily.date,
                    daily.content,
                    daily.screenshot_count,
                    daily.summary_count,
                    daily.total_duration_seconds,
                    now,
                    now,
                ),
            )
        stored = self.get_daily_summary(daily.date)
        if stored is None:
            raise StoreFailure(f"Daily summary for {daily.date} was not persisted")
        return stored

    def get_daily_summary(self, day: str) -> Optional[DailySummary]:
        rows = self.daily_summaries(day, day)
        return rows[0] if rows else None

    def daily_summaries(self, start_date: Optional[str] = None, end_date: Optional[str] = None) -> List[DailySummary]:
        clauses = []
        params: list = []
        if start_date is not None:
            clauses.append("date >= ?")
            params.append(start_date)
        if end_date is not None:
            clauses.append("date <= ?")
            params.append(end_date)
        where = (" WHERE " + " AND ".join(clauses)) if clauses else ""
        with self._db.connect() as conn:
            rows = conn.execute(
                "SELECT id, date, content, screenshot_count, summary_count, total_duration_seconds, created_at, updated_at "
                f"FROM daily_summaries{where} ORDER BY date ASC",
                params,
            ).fetchall()
        return [
            DailySummary(
                id=row[0],
                date=row[1],
                content=row[2],
                screenshot_count=row[3],
                summary_count=row[4],
                total_duration_seconds=row[5],
                created_at=parse_ts(row[6]),
                updated_at=parse_ts(row[7]),
            )
            for row in rows
        ]

    def record_api_request(self, entry: ApiRequestLog) -> int:
        with self._log_lock, self._db.connect() as conn:
            cursor = conn.execute(
                """
                INSERT INTO api_request_log (
                    timestamp, model, request_kind, prompt_tokens, completion_tokens, total_tokens,
                    duration_ms, success, error_kind, error_message
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    format_ts(entry.timestamp),
                    entry.model,
                    entry.request_kind,
                    entry.prompt_tokens,
                    entry.completion_tokens,
                    entry.total_tokens,
                    int(entry.duration_ms),
                    1 if entry.success else 0,
                    entry.error_kind,
                    entry.error_message,
                ),
            )
            return int(cursor.lastrowid)

    def api_requests(self, start: Optional[datetime] = None, end: Optional[datetime] = None) -> List[ApiRequestLog]:
        where, params = _range_clause("timestamp", start, end)
        with self._db.connect() as conn:
            rows = conn.execute(
                "SELECT id, timestamp, model, request_kind, prompt_tokens, completion_tokens, total_tokens, "
                f"duration_ms, success, error_kind, error_message FROM api_request_log{where} ORDER BY id ASC",
                params,
            ).fetchall()
        return [
            ApiRequestLog(
                id=row[0],
                timestamp=parse_ts(row[1]),
                model=row[2],
                request_kind=row[3],
                prompt_tokens=row[4],
                completion_tokens=row[5],
                total_tokens=row[6],
                duration_ms=row[7],
                success=bool(row[8]),
                error_kind=row[9],
                error_message=row[10],
            )
            for row in rows
        ]

    def api_statistics(self, start: Optional[datetime] = None, end: Optional[datetime] = None) -> ApiStatistics:
        where, params = _range_clause("timestamp", start, end)
        with self._db.connect() as conn:
            row = conn.execute(
                f"""
                SELECT
                    COUNT(*),
                    COALESCE(SUM(CASE WHEN success = 1 THEN 1 ELSE 0 END), 0),
                    COALESCE(SUM(CASE WHEN success = 0 THEN 1 ELSE 0 END), 0),
                    COALESCE(SUM(prompt_tokens), 0),
                    COALESCE(SUM(completion_tokens), 0),
                    COALESCE(SUM(total_tokens), 0),
                    AVG(CASE WHEN success = 1 THEN duration_ms END)
                FROM api_request_log{where}
                """,
                params,
            ).fetchone()
        return ApiStatistics(
            total_requests=int(row[0]),
            successful_requests=int(row[1]),
            failed_requests=int(row[2]),
            total_prompt_tokens=int(row[3]),
            total_completion_tokens=int(row[4]),
            total_tokens=int(row[5]),
            avg_duration_ms=float(row[6]) if row[6] is not None else None,
        )


class SettingsStore:
    def __init__(self, db: Database):
        self._db = db

    def get(self, key: str) -> Optional[str]:
        with self._db.connect() as conn:
            row = conn.execute("SELECT value FROM settings WHERE key = ? LIMIT 1", (key,)).fetchone()
        return row[0] if row else None

    def set(self, key: str, value: str) -> None:
        with self._db.connect() as conn:
            conn.execute(
                """
                INSERT INTO settings (key, value, updated_at)
                VALUES (?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at
                """,
                (key, value, format_ts(utc_now())),
            )
