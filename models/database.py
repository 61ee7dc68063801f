"""SQLite database initialization, CRUD and conditional claim operations."""

import json
import logging
import sqlite3
from contextlib import contextmanager
from datetime import date, datetime
from pathlib import Path
from typing import Iterator, Optional

from config.exceptions import DatabaseError
from models.chapter import Chapter, ChapterWriteJob
from models.enums import (
    ChapterJobStatus, ErrorSeverity, ErrorStatus, ProductionStatus,
    PublishStatus, QualityAction, RewriteOutcome, IN_FLIGHT_JOB_STATUSES,
    OPEN_JOB_STATUSES, ensure_transition,
)
from models.production import ProductionContext, ProductionRecord, ScoreHistory
from models.publish import PublishJob
from models.quality import RewriteAttempt
from tools.time_utils import from_iso, to_iso, utc_now

logger = logging.getLogger(__name__)

# SQL for creating all tables
_CREATE_TABLES_SQL = """
CREATE TABLE IF NOT EXISTS productions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    title TEXT NOT NULL,
    genre TEXT DEFAULT '',
    premise TEXT DEFAULT '',
    persona TEXT DEFAULT '',
    status TEXT NOT NULL DEFAULT 'queued',
    priority INTEGER NOT NULL DEFAULT 0,
    current_chapter INTEGER NOT NULL DEFAULT 0,
    total_chapters INTEGER,
    chapters_per_day INTEGER NOT NULL DEFAULT 20,
    last_write_date TEXT,
    chapters_written_today INTEGER NOT NULL DEFAULT 0,
    running_summary TEXT DEFAULT '',
    context TEXT,
    score_history TEXT,
    average_score REAL,
    consecutive_error_count INTEGER NOT NULL DEFAULT 0,
    queued_at TEXT NOT NULL,
    activated_at TEXT,
    paused_at TEXT,
    pause_reason TEXT,
    finished_at TEXT,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS chapter_write_jobs (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    production_id INTEGER NOT NULL REFERENCES productions(id),
    chapter_number INTEGER NOT NULL,
    status TEXT NOT NULL DEFAULT 'pending',
    attempt_count INTEGER NOT NULL DEFAULT 0,
    scheduled_slot TEXT,
    scheduled_time TEXT,
    previous_summary TEXT DEFAULT '',
    objectives TEXT,
    target_intensity REAL DEFAULT 50,
    arc_number INTEGER DEFAULT 1,
    chapter_id INTEGER REFERENCES chapters(id),
    word_count INTEGER DEFAULT 0,
    final_score REAL,
    error_message TEXT,
    created_at TEXT NOT NULL,
    started_at TEXT,
    completed_at TEXT,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS chapters (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    production_id INTEGER NOT NULL REFERENCES productions(id),
    chapter_number INTEGER NOT NULL,
    title TEXT NOT NULL DEFAULT '',
    content TEXT NOT NULL DEFAULT '',
    summary TEXT DEFAULT '',
    word_count INTEGER DEFAULT 0,
    quality_score REAL,
    needs_review INTEGER NOT NULL DEFAULT 0,
    is_visible INTEGER NOT NULL DEFAULT 0,
    published_at TEXT,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS rewrite_attempts (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    job_id INTEGER NOT NULL REFERENCES chapter_write_jobs(id),
    attempt INTEGER NOT NULL,
    score_before REAL,
    score_after REAL,
    accepted INTEGER NOT NULL DEFAULT 0,
    outcome TEXT NOT NULL,
    action TEXT,
    instructions TEXT DEFAULT '',
    error_message TEXT,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS publish_jobs (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    production_id INTEGER NOT NULL REFERENCES productions(id),
    chapter_id INTEGER NOT NULL REFERENCES chapters(id),
    chapter_number INTEGER NOT NULL,
    scheduled_time TEXT NOT NULL,
    slot TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'scheduled',
    retry_count INTEGER NOT NULL DEFAULT 0,
    error_message TEXT,
    published_at TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS factory_errors (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    production_id INTEGER,
    chapter_number INTEGER,
    error_type TEXT NOT NULL,
    severity TEXT NOT NULL DEFAULT 'error',
    status TEXT NOT NULL DEFAULT 'new',
    message TEXT NOT NULL,
    created_at TEXT NOT NULL,
    resolved_at TEXT
);

CREATE TABLE IF NOT EXISTS daily_stats (
    stat_date TEXT PRIMARY KEY,
    productions_active INTEGER DEFAULT 0,
    productions_queued INTEGER DEFAULT 0,
    productions_paused INTEGER DEFAULT 0,
    productions_finished INTEGER DEFAULT 0,
    productions_promoted INTEGER DEFAULT 0,
    chapters_written INTEGER DEFAULT 0,
    chapters_published INTEGER DEFAULT 0,
    errors INTEGER DEFAULT 0,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS pipeline_markers (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
"""

# Indexes and constraints added via migration (idempotent)
_MIGRATION_SQL = [
    "CREATE INDEX IF NOT EXISTS idx_productions_status ON productions(status, priority DESC, queued_at)",
    # One live job per chapter; failed jobs may be re-created
    "CREATE UNIQUE INDEX IF NOT EXISTS idx_jobs_open_chapter ON chapter_write_jobs(production_id, chapter_number) "
    "WHERE status != 'failed'",
    # At most one job per production in flight
    "CREATE UNIQUE INDEX IF NOT EXISTS idx_jobs_single_writer ON chapter_write_jobs(production_id) "
    "WHERE status IN ('writing', 'quality_check', 'rewriting')",
    "CREATE INDEX IF NOT EXISTS idx_jobs_status_time ON chapter_write_jobs(status, scheduled_time)",
    "CREATE UNIQUE INDEX IF NOT EXISTS idx_chapters_production_number ON chapters(production_id, chapter_number)",
    "CREATE INDEX IF NOT EXISTS idx_rewrite_attempts_job ON rewrite_attempts(job_id)",
    "CREATE INDEX IF NOT EXISTS idx_publish_status_time ON publish_jobs(status, scheduled_time)",
    "CREATE INDEX IF NOT EXISTS idx_errors_status_created ON factory_errors(status, created_at)",
]

_IN_FLIGHT = tuple(s.value for s in IN_FLIGHT_JOB_STATUSES)
_OPEN = tuple(s.value for s in OPEN_JOB_STATUSES)

# Columns that transition_write_job may set alongside the status
_JOB_FIELDS = frozenset({
    "chapter_id", "word_count", "final_score", "error_message",
    "started_at", "completed_at", "attempt_count",
})


def _placeholders(values: tuple) -> str:
    return ", ".join("?" for _ in values)


class Database:
    """SQLite store for the production pipeline.

    Every status change is a conditional ``UPDATE ... WHERE status = ?`` whose
    row count tells the caller whether it won the claim; coordination between
    concurrent workers and processes happens here and nowhere else.
    """

    def __init__(self, db_path: str | Path, timeout: float = 30.0):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.timeout = timeout
        self._init_db()

    @contextmanager
    def _get_conn(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(str(self.db_path), timeout=self.timeout)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        try:
            with conn:
                yield conn
        except sqlite3.Error as e:
            raise DatabaseError(f"SQLite operation failed: {e}", {"db": str(self.db_path)}) from e
        finally:
            conn.close()

    def _init_db(self):
        with self._get_conn() as conn:
            conn.execute("PRAGMA journal_mode = WAL")
            conn.executescript(_CREATE_TABLES_SQL)
        self._migrate()

    def _migrate(self):
        """Apply idempotent schema migrations (indexes, constraints)."""
        with self._get_conn() as conn:
            for sql in _MIGRATION_SQL:
                try:
                    conn.execute(sql)
                except sqlite3.OperationalError as e:
                    logger.debug("Migration skipped (already applied): %s", e)

    # ---- Production CRUD ----

    def create_production(self, record: ProductionRecord) -> int:
        now = to_iso(utc_now())
        with self._get_conn() as conn:
            cursor = conn.execute(
                "INSERT INTO productions (title, genre, premise, persona, status, priority, "
                "current_chapter, total_chapters, chapters_per_day, running_summary, context, "
                "score_history, queued_at, updated_at) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (record.title, record.genre, record.premise, record.persona,
                 record.status.value, record.priority, record.current_chapter,
                 record.total_chapters, record.chapters_per_day, record.running_summary,
                 record.context.to_json(), record.score_history.to_json(),
                 to_iso(record.queued_at) or now, now),
            )
            return cursor.lastrowid

    def get_production(self, production_id: int) -> Optional[ProductionRecord]:
        with self._get_conn() as conn:
            row = conn.execute(
                "SELECT * FROM productions WHERE id = ?", (production_id,),
            ).fetchone()
            if not row:
                return None
            return self._row_to_production(row)

    def list_productions(
        self,
        status: Optional[ProductionStatus] = None,
        limit: Optional[int] = None,
    ) -> list[ProductionRecord]:
        sql = "SELECT * FROM productions"
        params: list = []
        if status:
            sql += " WHERE status = ?"
            params.append(status.value)
        sql += " ORDER BY priority DESC, queued_at ASC, id ASC"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)
        with self._get_conn() as conn:
            return [self._row_to_production(r) for r in conn.execute(sql, params).fetchall()]

    def update_production(self, record: ProductionRecord) -> None:
        """Persist every mutable field of ``record`` (status included)."""
        with self._get_conn() as conn:
            conn.execute(
                "UPDATE productions SET status=?, priority=?, current_chapter=?, total_chapters=?, "
                "chapters_per_day=?, last_write_date=?, chapters_written_today=?, "
                "running_summary=?, context=?, score_history=?, average_score=?, "
                "consecutive_error_count=?, activated_at=?, paused_at=?, pause_reason=?, "
                "finished_at=?, updated_at=? WHERE id=?",
                (record.status.value, record.priority, record.current_chapter,
                 record.total_chapters, record.chapters_per_day,
                 record.last_write_date.isoformat() if record.last_write_date else None,
                 record.chapters_written_today, record.running_summary,
                 record.context.to_json(), record.score_history.to_json(),
                 record.average_score, record.consecutive_error_count,
                 to_iso(record.activated_at), to_iso(record.paused_at), record.pause_reason,
                 to_iso(record.finished_at), to_iso(utc_now()), record.id),
            )

    def claim_production(
        self,
        production_id: int,
        expected: ProductionStatus,
        target: ProductionStatus,
    ) -> bool:
        """Conditionally move a production from ``expected`` to ``target``."""
        ensure_transition(expected, target)
        with self._get_conn() as conn:
            cursor = conn.execute(
                "UPDATE productions SET status = ?, updated_at = ? WHERE id = ? AND status = ?",
                (target.value, to_iso(utc_now()), production_id, expected.value),
            )
            return cursor.rowcount == 1

    def activate_queued(self, n: int, max_active: int, now: Optional[datetime] = None) -> list[int]:
        """Promote up to ``n`` queued productions without exceeding ``max_active``.

        The count, the selection and the update run in one IMMEDIATE
        transaction so two concurrent callers cannot both see free capacity.
        """
        if n <= 0:
            return []
        now_iso = to_iso(now or utc_now())
        with self._get_conn() as conn:
            conn.execute("BEGIN IMMEDIATE")
            active = conn.execute(
                "SELECT COUNT(*) AS c FROM productions WHERE status IN (?, ?)",
                (ProductionStatus.ACTIVE.value, ProductionStatus.WRITING.value),
            ).fetchone()["c"]
            slots = min(n, max_active - active)
            if slots <= 0:
                return []
            rows = conn.execute(
                "SELECT id FROM productions WHERE status = ? "
                "ORDER BY priority DESC, queued_at ASC, id ASC LIMIT ?",
                (ProductionStatus.QUEUED.value, slots),
            ).fetchall()
            ids = [r["id"] for r in rows]
            for pid in ids:
                conn.execute(
                    "UPDATE productions SET status = ?, activated_at = ?, updated_at = ? "
                    "WHERE id = ? AND status = ?",
                    (ProductionStatus.ACTIVE.value, now_iso, now_iso, pid,
                     ProductionStatus.QUEUED.value),
                )
            return ids

    def count_productions_by_status(self) -> dict[ProductionStatus, int]:
        with self._get_conn() as conn:
            rows = conn.execute(
                "SELECT status, COUNT(*) AS c FROM productions GROUP BY status"
            ).fetchall()
        counts = {s: 0 for s in ProductionStatus}
        for r in rows:
            counts[ProductionStatus(r["status"])] = r["c"]
        return counts

    def reset_daily_counters(self, day: date, now: Optional[datetime] = None) -> Optional[int]:
        """Zero ``chapters_written_today`` for non-finished productions once per ``day``.

        Returns the number of rows reset, or None when ``day`` was already reset.
        """
        now_iso = to_iso(now or utc_now())
        with self._get_conn() as conn:
            conn.execute("BEGIN IMMEDIATE")
            row = conn.execute(
                "SELECT value FROM pipeline_markers WHERE key = 'daily_reset'"
            ).fetchone()
            if row and row["value"] == day.isoformat():
                return None
            cursor = conn.execute(
                "UPDATE productions SET chapters_written_today = 0, updated_at = ? "
                "WHERE status != ?",
                (now_iso, ProductionStatus.FINISHED.value),
            )
            conn.execute(
                "INSERT INTO pipeline_markers (key, value, updated_at) VALUES ('daily_reset', ?, ?) "
                "ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at",
                (day.isoformat(), now_iso),
            )
            return cursor.rowcount

    def list_stuck_productions(self, updated_before: datetime) -> list[ProductionRecord]:
        with self._get_conn() as conn:
            rows = conn.execute(
                "SELECT * FROM productions WHERE status = ? AND updated_at < ?",
                (ProductionStatus.WRITING.value, to_iso(updated_before)),
            ).fetchall()
            return [self._row_to_production(r) for r in rows]

    def _row_to_production(self, row) -> ProductionRecord:
        return ProductionRecord(
            id=row["id"], title=row["title"], genre=row["genre"] or "",
            premise=row["premise"] or "", persona=row["persona"] or "",
            status=ProductionStatus(row["status"]), priority=row["priority"],
            current_chapter=row["current_chapter"], total_chapters=row["total_chapters"],
            chapters_per_day=row["chapters_per_day"],
            last_write_date=date.fromisoformat(row["last_write_date"]) if row["last_write_date"] else None,
            chapters_written_today=row["chapters_written_today"],
            running_summary=row["running_summary"] or "",
            context=ProductionContext.from_json(row["context"]),
            score_history=ScoreHistory.from_json(row["score_history"]),
            consecutive_error_count=row["consecutive_error_count"],
            queued_at=from_iso(row["queued_at"]), activated_at=from_iso(row["activated_at"]),
            paused_at=from_iso(row["paused_at"]), pause_reason=row["pause_reason"],
            finished_at=from_iso(row["finished_at"]), updated_at=from_iso(row["updated_at"]),
        )

    # ---- Chapter write jobs ----

    def create_write_job(self, job: ChapterWriteJob) -> Optional[int]:
        """Insert a job; returns None if a live job already exists for that chapter."""
        now = to_iso(utc_now())
        try:
            with self._get_conn() as conn:
                cursor = conn.execute(
                    "INSERT INTO chapter_write_jobs (production_id, chapter_number, status, "
                    "scheduled_slot, scheduled_time, previous_summary, objectives, "
                    "target_intensity, arc_number, created_at, updated_at) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                    (job.production_id, job.chapter_number, job.status.value,
                     job.scheduled_slot, to_iso(job.scheduled_time), job.previous_summary,
                     json.dumps(job.objectives, ensure_ascii=False), job.target_intensity,
                     job.arc_number, now, now),
                )
                return cursor.lastrowid
        except DatabaseError as e:
            if isinstance(e.__cause__, sqlite3.IntegrityError):
                logger.debug(
                    "Write job for production %d chapter %d already exists",
                    job.production_id, job.chapter_number,
                )
                return None
            raise

    def get_write_job(self, job_id: int) -> Optional[ChapterWriteJob]:
        with self._get_conn() as conn:
            row = conn.execute(
                "SELECT * FROM chapter_write_jobs WHERE id = ?", (job_id,),
            ).fetchone()
            return self._row_to_job(row) if row else None

    def list_pending_jobs(self, limit: Optional[int] = None) -> list[ChapterWriteJob]:
        """Pending jobs ordered by scheduled time, then chapter number."""
        sql = (
            "SELECT * FROM chapter_write_jobs WHERE status = ? "
            "ORDER BY scheduled_time ASC, production_id ASC, chapter_number ASC"
        )
        params: list = [ChapterJobStatus.PENDING.value]
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)
        with self._get_conn() as conn:
            return [self._row_to_job(r) for r in conn.execute(sql, params).fetchall()]

    def list_jobs(
        self,
        production_id: int,
        statuses: Optional[tuple[ChapterJobStatus, ...]] = None,
    ) -> list[ChapterWriteJob]:
        sql = "SELECT * FROM chapter_write_jobs WHERE production_id = ?"
        params: list = [production_id]
        if statuses:
            values = tuple(s.value for s in statuses)
            sql += f" AND status IN ({_placeholders(values)})"
            params.extend(values)
        sql += " ORDER BY chapter_number ASC, id ASC"
        with self._get_conn() as conn:
            return [self._row_to_job(r) for r in conn.execute(sql, params).fetchall()]

    def max_open_chapter(self, production_id: int) -> Optional[int]:
        with self._get_conn() as conn:
            row = conn.execute(
                f"SELECT MAX(chapter_number) AS m FROM chapter_write_jobs "
                f"WHERE production_id = ? AND status IN ({_placeholders(_OPEN)})",
                (production_id, *_OPEN),
            ).fetchone()
            return row["m"]

    def count_open_jobs(self, production_id: int) -> int:
        with self._get_conn() as conn:
            row = conn.execute(
                f"SELECT COUNT(*) AS c FROM chapter_write_jobs "
                f"WHERE production_id = ? AND status IN ({_placeholders(_OPEN)})",
                (production_id, *_OPEN),
            ).fetchone()
            return row["c"]

    def claim_write_job(self, job_id: int, now: Optional[datetime] = None) -> bool:
        """pending -> writing. Fails if another worker got there first or the
        production already has a job in flight."""
        now_iso = to_iso(now or utc_now())
        try:
            with self._get_conn() as conn:
                cursor = conn.execute(
                    "UPDATE chapter_write_jobs SET status = ?, attempt_count = attempt_count + 1, "
                    "started_at = ?, updated_at = ? WHERE id = ? AND status = ?",
                    (ChapterJobStatus.WRITING.value, now_iso, now_iso, job_id,
                     ChapterJobStatus.PENDING.value),
                )
                return cursor.rowcount == 1
        except DatabaseError as e:
            if isinstance(e.__cause__, sqlite3.IntegrityError):
                return False
            raise

    @staticmethod
    def _update_job_status(conn, job_id: int, expected: ChapterJobStatus, target: ChapterJobStatus,
                           now: datetime, fields: dict) -> bool:
        ensure_transition(expected, target)
        unknown = set(fields) - _JOB_FIELDS
        if unknown:
            raise ValueError(f"Unknown job fields: {sorted(unknown)}")
        assignments = ["status = ?", "updated_at = ?"]
        params: list = [target.value, to_iso(now)]
        for key, value in fields.items():
            assignments.append(f"{key} = ?")
            params.append(to_iso(value) if isinstance(value, datetime) else value)
        params.extend([job_id, expected.value])
        cursor = conn.execute(
            f"UPDATE chapter_write_jobs SET {', '.join(assignments)} "
            f"WHERE id = ? AND status = ?",
            params,
        )
        return cursor.rowcount == 1

    def transition_write_job(
        self,
        job_id: int,
        expected: ChapterJobStatus,
        target: ChapterJobStatus,
        now: Optional[datetime] = None,
        **fields,
    ) -> bool:
        """Conditionally move a job between statuses, optionally setting result fields."""
        with self._get_conn() as conn:
            return self._update_job_status(conn, job_id, expected, target, now or utc_now(), fields)

    def complete_write_job(
        self,
        job_id: int,
        expected: ChapterJobStatus,
        publish_job: PublishJob,
        now: Optional[datetime] = None,
        **fields,
    ) -> Optional[int]:
        """Mark a job ``completed`` and queue its chapter's release in one transaction.

        Returns the new publish job id, or None if the job had left ``expected``.
        """
        now = now or utc_now()
        with self._get_conn() as conn:
            if not self._update_job_status(conn, job_id, expected, ChapterJobStatus.COMPLETED, now, fields):
                return None
            return self._insert_publish_job(conn, publish_job, now)

    def fail_later_pending_jobs(self, production_id: int, after_chapter: int, message: str) -> int:
        """Fail still-pending jobs after ``after_chapter`` so chapters stay in order."""
        now = to_iso(utc_now())
        with self._get_conn() as conn:
            cursor = conn.execute(
                "UPDATE chapter_write_jobs SET status = ?, error_message = ?, updated_at = ? "
                "WHERE production_id = ? AND chapter_number > ? AND status = ?",
                (ChapterJobStatus.FAILED.value, message, now, production_id,
                 after_chapter, ChapterJobStatus.PENDING.value),
            )
            return cursor.rowcount

    def list_stale_jobs(self, updated_before: datetime) -> list[ChapterWriteJob]:
        with self._get_conn() as conn:
            rows = conn.execute(
                f"SELECT * FROM chapter_write_jobs WHERE status IN ({_placeholders(_IN_FLIGHT)}) "
                f"AND updated_at < ? ORDER BY id",
                (*_IN_FLIGHT, to_iso(updated_before)),
            ).fetchall()
            return [self._row_to_job(r) for r in rows]

    def count_jobs_completed_between(self, start: datetime, end: datetime) -> int:
        with self._get_conn() as conn:
            row = conn.execute(
                "SELECT COUNT(*) AS c FROM chapter_write_jobs WHERE status = ? "
                "AND completed_at >= ? AND completed_at < ?",
                (ChapterJobStatus.COMPLETED.value, to_iso(start), to_iso(end)),
            ).fetchone()
            return row["c"]

    def _row_to_job(self, row) -> ChapterWriteJob:
        return ChapterWriteJob(
            id=row["id"], production_id=row["production_id"],
            chapter_number=row["chapter_number"],
            status=ChapterJobStatus(row["status"]),
            attempt_count=row["attempt_count"],
            scheduled_slot=row["scheduled_slot"],
            scheduled_time=from_iso(row["scheduled_time"]),
            previous_summary=row["previous_summary"] or "",
            objectives=json.loads(row["objectives"]) if row["objectives"] else [],
            target_intensity=row["target_intensity"],
            arc_number=row["arc_number"],
            chapter_id=row["chapter_id"], word_count=row["word_count"] or 0,
            final_score=row["final_score"], error_message=row["error_message"],
            created_at=from_iso(row["created_at"]), started_at=from_iso(row["started_at"]),
            completed_at=from_iso(row["completed_at"]), updated_at=from_iso(row["updated_at"]),
        )

    # ---- Chapter CRUD ----

    def save_chapter(self, chapter: Chapter) -> int:
        """Insert or replace the chapter for (production, number); returns its id."""
        with self._get_conn() as conn:
            conn.execute(
                "INSERT INTO chapters (production_id, chapter_number, title, content, summary, "
                "word_count, quality_score, needs_review, is_visible, created_at) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, 0, ?) "
                "ON CONFLICT(production_id, chapter_number) DO UPDATE SET "
                "title = excluded.title, content = excluded.content, summary = excluded.summary, "
                "word_count = excluded.word_count, quality_score = excluded.quality_score, "
                "needs_review = excluded.needs_review",
                (chapter.production_id, chapter.chapter_number, chapter.title, chapter.content,
                 chapter.summary, chapter.word_count, chapter.quality_score,
                 int(chapter.needs_review), to_iso(chapter.created_at or utc_now())),
            )
            row = conn.execute(
                "SELECT id FROM chapters WHERE production_id = ? AND chapter_number = ?",
                (chapter.production_id, chapter.chapter_number),
            ).fetchone()
            return row["id"]

    def get_chapter(self, chapter_id: int) -> Optional[Chapter]:
        with self._get_conn() as conn:
            row = conn.execute("SELECT * FROM chapters WHERE id = ?", (chapter_id,)).fetchone()
            return self._row_to_chapter(row) if row else None

    def get_recent_chapters(self, production_id: int, before_chapter: int, limit: int) -> list[Chapter]:
        """Up to ``limit`` chapters numbered below ``before_chapter``, newest first."""
        with self._get_conn() as conn:
            rows = conn.execute(
                "SELECT * FROM chapters WHERE production_id = ? AND chapter_number < ? "
                "ORDER BY chapter_number DESC LIMIT ?",
                (production_id, before_chapter, limit),
            ).fetchall()
            return [self._row_to_chapter(r) for r in rows]

    def _row_to_chapter(self, row) -> Chapter:
        return Chapter(
            id=row["id"], production_id=row["production_id"],
            chapter_number=row["chapter_number"], title=row["title"],
            content=row["content"], summary=row["summary"] or "",
            word_count=row["word_count"] or 0, quality_score=row["quality_score"],
            needs_review=bool(row["needs_review"]), is_visible=bool(row["is_visible"]),
            published_at=from_iso(row["published_at"]), created_at=from_iso(row["created_at"]),
        )

    # ---- Rewrite attempts (append-only) ----

    def add_rewrite_attempt(self, attempt: RewriteAttempt) -> int:
        with self._get_conn() as conn:
            cursor = conn.execute(
                "INSERT INTO rewrite_attempts (job_id, attempt, score_before, score_after, "
                "accepted, outcome, action, instructions, error_message, created_at) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (attempt.job_id, attempt.attempt, attempt.score_before, attempt.score_after,
                 int(attempt.accepted), attempt.outcome.value,
                 attempt.action.value if attempt.action else None,
                 attempt.instructions, attempt.error_message,
                 to_iso(attempt.created_at or utc_now())),
            )
            return cursor.lastrowid

    def get_rewrite_attempts(self, job_id: int) -> list[RewriteAttempt]:
        with self._get_conn() as conn:
            rows = conn.execute(
                "SELECT * FROM rewrite_attempts WHERE job_id = ? ORDER BY attempt, id",
                (job_id,),
            ).fetchall()
            return [
                RewriteAttempt(
                    id=r["id"], job_id=r["job_id"], attempt=r["attempt"],
                    score_before=r["score_before"], score_after=r["score_after"],
                    accepted=bool(r["accepted"]), outcome=RewriteOutcome(r["outcome"]),
                    action=QualityAction(r["action"]) if r["action"] else None,
                    instructions=r["instructions"] or "", error_message=r["error_message"],
                    created_at=from_iso(r["created_at"]),
                )
                for r in rows
            ]

    # ---- Publish jobs ----

    @staticmethod
    def _insert_publish_job(conn, job: PublishJob, now: datetime) -> int:
        now_iso = to_iso(now)
        cursor = conn.execute(
            "INSERT INTO publish_jobs (production_id, chapter_id, chapter_number, "
            "scheduled_time, slot, status, created_at, updated_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
            (job.production_id, job.chapter_id, job.chapter_number,
             to_iso(job.scheduled_time), job.slot, job.status.value, now_iso, now_iso),
        )
        return cursor.lastrowid

    def create_publish_job(self, job: PublishJob) -> int:
        with self._get_conn() as conn:
            return self._insert_publish_job(conn, job, utc_now())

    def get_publish_job(self, job_id: int) -> Optional[PublishJob]:
        with self._get_conn() as conn:
            row = conn.execute("SELECT * FROM publish_jobs WHERE id = ?", (job_id,)).fetchone()
            return self._row_to_publish(row) if row else None

    def list_publish_jobs(
        self,
        status: Optional[PublishStatus] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> list[PublishJob]:
        """Publish jobs filtered by status and [start, end), ordered by scheduled time."""
        sql = "SELECT * FROM publish_jobs WHERE 1 = 1"
        params: list = []
        if status:
            sql += " AND status = ?"
            params.append(status.value)
        if start:
            sql += " AND scheduled_time >= ?"
            params.append(to_iso(start))
        if end:
            sql += " AND scheduled_time < ?"
            params.append(to_iso(end))
        sql += " ORDER BY scheduled_time ASC, id ASC"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)
        with self._get_conn() as conn:
            return [self._row_to_publish(r) for r in conn.execute(sql, params).fetchall()]

    def list_due_publish_jobs(self, now: datetime, limit: Optional[int] = None) -> list[PublishJob]:
        sql = (
            "SELECT * FROM publish_jobs WHERE status = ? AND scheduled_time <= ? "
            "ORDER BY scheduled_time ASC, id ASC"
        )
        params: list = [PublishStatus.SCHEDULED.value, to_iso(now)]
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)
        with self._get_conn() as conn:
            return [self._row_to_publish(r) for r in conn.execute(sql, params).fetchall()]

    def list_retryable_publish_jobs(self, max_retries: int, limit: Optional[int] = None) -> list[PublishJob]:
        sql = (
            "SELECT * FROM publish_jobs WHERE status = ? AND retry_count < ? "
            "ORDER BY scheduled_time ASC, id ASC"
        )
        params: list = [PublishStatus.FAILED.value, max_retries]
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)
        with self._get_conn() as conn:
            return [self._row_to_publish(r) for r in conn.execute(sql, params).fetchall()]

    def list_stale_publish_jobs(self, updated_before: datetime) -> list[PublishJob]:
        """Jobs left in ``publishing`` since before ``updated_before`` (an interrupted pass)."""
        with self._get_conn() as conn:
            rows = conn.execute(
                "SELECT * FROM publish_jobs WHERE status = ? AND updated_at < ? "
                "ORDER BY scheduled_time ASC, id ASC",
                (PublishStatus.PUBLISHING.value, to_iso(updated_before)),
            ).fetchall()
            return [self._row_to_publish(r) for r in rows]

    def claim_publish_job(
        self,
        job_id: int,
        expected: PublishStatus,
        target: PublishStatus,
        now: Optional[datetime] = None,
    ) -> bool:
        ensure_transition(expected, target)
        with self._get_conn() as conn:
            cursor = conn.execute(
                "UPDATE publish_jobs SET status = ?, updated_at = ? WHERE id = ? AND status = ?",
                (target.value, to_iso(now or utc_now()), job_id, expected.value),
            )
            return cursor.rowcount == 1

    def complete_publish_job(self, job_id: int, chapter_id: int, now: datetime) -> bool:
        """Flip chapter visibility and mark the job published in one transaction."""
        now_iso = to_iso(now)
        with self._get_conn() as conn:
            updated = conn.execute(
                "UPDATE chapters SET is_visible = 1, published_at = ? WHERE id = ?",
                (now_iso, chapter_id),
            ).rowcount
            if updated != 1:
                raise DatabaseError(f"Chapter {chapter_id} not found", {"publish_job": job_id})
            cursor = conn.execute(
                "UPDATE publish_jobs SET status = ?, published_at = ?, updated_at = ? "
                "WHERE id = ? AND status = ?",
                (PublishStatus.PUBLISHED.value, now_iso, now_iso, job_id,
                 PublishStatus.PUBLISHING.value),
            )
            return cursor.rowcount == 1

    def fail_publish_job(self, job_id: int, message: str) -> bool:
        with self._get_conn() as conn:
            cursor = conn.execute(
                "UPDATE publish_jobs SET status = ?, retry_count = retry_count + 1, "
                "error_message = ?, updated_at = ? WHERE id = ? AND status = ?",
                (PublishStatus.FAILED.value, message, to_iso(utc_now()), job_id,
                 PublishStatus.PUBLISHING.value),
            )
            return cursor.rowcount == 1

    def delete_scheduled_publish_job(self, job_id: int) -> bool:
        with self._get_conn() as conn:
            cursor = conn.execute(
                "DELETE FROM publish_jobs WHERE id = ? AND status = ?",
                (job_id, PublishStatus.SCHEDULED.value),
            )
            return cursor.rowcount == 1

    def reschedule_publish_job(self, job_id: int, scheduled_time: datetime, slot: str) -> bool:
        with self._get_conn() as conn:
            cursor = conn.execute(
                "UPDATE publish_jobs SET scheduled_time = ?, slot = ?, updated_at = ? "
                "WHERE id = ? AND status = ?",
                (to_iso(scheduled_time), slot, to_iso(utc_now()), job_id,
                 PublishStatus.SCHEDULED.value),
            )
            return cursor.rowcount == 1

    def count_published_between(self, start: datetime, end: datetime) -> int:
        with self._get_conn() as conn:
            row = conn.execute(
                "SELECT COUNT(*) AS c FROM publish_jobs WHERE status = ? "
                "AND published_at >= ? AND published_at < ?",
                (PublishStatus.PUBLISHED.value, to_iso(start), to_iso(end)),
            ).fetchone()
            return row["c"]

    def count_publish_jobs_by_status(self) -> dict[PublishStatus, int]:
        with self._get_conn() as conn:
            rows = conn.execute(
                "SELECT status, COUNT(*) AS c FROM publish_jobs GROUP BY status"
            ).fetchall()
        counts = {s: 0 for s in PublishStatus}
        for r in rows:
            counts[PublishStatus(r["status"])] = r["c"]
        return counts

    def _row_to_publish(self, row) -> PublishJob:
        return PublishJob(
            id=row["id"], production_id=row["production_id"], chapter_id=row["chapter_id"],
            chapter_number=row["chapter_number"],
            scheduled_time=from_iso(row["scheduled_time"]), slot=row["slot"],
            status=PublishStatus(row["status"]), retry_count=row["retry_count"],
            error_message=row["error_message"], published_at=from_iso(row["published_at"]),
            created_at=from_iso(row["created_at"]),
        )

    # ---- Error log ----

    def log_error(
        self,
        error_type: str,
        message: str,
        severity: ErrorSeverity = ErrorSeverity.ERROR,
        production_id: Optional[int] = None,
        chapter_number: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> int:
        with self._get_conn() as conn:
            cursor = conn.execute(
                "INSERT INTO factory_errors (production_id, chapter_number, error_type, "
                "severity, status, message, created_at) VALUES (?, ?, ?, ?, ?, ?, ?)",
                (production_id, chapter_number, error_type, severity.value,
                 ErrorStatus.NEW.value, message[:2000], to_iso(now or utc_now())),
            )
            return cursor.lastrowid

    def list_errors(self, status: Optional[ErrorStatus] = None) -> list[dict]:
        sql = "SELECT * FROM factory_errors"
        params: list = []
        if status:
            sql += " WHERE status = ?"
            params.append(status.value)
        sql += " ORDER BY created_at DESC, id DESC"
        with self._get_conn() as conn:
            return [dict(r) for r in conn.execute(sql, params).fetchall()]

    def cleanup_errors(
        self,
        delete_before: datetime,
        resolve_before: datetime,
        now: Optional[datetime] = None,
    ) -> tuple[int, int]:
        """Delete old resolved/ignored errors and auto-resolve stale low-severity ones.

        Returns (deleted, auto_resolved).
        """
        with self._get_conn() as conn:
            deleted = conn.execute(
                "DELETE FROM factory_errors WHERE status IN (?, ?) AND created_at < ?",
                (ErrorStatus.RESOLVED.value, ErrorStatus.IGNORED.value, to_iso(delete_before)),
            ).rowcount
            resolved = conn.execute(
                "UPDATE factory_errors SET status = ?, resolved_at = ? "
                "WHERE status = ? AND severity IN (?, ?) AND created_at < ?",
                (ErrorStatus.RESOLVED.value, to_iso(now or utc_now()), ErrorStatus.NEW.value,
                 ErrorSeverity.INFO.value, ErrorSeverity.WARNING.value, to_iso(resolve_before)),
            ).rowcount
            return deleted, resolved

    def count_errors_between(self, start: datetime, end: datetime) -> int:
        with self._get_conn() as conn:
            row = conn.execute(
                "SELECT COUNT(*) AS c FROM factory_errors WHERE created_at >= ? AND created_at < ?",
                (to_iso(start), to_iso(end)),
            ).fetchone()
            return row["c"]

    # ---- Daily stats ----

    def upsert_daily_stats(self, stat_date: date, **counts) -> None:
        columns = [
            "productions_active", "productions_queued", "productions_paused",
            "productions_finished", "productions_promoted", "chapters_written",
            "chapters_published", "errors",
        ]
        unknown = set(counts) - set(columns)
        if unknown:
            raise ValueError(f"Unknown daily stat columns: {sorted(unknown)}")
        values = [counts.get(c, 0) for c in columns]
        updates = ", ".join(f"{c} = excluded.{c}" for c in columns)
        with self._get_conn() as conn:
            conn.execute(
                f"INSERT INTO daily_stats (stat_date, {', '.join(columns)}, updated_at) "
                f"VALUES (?, {_placeholders(tuple(columns))}, ?) "
                f"ON CONFLICT(stat_date) DO UPDATE SET {updates}, updated_at = excluded.updated_at",
                (stat_date.isoformat(), *values, to_iso(utc_now())),
            )

    def get_daily_stats(self, stat_date: date) -> Optional[dict]:
        with self._get_conn() as conn:
            row = conn.execute(
                "SELECT * FROM daily_stats WHERE stat_date = ?", (stat_date.isoformat(),),
            ).fetchone()
            return dict(row) if row else None
