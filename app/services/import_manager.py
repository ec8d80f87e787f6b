"""
Tracks bulk-import jobs whose rows are processed by detached asyncio tasks.

The accepting request returns as soon as the job exists; the worker then
walks the rows, one DB session per row, and clients poll ``get_status``.

Usage
-----
    manager = ImportJobManager(AsyncSessionLocal)

    job = await manager.create_job(user_id, "ideas.csv", "/uploads/abc.csv")
    # ... later ...
    snapshot = manager.get_status(job.job_id)
    await manager.cancel(job.job_id, user_id)
"""
from __future__ import annotations

import asyncio
import dataclasses
import logging
import uuid
from datetime import datetime
from pathlib import Path
from collections import deque
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.config import settings
from app.database import session_scope
from app.models.database_models import ImportJob, ImportJobStatus, utcnow
from app.services.idea_importer import create_idea_from_row
from app.services.spreadsheet_parser import SpreadsheetParser
from app.utils.helpers import safe_remove, truncate

logger = logging.getLogger(__name__)

RowHandler = Callable[[AsyncSession, Dict[str, str], str], Awaitable[int]]


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------

class ImportValidationError(ValueError):
    """The upload was rejected before any job was created."""


class ImportJobNotFound(LookupError):
    """No job with this id is visible to the caller."""


class ImportJobStateError(RuntimeError):
    """The requested transition is not allowed from the job's current status."""


# ---------------------------------------------------------------------------
# Job state (mutable dataclass owned by the worker, read by pollers)
# ---------------------------------------------------------------------------

@dataclasses.dataclass
class ImportJobState:
    job_id: str
    user_id: str
    filename: str
    status: ImportJobStatus = ImportJobStatus.PROCESSING
    total_rows: int = 0
    processed_rows: int = 0
    successful_rows: int = 0
    failed_rows: int = 0
    errors: List[Dict[str, Any]] = dataclasses.field(default_factory=list)
    results: List[int] = dataclasses.field(default_factory=list)
    started_at: datetime = dataclasses.field(default_factory=utcnow)
    completed_at: Optional[datetime] = None
    cancel_requested: bool = False

    # Counter updates never suspend, so a poller can't see a torn state

    def record_success(self, idea_id: int) -> None:
        self.successful_rows += 1
        self.results.append(idea_id)
        self.processed_rows += 1

    def record_failure(self, row_number: int, error: str) -> None:
        self.failed_rows += 1
        self.errors.append({"row": row_number, "error": error})
        self.processed_rows += 1

    def finish(self, status: ImportJobStatus) -> None:
        if self.status.is_terminal:
            return
        self.status = status
        self.completed_at = utcnow()

    def snapshot(self) -> "ImportJobState":
        """Independent copy safe to serialise while the worker keeps going."""
        return dataclasses.replace(
            self,
            errors=[dict(e) for e in self.errors],
            results=list(self.results),
        )

    @classmethod
    def from_row(cls, job: ImportJob) -> "ImportJobState":
        return cls(
            job_id=job.id,
            user_id=job.user_id,
            filename=job.filename,
            status=ImportJobStatus(job.status),
            total_rows=job.total_rows,
            processed_rows=job.processed_rows,
            successful_rows=job.successful_rows,
            failed_rows=job.failed_rows,
            errors=list(job.errors or []),
            results=list(job.results or []),
            started_at=job.started_at,
            completed_at=job.completed_at,
        )

    def as_columns(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "total_rows": self.total_rows,
            "processed_rows": self.processed_rows,
            "successful_rows": self.successful_rows,
            "failed_rows": self.failed_rows,
            "errors": [dict(e) for e in self.errors],
            "results": list(self.results),
            "completed_at": self.completed_at,
        }


# ---------------------------------------------------------------------------
# Manager
# ---------------------------------------------------------------------------

class ImportJobManager:
    """Creates import jobs, runs their workers, and answers status polls."""

    def __init__(
        self,
        session_factory: async_sessionmaker,
        row_handler: RowHandler = create_idea_from_row,
        parser: Optional[SpreadsheetParser] = None,
        keep_finished: Optional[int] = None,
    ) -> None:
        self._session_factory = session_factory
        self._row_handler = row_handler
        self._parser = parser or SpreadsheetParser()
        self._jobs: Dict[str, ImportJobState] = {}
        self._tasks: Dict[str, asyncio.Task] = {}
        self._finished: Deque[str] = deque()
        self._keep_finished = max(
            settings.IMPORT_FINISHED_JOBS_KEPT if keep_finished is None else keep_finished, 0
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @staticmethod
    def validate_extension(filename: str) -> str:
        """Return the lower-cased extension or raise naming the accepted set."""
        ext = Path(filename or "").suffix.lower()
        if ext not in settings.SUPPORTED_IMPORT_TYPES:
            raise ImportValidationError(
                f"Unsupported file type '{ext or filename}'. "
                f"Accepted: {', '.join(settings.SUPPORTED_IMPORT_TYPES)}"
            )
        return ext

    async def create_job(self, user_id: str, filename: str, file_path: str) -> ImportJobState:
        """
        Validate and parse the upload, persist the job, and start its worker.

        Returns the live job state immediately; rows are processed in the
        background.

        Raises:
            ImportValidationError: bad extension or no data rows.
            SpreadsheetParseError: the file can't be read.
        """
        ext = self.validate_extension(filename)
        rows = await self._parser.parse(file_path, ext)
        if not rows:
            raise ImportValidationError("Spreadsheet contains no data rows")

        state = ImportJobState(
            job_id=uuid.uuid4().hex,
            user_id=user_id,
            filename=filename,
            total_rows=len(rows),
        )
        async with session_scope(self._session_factory) as db:
            db.add(ImportJob(id=state.job_id, user_id=user_id, filename=filename,
                             started_at=state.started_at, **state.as_columns()))

        self._jobs[state.job_id] = state
        task = asyncio.create_task(self._run(state, rows, file_path))
        self._tasks[state.job_id] = task
        task.add_done_callback(lambda _t: self._tasks.pop(state.job_id, None))

        logger.info(
            "Import job %s started for user=%s (%s, %d rows)",
            state.job_id, user_id, filename, state.total_rows,
        )
        return state

    def get_status(self, job_id: str) -> Optional[ImportJobState]:
        """Snapshot of a job this process knows about (None otherwise)."""
        state = self._jobs.get(job_id)
        return state.snapshot() if state else None

    async def load_status(self, job_id: str, user_id: str) -> ImportJobState:
        """Live snapshot if known, else the persisted record.  Owner only."""
        state = self.get_status(job_id)
        if state is None:
            async with session_scope(self._session_factory) as db:
                job = await db.get(ImportJob, job_id)
                state = ImportJobState.from_row(job) if job else None
        if state is None or state.user_id != user_id:
            raise ImportJobNotFound(f"Import job {job_id} not found.")
        return state

    async def list_jobs(self, user_id: str, limit: int = 50) -> List[ImportJobState]:
        """The user's jobs, newest first, with live counters where available."""
        async with session_scope(self._session_factory) as db:
            result = await db.execute(
                select(ImportJob)
                .where(ImportJob.user_id == user_id)
                .order_by(ImportJob.started_at.desc())
                .limit(limit)
            )
            persisted = result.scalars().all()
        return [self.get_status(job.id) or ImportJobState.from_row(job) for job in persisted]

    async def cancel(self, job_id: str, user_id: str) -> ImportJobState:
        """
        Ask the worker to stop after the current row.

        Raises:
            ImportJobNotFound:   unknown job or not the caller's.
            ImportJobStateError: the job already finished.
        """
        state = self._jobs.get(job_id)
        if state is None:
            # Not run by this process, so already terminal if it exists at all
            state = await self.load_status(job_id, user_id)
        if state.user_id != user_id:
            raise ImportJobNotFound(f"Import job {job_id} not found.")
        if state.status.is_terminal:
            raise ImportJobStateError(f"Import job {job_id} is already {state.status.value}.")
        state.cancel_requested = True
        logger.info("Import job %s: cancellation requested", job_id)
        return state.snapshot()

    def is_running(self, job_id: str) -> bool:
        task = self._tasks.get(job_id)
        return task is not None and not task.done()

    def running_count(self) -> int:
        return sum(1 for t in self._tasks.values() if not t.done())

    async def wait(self, job_id: str) -> Optional[ImportJobState]:
        """Wait for a job's worker to finish and return the final snapshot."""
        state = self._jobs.get(job_id)
        task = self._tasks.get(job_id)
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)
        return state.snapshot() if state else None

    def tracked_count(self) -> int:
        """Jobs held in memory: running ones plus the most recently finished."""
        return len(self._jobs)

    async def shutdown(self) -> None:
        """Cancel running workers; their jobs end as failed."""
        tasks = [t for t in self._tasks.values() if not t.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.info("Import manager stopped %d running job(s)", len(tasks))

    async def reconcile_interrupted(self, db: AsyncSession) -> int:
        """Mark jobs a previous process left in ``processing`` as failed."""
        result = await db.execute(
            update(ImportJob)
            .where(ImportJob.status == ImportJobStatus.PROCESSING.value)
            .values(status=ImportJobStatus.FAILED.value, completed_at=utcnow())
        )
        count = result.rowcount or 0
        if count:
            logger.warning("Marked %d interrupted import job(s) as failed", count)
        return count

    # ------------------------------------------------------------------
    # Worker
    # ------------------------------------------------------------------

    async def _run(self, state: ImportJobState, rows: List[Dict[str, str]], file_path: str) -> None:
        try:
            await self._process_rows(state, rows)
        except asyncio.CancelledError:
            state.errors.append({"row": 0, "error": "import interrupted by server shutdown"})
            state.finish(ImportJobStatus.FAILED)
            raise
        except Exception as exc:
            logger.error("Import job %s failed: %s", state.job_id, exc, exc_info=True)
            state.errors.append({"row": 0, "error": f"import failed: {truncate(str(exc), 200)}"})
            state.finish(ImportJobStatus.FAILED)
        finally:
            if not state.status.is_terminal:
                state.finish(ImportJobStatus.FAILED)
            if await self._persist(state):
                self._retire(state.job_id)
            safe_remove(file_path)
            logger.info(
                "Import job %s %s: %d/%d processed (%d ok, %d failed)",
                state.job_id, state.status.value, state.processed_rows,
                state.total_rows, state.successful_rows, state.failed_rows,
            )

    async def _process_rows(self, state: ImportJobState, rows: List[Dict[str, str]]) -> None:
        """
        Create one idea per row.  A failing row is recorded and skipped; it
        never stops the batch.
        """
        every = max(settings.IMPORT_PROGRESS_PERSIST_EVERY, 1)
        for row_number, row in enumerate(rows, start=1):
            if state.cancel_requested:
                state.finish(ImportJobStatus.CANCELLED)
                return

            try:
                async with session_scope(self._session_factory) as db:
                    idea_id = await self._row_handler(db, row, state.user_id)
            except Exception as exc:
                if isinstance(exc, SQLAlchemyError):
                    message = "Could not save idea"
                else:
                    message = truncate(str(exc) or exc.__class__.__name__, 300)
                logger.warning("Import job %s: row %d failed: %s", state.job_id, row_number, exc)
                state.record_failure(row_number, message)
            else:
                state.record_success(idea_id)

            if state.processed_rows % every == 0 and state.processed_rows < state.total_rows:
                await self._persist(state)

        if state.cancel_requested:
            state.finish(ImportJobStatus.CANCELLED)
        else:
            state.finish(ImportJobStatus.COMPLETED)

    def _retire(self, job_id: str) -> None:
        """Keep only the newest finished jobs in memory; the rest are read from the DB."""
        self._finished.append(job_id)
        while len(self._finished) > self._keep_finished:
            self._jobs.pop(self._finished.popleft(), None)

    async def _persist(self, state: ImportJobState) -> bool:
        snapshot = state.snapshot()
        try:
            async with session_scope(self._session_factory) as db:
                await db.execute(
                    update(ImportJob)
                    .where(ImportJob.id == snapshot.job_id)
                    .values(**snapshot.as_columns())
                )
        except Exception as exc:
            # The in-memory state stays authoritative for polling
            logger.error("Import job %s: could not persist progress: %s", state.job_id, exc)
            return False
        return True

