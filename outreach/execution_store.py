# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Execution Store - Persistent storage for workflow execution logs
All history in plain JSON files, one per execution, grouped by day.

Thread-safe with async file locking to prevent race conditions
"""
from pathlib import Path
from typing import Callable, List, Dict, Any, Optional
from datetime import datetime, timedelta, timezone
import asyncio
import logging
import uuid

import aiofiles
import aiofiles.os
from pydantic import ValidationError

from outreach.core.errors import ExecutionLogClosedError, NotFoundError
from outreach.workflow.models import ExecutionLog, ExecutionStatus, utcnow

logger = logging.getLogger(__name__)


def new_execution_id(now: Optional[datetime] = None) -> str:
    """exec_YYYYMMDD_HHMMSS_<hex8>"""
    now = now or utcnow()
    return f"exec_{now.strftime('%Y%m%d_%H%M%S')}_{uuid.uuid4().hex[:8]}"


def _aware(dt: datetime) -> datetime:
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


class FileExecutionLogStore:
    """
    Store and query workflow execution logs.

    Storage structure:
        data/executions/
        └── {YYYY-MM-DD}/
            ├── exec_20250101_120000_1a2b3c4d.json
            └── exec_20250101_120501_5e6f7a8b.json

    A log is immutable once completedAt is set.
    """

    def __init__(self, base_dir: str, clock: Callable[[], datetime] = utcnow):
        self.base_dir = Path(base_dir)
        self.base_dir.mkdir(parents=True, exist_ok=True)
        self.clock = clock

        # Async locks for thread-safe file operations
        self._locks: Dict[str, asyncio.Lock] = {}

    def _get_lock(self, file_path: str) -> asyncio.Lock:
        """Get or create lock for a specific file"""
        if file_path not in self._locks:
            self._locks[file_path] = asyncio.Lock()
        return self._locks[file_path]

    def _path_for(self, execution_id: str) -> Optional[Path]:
        # Date comes from the id (format: exec_YYYYMMDD_HHMMSS_hash)
        try:
            date_str = execution_id.split("_")[1]
            date = datetime.strptime(date_str, "%Y%m%d").strftime("%Y-%m-%d")
        except (IndexError, ValueError):
            return self._search_all_dates(execution_id)
        return self.base_dir / date / f"{execution_id}.json"

    def _search_all_dates(self, execution_id: str) -> Optional[Path]:
        """Search for an execution file across all dates"""
        for date_dir in self.base_dir.glob("*"):
            if not date_dir.is_dir():
                continue
            execution_file = date_dir / f"{execution_id}.json"
            if execution_file.exists():
                return execution_file
        return None

    async def _read(self, path: Path) -> Optional[ExecutionLog]:
        if not path.exists():
            return None
        async with aiofiles.open(path, "r") as f:
            content = await f.read()
        return ExecutionLog.model_validate_json(content)

    async def _write(self, path: Path, log: ExecutionLog) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        async with aiofiles.open(path, "w") as f:
            await f.write(log.model_dump_json(by_alias=True, indent=2))

    async def _update(self, execution_id: str, mutate: Callable[[ExecutionLog], None]) -> ExecutionLog:
        """Read-modify-write under the file lock"""
        path = self._path_for(execution_id)
        if path is None:
            raise NotFoundError("Execution", execution_id)
        async with self._get_lock(str(path)):
            log = await self._read(path)
            if log is None:
                raise NotFoundError("Execution", execution_id)
            if log.is_finalized:
                self._locks.pop(str(path), None)
                raise ExecutionLogClosedError(execution_id)
            mutate(log)
            await self._write(path, log)
        return log

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def create(self, log: ExecutionLog) -> ExecutionLog:
        """Persist a new execution log"""
        path = self._path_for(log.id) or self.base_dir / log.started_at.strftime("%Y-%m-%d") / f"{log.id}.json"
        async with self._get_lock(str(path)):
            await self._write(path, log)
        return log

    async def mark_running(self, execution_id: str) -> ExecutionLog:
        def mutate(log: ExecutionLog) -> None:
            log.status = ExecutionStatus.RUNNING

        return await self._update(execution_id, mutate)

    async def append_log(self, execution_id: str, line: str) -> None:
        def mutate(log: ExecutionLog) -> None:
            log.logs.append(line)

        await self._update(execution_id, mutate)

    async def finalize(
        self,
        execution_id: str,
        status: ExecutionStatus,
        error: Optional[str] = None,
        error_node_id: Optional[str] = None,
    ) -> ExecutionLog:
        """Set the terminal status; the log is read-only afterwards"""
        completed_at = self.clock()

        def mutate(log: ExecutionLog) -> None:
            log.status = status
            log.error = error
            log.error_node_id = error_node_id
            log.completed_at = completed_at

        log = await self._update(execution_id, mutate)
        # Closed logs are never written again
        self._locks.pop(str(self._path_for(execution_id)), None)
        return log

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get(self, execution_id: str) -> Optional[ExecutionLog]:
        """
        Get execution by ID.

        Returns:
            ExecutionLog or None if not found
        """
        path = self._path_for(execution_id)
        if path is None:
            return None
        return await self._read(path)

    async def list(
        self,
        workflow_id: Optional[str] = None,
        user_id: Optional[str] = None,
        status: Optional[str] = None,
        date: Optional[str] = None,
        limit: int = 100,
        offset: int = 0
    ) -> List[ExecutionLog]:
        """
        List executions with optional filters.

        Args:
            workflow_id: Filter by workflow
            user_id: Filter by owner
            status: Filter by status (pending/running/success/failed/stopped)
            date: Filter by date (YYYY-MM-DD)
            limit: Max results to return
            offset: Skip first N results

        Returns:
            List of execution logs (newest first)
        """
        executions: List[ExecutionLog] = []

        if date:
            date_dirs = [self.base_dir / date]
        else:
            date_dirs = sorted(self.base_dir.glob("*"), reverse=True)

        for date_dir in date_dirs:
            if not date_dir.is_dir():
                continue

            for execution_file in sorted(date_dir.glob("exec_*.json"), reverse=True):
                try:
                    log = await self._read(execution_file)
                except (ValidationError, OSError) as e:
                    logger.warning(f"Failed to load execution {execution_file}: {e}")
                    continue
                if log is None:
                    continue

                if workflow_id and log.workflow_id != workflow_id:
                    continue
                if user_id and log.user_id != user_id:
                    continue
                if status and log.status.value != status:
                    continue

                executions.append(log)

                if len(executions) >= limit + offset:
                    break

            if len(executions) >= limit + offset:
                break

        return executions[offset:offset + limit]

    async def query(
        self,
        start_date: str,
        end_date: str,
        workflow_id: Optional[str] = None,
        user_id: Optional[str] = None,
        status: Optional[str] = None,
    ) -> List[ExecutionLog]:
        """
        Query executions over an inclusive date range (YYYY-MM-DD).
        """
        start = datetime.strptime(start_date, "%Y-%m-%d")
        end = datetime.strptime(end_date, "%Y-%m-%d")

        executions: List[ExecutionLog] = []
        current = start
        while current <= end:
            executions.extend(await self.list(
                workflow_id=workflow_id,
                user_id=user_id,
                status=status,
                date=current.strftime("%Y-%m-%d"),
                limit=10000,
            ))
            current += timedelta(days=1)
        return executions

    async def get_statistics(self, days: int = 30) -> Dict[str, Any]:
        """
        Get execution statistics for last N days.

        Returns:
            Statistics dict with counts, success rate, average duration
        """
        end = self.clock()
        start = end - timedelta(days=days)
        executions = await self.query(start.strftime("%Y-%m-%d"), end.strftime("%Y-%m-%d"))

        def count(status: ExecutionStatus) -> int:
            return sum(1 for e in executions if e.status == status)

        total = len(executions)
        success = count(ExecutionStatus.SUCCESS)
        durations = [e.duration_seconds for e in executions if e.duration_seconds is not None]
        avg_duration = sum(durations) / len(durations) if durations else 0

        by_workflow: Dict[str, Dict[str, int]] = {}
        for execution in executions:
            entry = by_workflow.setdefault(
                execution.workflow_id, {"total": 0, "success": 0, "failed": 0, "stopped": 0}
            )
            entry["total"] += 1
            if execution.status.value in entry:
                entry[execution.status.value] += 1

        return {
            "period_days": days,
            "total_executions": total,
            "success": success,
            "failed": count(ExecutionStatus.FAILED),
            "stopped": count(ExecutionStatus.STOPPED),
            "running": count(ExecutionStatus.RUNNING) + count(ExecutionStatus.PENDING),
            "success_rate": (success / total * 100) if total > 0 else 0,
            "avg_duration_seconds": round(avg_duration, 2),
            "by_workflow": by_workflow,
        }

    async def count_failed_since(self, since: datetime) -> int:
        """Failed executions completed at or after `since`"""
        since = _aware(since)
        end = self.clock()
        executions = await self.query(
            since.strftime("%Y-%m-%d"), end.strftime("%Y-%m-%d"), status=ExecutionStatus.FAILED.value
        )
        return sum(
            1 for e in executions
            if e.completed_at is not None and _aware(e.completed_at) >= since
        )

    async def delete_old_executions(self, days: int = 90) -> int:
        """
        Delete executions older than N days (cleanup).

        Returns:
            Number of executions deleted
        """
        cutoff_date = (self.clock() - timedelta(days=days)).replace(tzinfo=None)
        deleted_count = 0

        for date_dir in self.base_dir.glob("*"):
            if not date_dir.is_dir():
                continue

            try:
                dir_date = datetime.strptime(date_dir.name, "%Y-%m-%d")
            except ValueError:
                logger.warning(f"Invalid date directory name: {date_dir.name}")
                continue

            if dir_date < cutoff_date:
                for execution_file in date_dir.glob("exec_*.json"):
                    await aiofiles.os.remove(execution_file)
                    self._locks.pop(str(execution_file), None)
                    deleted_count += 1

                if not any(date_dir.iterdir()):
                    await aiofiles.os.rmdir(date_dir)

        return deleted_count
