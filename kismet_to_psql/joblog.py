"""
Per-job progress logs

Every migration job gets its own append-only log so concurrent uploads never
interleave their lines. Each line is also sent to the standard logging stream.
"""
import logging
import threading
import uuid
from collections import OrderedDict
from datetime import datetime
from typing import Dict, List, Optional

logger = logging.getLogger(__name__)

DEFAULT_MAX_FINISHED = 100


class JobLog:
    """Append-only log for one migration job"""

    def __init__(self, job_id: str, label: str = ''):
        self.job_id = job_id
        self.label = label
        self.created_at = datetime.now()
        self._lines: List[str] = []
        self._finished = False
        self._lock = threading.Lock()

    def write(self, message: str, level: int = logging.INFO):
        logger.log(level, f"[{self.job_id}] {message}")
        with self._lock:
            self._lines.append(message)

    def info(self, message: str):
        self.write(message, logging.INFO)

    def warning(self, message: str):
        self.write(message, logging.WARNING)

    def error(self, message: str):
        self.write(message, logging.ERROR)

    def lines(self) -> List[str]:
        with self._lock:
            return list(self._lines)

    def read(self) -> str:
        with self._lock:
            return ''.join(line + '\n' for line in self._lines)

    def mark_finished(self):
        with self._lock:
            self._finished = True

    @property
    def finished(self) -> bool:
        with self._lock:
            return self._finished


class LogRegistry:
    """Process-wide registry of job logs, in creation order

    Running jobs are always kept. Only the newest max_finished finished jobs
    are retained; older finished ones are dropped when a new job registers.
    """

    def __init__(self, max_finished: int = DEFAULT_MAX_FINISHED):
        self.max_finished = max_finished
        self._jobs: Dict[str, JobLog] = OrderedDict()
        self._lock = threading.Lock()

    def new_job(self, label: str = '') -> JobLog:
        job_log = JobLog(uuid.uuid4().hex[:12], label)
        with self._lock:
            self._prune()
            self._jobs[job_log.job_id] = job_log
        return job_log

    def _prune(self):
        finished = [job_id for job_id, job_log in self._jobs.items() if job_log.finished]
        for job_id in finished[:max(0, len(finished) - self.max_finished)]:
            del self._jobs[job_id]

    def get(self, job_id: str) -> Optional[JobLog]:
        with self._lock:
            return self._jobs.get(job_id)

    def jobs(self) -> List[JobLog]:
        with self._lock:
            return list(self._jobs.values())

    def read_all(self) -> str:
        blocks = []
        for job_log in self.jobs():
            header = f"=== job {job_log.job_id}"
            if job_log.label:
                header += f" ({job_log.label})"
            blocks.append(f"{header} ===\n{job_log.read()}")
        return '\n'.join(blocks)
