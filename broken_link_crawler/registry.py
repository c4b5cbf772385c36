"""
Job registry: the store the crawl engine reads and writes job state through.

JobRegistry keeps everything in memory behind a re-entrant lock.
FileJobRegistry adds durability: each job (record, discovered links, broken
links and discovery checkpoint) is one JSON document, rewritten atomically
whenever the job's status, progress, checkpoint or link set changes.
"""

import copy
import glob
import json
import logging
import os
import threading
import uuid
from datetime import datetime

from broken_link_crawler.errors import InvalidTransitionError, JobNotFoundError, RegistryError
from broken_link_crawler.models import BrokenLink, DiscoveredLink, Job, JobStatus, LinkStatus, Progress
from broken_link_crawler.progress import calculate_percentage
from broken_link_crawler.serializers import (
    BrokenLinkRecordSerializer,
    DiscoveredLinkRecordSerializer,
    JobRecordSerializer,
)

MAX_INSERT_ROWS = 1000


class JobRegistry:
    def __init__(self, max_insert_rows=MAX_INSERT_ROWS):
        self.max_insert_rows = max_insert_rows
        self.logger = logging.getLogger(__name__)
        self._lock = threading.RLock()
        self._jobs = {}
        self._links = {}
        self._broken_links = {}
        self._checkpoints = {}

    # Jobs

    def create_job(self, url, settings, is_smart_crawl=False):
        job = Job(
            id=str(uuid.uuid4()),
            url=url,
            settings=copy.deepcopy(settings),
            is_smart_crawl=is_smart_crawl,
        )
        with self._lock:
            self._jobs[job.id] = job
            self._links[job.id] = {}
            self._broken_links[job.id] = {}
            self._persist(job.id)
        self.logger.info(f"Created job {job.id} for {url}")
        return job.copy()

    def get_job(self, job_id):
        with self._lock:
            self._sync(job_id)
            job = self._jobs.get(job_id)
            return job.copy() if job is not None else None

    def list_jobs(self, limit=10):
        """Most recently created jobs first"""
        with self._lock:
            # insertion order breaks created_at ties
            ordered = sorted(enumerate(self._jobs.values()), key=lambda item: (item[1].created_at, item[0]),
                             reverse=True)
            return [job.copy() for _, job in ordered[:limit]]

    def update_job_status(self, job_id, status, error_message=None, phase=None):
        """Move a job through the state machine; a phase change resets progress"""
        with self._lock:
            self._sync(job_id)
            job = self._require(job_id)
            if not JobStatus.can_transition(job.status, status):
                raise InvalidTransitionError(job_id, job.status, status)

            now = datetime.now()
            job.status = status
            if phase is not None and phase != job.phase:
                job.phase = phase
                job.progress = Progress()
            if status == JobStatus.RUNNING:
                job.started_at = now
            if status in JobStatus.TERMINAL:
                job.completed_at = now
            if error_message is not None:
                job.error_message = error_message
            self._persist(job_id)
            self.logger.debug(f"Job {job_id} -> {status} (phase={job.phase})")
            return job.copy()

    def update_job_progress(self, job_id, current, total):
        """Store progress counters; current never moves backwards within a phase"""
        with self._lock:
            self._sync(job_id)
            job = self._require(job_id)
            if current < job.progress.current:
                self.logger.debug(f"Job {job_id}: ignoring progress regression {job.progress.current} -> {current}")
                current = job.progress.current
            job.progress = Progress(current, total, calculate_percentage(current, total))
            self._persist(job_id)
            return job.copy()

    def delete_job(self, job_id):
        with self._lock:
            self._require(job_id)
            del self._jobs[job_id]
            self._links.pop(job_id, None)
            self._broken_links.pop(job_id, None)
            self._checkpoints.pop(job_id, None)
            self._remove(job_id)
        self.logger.info(f"Deleted job {job_id}")

    # Discovered links

    def add_discovered_links(self, job_id, links):
        """Bulk insert; rows whose (job, url) already exists are ignored"""
        links = list(links)
        if len(links) > self.max_insert_rows:
            raise RegistryError(
                f"Cannot insert {len(links)} links in one call (limit {self.max_insert_rows})")
        with self._lock:
            self._require(job_id)
            rows = self._links[job_id]
            inserted = 0
            for link in links:
                if link.url in rows:
                    continue
                row = copy.copy(link)
                row.job_id = job_id
                rows[link.url] = row
                inserted += 1
            if inserted:
                self._persist(job_id)
            return inserted

    def mark_link_checked(self, job_id, url, result):
        """Record a check result; refused if the link is unknown or already checked"""
        with self._lock:
            self._require(job_id)
            link = self._links[job_id].get(url)
            if link is None:
                self.logger.warning(f"Job {job_id}: cannot mark unknown link {url}")
                return False
            if link.status == LinkStatus.CHECKED:
                self.logger.warning(f"Job {job_id}: link already checked {url}")
                return False
            link.apply_result(result)
            return True

    def list_discovered_links(self, job_id, status=None, offset=0, limit=50, is_working=None,
                              is_internal=None):
        with self._lock:
            rows = self._filter_links(job_id, status, is_working, is_internal)
            return [copy.copy(link) for link in rows[offset:offset + limit]]

    def count_discovered_links(self, job_id, status=None, is_working=None, is_internal=None):
        with self._lock:
            return len(self._filter_links(job_id, status, is_working, is_internal))

    def _filter_links(self, job_id, status, is_working, is_internal):
        self._require(job_id)
        rows = []
        for link in self._links[job_id].values():
            if status is not None and link.status != status:
                continue
            if is_working is not None and link.is_working is not is_working:
                continue
            if is_internal is not None and link.is_internal is not is_internal:
                continue
            rows.append(link)
        return rows

    # Broken links

    def add_broken_link(self, job_id, broken_link):
        """Store a broken link once per (job, url, source_url)"""
        with self._lock:
            self._require(job_id)
            rows = self._broken_links[job_id]
            row = copy.copy(broken_link)
            row.job_id = job_id
            if row.key in rows:
                return False
            rows[row.key] = row
            return True

    def list_broken_links(self, job_id, offset=0, limit=50, error_type=None, search=None):
        with self._lock:
            rows = self._filter_broken(job_id, error_type, search)
            return [copy.copy(link) for link in rows[offset:offset + limit]]

    def count_broken_links(self, job_id, error_type=None, search=None):
        with self._lock:
            return len(self._filter_broken(job_id, error_type, search))

    def broken_link_error_counts(self, job_id):
        with self._lock:
            counts = {}
            for link in self._filter_broken(job_id, None, None):
                counts[link.error_type] = counts.get(link.error_type, 0) + 1
            return counts

    def _filter_broken(self, job_id, error_type, search):
        self._require(job_id)
        needle = search.lower() if search else None
        rows = []
        for link in self._broken_links[job_id].values():
            if error_type is not None and link.error_type != error_type:
                continue
            if needle and not any(needle in (value or '').lower()
                                  for value in (link.url, link.source_url, link.link_text)):
                continue
            rows.append(link)
        return rows

    # Discovery checkpoints

    def save_checkpoint(self, job_id, data):
        with self._lock:
            self._require(job_id)
            self._checkpoints[job_id] = copy.deepcopy(data)
            self._persist(job_id)

    def load_checkpoint(self, job_id):
        with self._lock:
            self._require(job_id)
            return copy.deepcopy(self._checkpoints.get(job_id))

    def clear_checkpoint(self, job_id):
        with self._lock:
            self._require(job_id)
            if self._checkpoints.pop(job_id, None) is not None:
                self._persist(job_id)

    def _require(self, job_id):
        job = self._jobs.get(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    def _sync(self, job_id):
        """Hook for durable subclasses to pick up changes made by other processes"""

    def _persist(self, job_id):
        """Hook for durable subclasses; called with the lock held"""

    def _remove(self, job_id):
        """Hook for durable subclasses; called with the lock held"""


class FileJobRegistry(JobRegistry):
    """
    Registry persisted as one JSON file per job under a directory.

    Link check marks and broken-link rows are written with the next
    progress or status update, so a crash between the two re-checks the
    batch rather than losing it.

    Several processes may share a directory: before a job is read or its
    status or progress is written, the file is checked for changes made by
    another process. A job another process moved to a terminal status (a
    --stop from the command line) is adopted and never overwritten; other
    external changes are ignored while the job is held in memory.
    """

    def __init__(self, directory, max_insert_rows=MAX_INSERT_ROWS):
        super().__init__(max_insert_rows=max_insert_rows)
        self.directory = directory
        # job id -> (inode, mtime, size) of the file as last read or written here
        self._signatures = {}
        try:
            os.makedirs(directory, exist_ok=True)
        except OSError as e:
            raise RegistryError(f"Cannot create registry directory {directory}: {e}") from e
        self._load_all()

    def _path(self, job_id):
        return os.path.join(self.directory, f"job_{job_id}.json")

    @staticmethod
    def _signature(path):
        stat = os.stat(path)
        return stat.st_ino, stat.st_mtime_ns, stat.st_size

    def _read(self, path):
        """Load one job file; returns None if it is missing or corrupt"""
        try:
            signature = self._signature(path)
            with open(path, 'r') as f:
                document = json.load(f)
            job = Job.from_dict(document['job'])
            links = [DiscoveredLink.from_dict(row) for row in document.get('links', [])]
            broken_links = [BrokenLink.from_dict(row) for row in document.get('broken_links', [])]
        except FileNotFoundError:
            return None
        except (OSError, ValueError, KeyError, TypeError) as e:
            self.logger.error(f"Failed to load job file {path}: {e}")
            return None
        return signature, job, links, broken_links, document.get('checkpoint')

    def _install(self, loaded):
        signature, job, links, broken_links, checkpoint = loaded
        self._jobs[job.id] = job
        self._links[job.id] = {link.url: link for link in links}
        self._broken_links[job.id] = {link.key: link for link in broken_links}
        if checkpoint is not None:
            self._checkpoints[job.id] = checkpoint
        self._signatures[job.id] = signature

    def _load_all(self):
        for path in sorted(glob.glob(os.path.join(self.directory, 'job_*.json'))):
            loaded = self._read(path)
            if loaded is not None:
                self._install(loaded)

        self.logger.info(f"Loaded {len(self._jobs)} jobs from {self.directory}")

    def _sync(self, job_id):
        path = self._path(job_id)
        try:
            signature = self._signature(path)
        except OSError:
            return
        if signature == self._signatures.get(job_id):
            return

        loaded = self._read(path)
        if loaded is None:
            return
        current = self._jobs.get(job_id)
        if current is None:
            self._install(loaded)
            return

        self._signatures[job_id] = loaded[0]
        stored = loaded[1]
        if stored.status in JobStatus.TERMINAL and current.status not in JobStatus.TERMINAL:
            self.logger.info(f"Job {job_id} was marked {stored.status} by another process")
            current.status = stored.status
            current.error_message = stored.error_message
            current.completed_at = stored.completed_at
            self._persist(job_id)

    def _persist(self, job_id):
        document = {
            'job': JobRecordSerializer(self._jobs[job_id]).data,
            'links': DiscoveredLinkRecordSerializer(list(self._links[job_id].values()), many=True).data,
            'broken_links': BrokenLinkRecordSerializer(
                list(self._broken_links[job_id].values()), many=True).data,
            'checkpoint': self._checkpoints.get(job_id),
            'saved_at': datetime.now().isoformat(),
        }
        path = self._path(job_id)
        temp_path = f"{path}.tmp"
        try:
            with open(temp_path, 'w') as f:
                json.dump(document, f)
            os.replace(temp_path, path)
            self._signatures[job_id] = self._signature(path)
        except (OSError, TypeError, ValueError) as e:
            self.logger.error(f"Failed to save job {job_id}: {e}")
            raise RegistryError(f"Cannot write job {job_id}: {e}") from e

    def _remove(self, job_id):
        path = self._path(job_id)
        self._signatures.pop(job_id, None)
        try:
            if os.path.exists(path):
                os.remove(path)
        except OSError as e:
            raise RegistryError(f"Cannot delete job {job_id}: {e}") from e
