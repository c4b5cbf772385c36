"""
Chunk scheduler: drives crawl jobs through discovery and checking.

Work is split into bounded batches. After each batch progress is written
to the registry and the job's status is re-read, so a stop request takes
effect at the next batch boundary and an interrupted process can resume a
job from what the registry holds.
"""

import logging
import threading
import time
from contextlib import contextmanager

from broken_link_crawler.checker import HttpChecker
from broken_link_crawler.discovery import DiscoveryEngine
from broken_link_crawler.errors import (
    CrawlerError,
    FatalJobError,
    InvalidSettingsError,
    InvalidTransitionError,
    JobNotFoundError,
    JobStateError,
)
from broken_link_crawler.fetcher import PageFetcher
from broken_link_crawler.models import (
    STOPPED_BY_USER,
    CheckResult,
    CrawlSettings,
    DiscoveredLink,
    ErrorType,
    JobPhase,
    JobStatus,
    LinkStatus,
)
from broken_link_crawler.progress import ProgressTracker
from broken_link_crawler.recorder import BrokenLinkRecorder
from broken_link_crawler.serializers import JobStatusSerializer, StateObject
from broken_link_crawler.urls import chunk_list, is_internal_url, is_valid_url

MODE_SMART = 'smart_crawl'
MODE_TRADITIONAL = 'traditional'


class BatchOutcome:
    """Result of checking one batch of links"""

    def __init__(self, size, checked=0, broken=0, error=None):
        self.size = size
        self.checked = checked
        self.broken = broken
        self.error = error

    @property
    def ok(self):
        return self.error is None

    def __repr__(self):
        if self.error is not None:
            return f"BatchOutcome(size={self.size}, error={self.error!r})"
        return f"BatchOutcome(size={self.size}, checked={self.checked}, broken={self.broken})"


class ChunkScheduler:
    def __init__(self, registry, fetcher=None):
        self.registry = registry
        self.fetcher = fetcher or PageFetcher()
        self.discovery = DiscoveryEngine(registry, self.fetcher)
        self.recorder = BrokenLinkRecorder(registry)
        self.progress = ProgressTracker()
        self.logger = logging.getLogger(__name__)

        self._active_jobs = set()
        self._active_lock = threading.Lock()
        self._threads = {}

    def start_job(self, url, settings=None, pre_analyzed_urls=None, background=False):
        """
        Create a job and run it.

        With pre-analyzed URLs the job skips discovery and checks exactly
        those URLs; otherwise it discovers links from url first. Raises
        InvalidSettingsError before anything is stored if the input is bad.
        """
        url = (url or '').strip()
        if settings is None:
            settings = CrawlSettings()
        elif isinstance(settings, dict):
            try:
                settings = CrawlSettings.from_dict(settings)
            except TypeError as e:
                raise InvalidSettingsError(str(e)) from e

        errors = []
        if not is_valid_url(url):
            errors.append('url must be a valid http or https URL')
        errors.extend(settings.validate())
        smart_links = []
        if pre_analyzed_urls:
            smart_links = self._pre_analyzed_links(url, pre_analyzed_urls)
            if not smart_links:
                errors.append('No valid URLs found in pre-analyzed data')
        if errors:
            raise InvalidSettingsError(errors)

        is_smart = bool(smart_links)
        job = self.registry.create_job(url, settings, is_smart_crawl=is_smart)
        if is_smart:
            for chunk in chunk_list(smart_links, self.registry.max_insert_rows):
                self.registry.add_discovered_links(job.id, chunk)
            urls_to_check = self.registry.count_discovered_links(job.id)
            self.registry.update_job_status(job.id, JobStatus.RUNNING, phase=JobPhase.CHECKING)
            self.registry.update_job_progress(job.id, 0, urls_to_check)
            self.logger.info(f"Smart crawl {job.id}: {urls_to_check} URLs to check")
        else:
            urls_to_check = None
            self.logger.info(f"Traditional crawl {job.id} for {url}")

        self._launch(job.id, background)

        current = self.registry.get_job(job.id)
        return {
            'jobId': job.id,
            'status': current.status,
            'mode': MODE_SMART if is_smart else MODE_TRADITIONAL,
            'url': url,
            'urlsToCheck': urls_to_check,
            'settings': settings.to_dict(),
            'statusUrl': f"/api/crawl/status/{job.id}",
            'resultsUrl': f"/api/results/{job.id}",
        }

    def resume_job(self, job_id, background=False):
        """Continue a job from its stored status and phase"""
        job = self._require_job(job_id)
        if job.is_terminal:
            raise JobStateError(f"Job {job_id} is already {job.status}")
        self.logger.info(f"Resuming job {job_id} ({job.status}, phase={job.phase})")
        self._launch(job_id, background)
        return self.registry.get_job(job_id)

    def wait(self, job_id, timeout=None):
        """Block until a background run of the job finishes"""
        thread = self._threads.get(job_id)
        if thread is not None:
            thread.join(timeout)
            return not thread.is_alive()
        return True

    def run_discovery(self, job_id):
        job = self._require_job(job_id)
        if job.status == JobStatus.PENDING and not job.is_smart_crawl:
            job = self.registry.update_job_status(job_id, JobStatus.RUNNING, phase=JobPhase.DISCOVERY)
        elif not (job.status == JobStatus.RUNNING and job.phase == JobPhase.DISCOVERY):
            raise self._precondition_failed(job, 'discovery')

        with self._claim(job_id):
            try:
                frontier = self.discovery.run(job, should_stop=lambda: self._is_stopped(job_id))
            except Exception as e:
                raise self._fail(job_id, f"Discovery failed: {e}") from e

            if frontier.stopped:
                return self.registry.get_job(job_id)

            total = self.registry.count_discovered_links(job_id)
            try:
                self.registry.update_job_status(job_id, JobStatus.READY_FOR_CHECKING, phase=JobPhase.CHECKING)
            except InvalidTransitionError:
                self.logger.info(f"Job {job_id} was stopped before checking could start")
                return self.registry.get_job(job_id)
            self.logger.info(f"Job {job_id} ready for checking: {total} links discovered")
            return self.registry.update_job_progress(job_id, 0, total)

    def run_checking(self, job_id):
        job = self._require_job(job_id)
        if job.status == JobStatus.READY_FOR_CHECKING or (
                job.status == JobStatus.PENDING and job.is_smart_crawl):
            job = self.registry.update_job_status(job_id, JobStatus.RUNNING, phase=JobPhase.CHECKING)
        elif not (job.status == JobStatus.RUNNING and job.phase == JobPhase.CHECKING):
            raise self._precondition_failed(job, 'checking')

        with self._claim(job_id):
            try:
                self._check_all(job)
            except CrawlerError as e:
                if isinstance(e, FatalJobError):
                    raise
                raise self._fail(job_id, f"Checking failed: {e}") from e

            try:
                job = self.registry.update_job_status(job_id, JobStatus.COMPLETED)
            except InvalidTransitionError:
                self.logger.info(f"Job {job_id} was stopped before it could complete")
                return self.registry.get_job(job_id)

        self.logger.info(f"Job {job_id} completed: {self.registry.count_broken_links(job_id)} broken links")
        return job

    def stop_job(self, job_id):
        job = self._require_job(job_id)
        if job.is_terminal:
            raise JobStateError(f"Job {job_id} is already {job.status}")
        self.registry.update_job_status(job_id, JobStatus.FAILED, error_message=STOPPED_BY_USER)
        self.logger.info(f"Job {job_id} stopped by user")
        return {'jobId': job_id, 'status': JobStatus.FAILED, 'message': STOPPED_BY_USER}

    def get_status(self, job_id):
        """Status poll response for a job"""
        job = self._require_job(job_id)
        stats = {
            'broken_links_found': self.registry.count_broken_links(job_id),
            'total_links_discovered': self.registry.count_discovered_links(job_id),
            'links_checked': self.registry.count_discovered_links(job_id, status=LinkStatus.CHECKED),
        }
        timestamps = {
            'created_at': job.created_at,
            'completed_at': job.completed_at,
            'elapsed_time': self.progress.elapsed_seconds(job),
        }
        state = StateObject({
            'job_id': job.id,
            'url': job.url,
            'status': job.status,
            'phase': job.phase,
            'progress': StateObject(self.progress.snapshot(job)),
            'stats': StateObject(stats),
            'timestamps': StateObject(timestamps),
            'settings': job.settings.to_dict(),
            'error_message': job.error_message,
        })
        return JobStatusSerializer(state).data

    # Internals

    def _run(self, job_id):
        job = self._require_job(job_id)
        needs_discovery = (job.status == JobStatus.PENDING and not job.is_smart_crawl) or (
            job.status == JobStatus.RUNNING and job.phase == JobPhase.DISCOVERY)
        if needs_discovery:
            job = self.run_discovery(job_id)
            if job.is_terminal:
                return job
        return self.run_checking(job_id)

    def _run_in_background(self, job_id):
        try:
            self._run(job_id)
        except CrawlerError as e:
            self.logger.error(f"Job {job_id} ended with error: {e}")
        except Exception as e:
            self.logger.exception(f"Unexpected error in job {job_id}")
            self._fail(job_id, f"Unexpected error: {e}")
        finally:
            self._threads.pop(job_id, None)

    def _launch(self, job_id, background):
        if not background:
            self._run(job_id)
            return
        thread = threading.Thread(
            target=self._run_in_background,
            args=(job_id,),
            name=f"crawl-{job_id[:8]}",
            daemon=True,
        )
        self._threads[job_id] = thread
        thread.start()

    def _check_all(self, job):
        job_id = job.id
        settings = job.settings
        checker = HttpChecker.from_settings(settings, fetcher=self.fetcher)
        total = self.registry.count_discovered_links(job_id)
        self._save_check_progress(job_id, total)

        offset = 0
        retry_pass = 0
        batch_number = 0
        while True:
            if self._is_stopped(job_id):
                self.logger.info(f"Job {job_id} stopped, ending checking loop")
                return

            batch = self.registry.list_discovered_links(
                job_id, status=LinkStatus.PENDING, offset=offset, limit=settings.check_batch_size)
            if not batch:
                if offset == 0:
                    return
                if retry_pass >= settings.batch_retry_limit:
                    self._finalize_unchecked(job_id, settings.check_batch_size, retry_pass)
                    self._save_check_progress(job_id, total)
                    return
                retry_pass += 1
                offset = 0
                self.logger.info(f"Job {job_id}: retrying skipped links (pass {retry_pass} of "
                                 f"{settings.batch_retry_limit})")
                continue

            batch_number += 1
            outcome = self._check_batch(job_id, checker, batch)
            if not outcome.ok:
                offset += len(batch)
            checked = self._save_check_progress(job_id, total)
            self.logger.info(f"Job {job_id} batch {batch_number}: {outcome} ({checked}/{total} checked)")

            if settings.batch_delay:
                time.sleep(settings.batch_delay)

    def _check_batch(self, job_id, checker, batch):
        try:
            results = checker.check_urls(batch)
            checked = broken = 0
            for link, result in zip(batch, results):
                if not self.registry.mark_link_checked(job_id, link.url, result):
                    continue
                checked += 1
                if self.recorder.record(job_id, result):
                    broken += 1
            return BatchOutcome(len(batch), checked=checked, broken=broken)
        except Exception as e:
            self.logger.warning(f"Job {job_id}: batch of {len(batch)} links failed, skipping: {e}")
            return BatchOutcome(len(batch), error=e)

    def _finalize_unchecked(self, job_id, batch_size, passes):
        """Close out links that kept failing as broken with error type 'other'"""
        message = f"Check failed after {passes + 1} attempts"
        finalized = 0
        while True:
            batch = self.registry.list_discovered_links(
                job_id, status=LinkStatus.PENDING, offset=0, limit=batch_size)
            if not batch:
                break
            for link in batch:
                result = CheckResult(
                    url=link.url,
                    is_working=False,
                    error_type=ErrorType.OTHER,
                    error_message=message,
                    source_url=link.source_url,
                    link_text=link.link_text,
                    attempts=passes + 1,
                )
                if self.registry.mark_link_checked(job_id, link.url, result):
                    self.recorder.record(job_id, result)
                    finalized += 1
        self.logger.warning(f"Job {job_id}: {finalized} links could not be checked and were marked broken")

    def _save_check_progress(self, job_id, total):
        checked = self.registry.count_discovered_links(job_id, status=LinkStatus.CHECKED)
        self.registry.update_job_progress(job_id, checked, total)
        return checked

    def _pre_analyzed_links(self, url, items):
        links = []
        for item in items:
            if isinstance(item, str):
                item_url, source_url, link_text = item, None, None
            elif isinstance(item, dict):
                item_url = item.get('url')
                source_url = item.get('sourceUrl', item.get('source_url'))
                link_text = item.get('linkText', item.get('link_text'))
            else:
                continue
            if not item_url or not isinstance(item_url, str):
                continue
            item_url = item_url.strip()
            links.append(DiscoveredLink(
                job_id=None,
                url=item_url,
                source_url=source_url or url,
                depth=1,
                is_internal=is_internal_url(item_url, url),
                link_text=link_text or 'Content Page',
            ))
        return links

    def _is_stopped(self, job_id):
        job = self.registry.get_job(job_id)
        return job is None or job.status == JobStatus.FAILED

    def _require_job(self, job_id):
        job = self.registry.get_job(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    def _precondition_failed(self, job, phase):
        if job.is_terminal:
            return JobStateError(f"Job {job.id} is already {job.status}")
        return self._fail(job.id, f"Cannot start {phase} while job is {job.status} (phase={job.phase})")

    def _fail(self, job_id, message):
        """Move a job to failed and return the FatalJobError to raise"""
        self.logger.error(f"Job {job_id} failed: {message}")
        try:
            self.registry.update_job_status(job_id, JobStatus.FAILED, error_message=message)
        except CrawlerError as e:
            self.logger.error(f"Could not mark job {job_id} as failed: {e}")
        return FatalJobError(job_id, message)

    @contextmanager
    def _claim(self, job_id):
        with self._active_lock:
            if job_id in self._active_jobs:
                raise JobStateError(f"Job {job_id} is already being processed")
            self._active_jobs.add(job_id)
        try:
            yield
        finally:
            with self._active_lock:
                self._active_jobs.discard(job_id)
