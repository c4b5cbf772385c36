#!/usr/bin/env python3
"""
Tests for the chunk scheduler and job state machine
"""

from unittest.mock import patch

import pytest
import requests
import responses

from broken_link_crawler.checker import HttpChecker
from broken_link_crawler.fetcher import PageFetcher
from broken_link_crawler.errors import (
    FatalJobError,
    InvalidSettingsError,
    JobNotFoundError,
    JobStateError,
    RegistryError,
)
from broken_link_crawler.models import (
    CheckResult,
    CrawlSettings,
    DiscoveredLink,
    JobPhase,
    JobStatus,
    LinkStatus,
)
from broken_link_crawler.registry import FileJobRegistry, JobRegistry
from broken_link_crawler.scheduler import BatchOutcome, ChunkScheduler

SMART_URLS = [f"https://example.com/page{i}" for i in range(1, 7)]


def add_page(url, body, status=200):
    responses.add(responses.GET, url, body=body, status=status, content_type="text/html")


class FailingFetcher(PageFetcher):
    """Fetcher that raises a non-network error for one URL"""

    def __init__(self, failing_url):
        super().__init__()
        self.failing_url = failing_url

    def request(self, url, timeout, headers=None, read_body=True):
        if url == self.failing_url:
            raise RuntimeError("unexpected parser error")
        return super().request(url, timeout, headers=headers, read_body=read_body)


class RecordingRegistry(JobRegistry):
    """Registry that keeps every stored progress value"""

    def __init__(self):
        super().__init__()
        self.history = []

    def update_job_progress(self, job_id, current, total):
        job = super().update_job_progress(job_id, current, total)
        self.history.append((job.phase, job.progress.current))
        return job


class TestChunkScheduler:
    """Test class for ChunkScheduler functionality"""

    def setup_method(self):
        """Set up test fixtures before each test method"""
        self.registry = JobRegistry()
        self.scheduler = ChunkScheduler(self.registry)

    def add_smart_urls(self):
        for url in SMART_URLS:
            responses.add(responses.GET, url, status=200)

    @responses.activate
    @patch('time.sleep')
    def test_traditional_crawl(self, mock_sleep):
        """Depth 1 crawl of a page with three links, two of them missing"""
        add_page("https://example.com/", """
            <a href="/ok">Working</a>
            <a href="/missing-1">Missing one</a>
            <a href="/missing-2">Missing two</a>
        """)
        responses.add(responses.GET, "https://example.com/ok", status=200)
        responses.add(responses.GET, "https://example.com/missing-1", status=404)
        responses.add(responses.GET, "https://example.com/missing-2", status=404)

        response = self.scheduler.start_job("https://example.com", {'maxDepth': 1, 'includeExternal': False})

        assert response['status'] == JobStatus.COMPLETED
        assert response['mode'] == 'traditional'
        assert response['urlsToCheck'] is None
        assert response['statusUrl'] == f"/api/crawl/status/{response['jobId']}"
        assert response['resultsUrl'] == f"/api/results/{response['jobId']}"
        assert response['settings']['max_depth'] == 1

        status = self.scheduler.get_status(response['jobId'])
        assert status['status'] == JobStatus.COMPLETED
        assert status['stats'] == {'brokenLinksFound': 2, 'totalLinksDiscovered': 3, 'linksChecked': 3}
        assert status['progress']['current'] == 3
        assert status['progress']['percentage'] == 100

        broken = self.registry.list_broken_links(response['jobId'])
        assert sorted(link.url for link in broken) == [
            "https://example.com/missing-1", "https://example.com/missing-2"]
        assert all(link.source_url == "https://example.com" for link in broken)
        assert all(link.error_type == '404' for link in broken)
        assert all(link.status_code == 404 for link in broken)

    @responses.activate
    @patch('time.sleep')
    def test_smart_crawl(self, mock_sleep):
        """Pre-analyzed URLs skip discovery; a timeout is recorded as broken"""
        responses.add(responses.GET, "https://x.com/a", body=requests.exceptions.ReadTimeout("timed out"))
        responses.add(responses.GET, "https://x.com/b", status=200)

        response = self.scheduler.start_job(
            "https://x.com", pre_analyzed_urls=["https://x.com/a", {'url': "https://x.com/b"}])

        assert response['mode'] == 'smart_crawl'
        assert response['urlsToCheck'] == 2
        assert response['status'] == JobStatus.COMPLETED

        status = self.scheduler.get_status(response['jobId'])
        assert status['stats']['brokenLinksFound'] == 1
        assert status['phase'] == JobPhase.CHECKING

        broken = self.registry.list_broken_links(response['jobId'])
        assert broken[0].url == "https://x.com/a"
        assert broken[0].error_type == 'timeout'
        assert broken[0].status_code is None
        assert broken[0].source_url == "https://x.com"
        assert self.registry.get_job(response['jobId']).is_smart_crawl == True

    @responses.activate
    @patch('time.sleep')
    def test_failed_batch_does_not_abort_job(self, mock_sleep):
        """A batch that raises is skipped, retried later and the job completes"""
        self.add_smart_urls()
        real_check_urls = HttpChecker.check_urls
        calls = []
        statuses = []

        def flaky(checker, items):
            calls.append([item.url for item in items])
            statuses.append(self.registry.list_jobs(1)[0].status)
            if len(calls) == 2:
                raise RuntimeError("batch exploded")
            return real_check_urls(checker, items)

        with patch.object(HttpChecker, 'check_urls', autospec=True, side_effect=flaky):
            response = self.scheduler.start_job(
                "https://example.com", CrawlSettings(check_batch_size=2), pre_analyzed_urls=SMART_URLS)

        assert response['status'] == JobStatus.COMPLETED
        assert calls == [SMART_URLS[0:2], SMART_URLS[2:4], SMART_URLS[4:6], SMART_URLS[2:4]]
        assert set(statuses) == {JobStatus.RUNNING}

        status = self.scheduler.get_status(response['jobId'])
        assert status['stats']['linksChecked'] == 6
        assert status['stats']['totalLinksDiscovered'] == 6
        assert status['stats']['brokenLinksFound'] == 0

    @responses.activate
    @patch('time.sleep')
    def test_batch_that_keeps_failing_is_finalized(self, mock_sleep):
        with patch.object(HttpChecker, 'check_urls', side_effect=RuntimeError("always")):
            response = self.scheduler.start_job(
                "https://example.com", CrawlSettings(batch_retry_limit=1), pre_analyzed_urls=SMART_URLS[:2])

        assert response['status'] == JobStatus.COMPLETED
        broken = self.registry.list_broken_links(response['jobId'])
        assert [link.error_type for link in broken] == ['other', 'other']
        assert self.scheduler.get_status(response['jobId'])['stats']['linksChecked'] == 2

    @responses.activate
    @patch('time.sleep')
    def test_stop_between_batches(self, mock_sleep):
        """The in-flight batch finishes, then the loop ends as stopped"""
        self.add_smart_urls()
        real_check_urls = HttpChecker.check_urls

        def stop_during_first_batch(checker, items):
            job_id = self.registry.list_jobs(1)[0].id
            if self.registry.get_job(job_id).status == JobStatus.RUNNING:
                self.scheduler.stop_job(job_id)
            return real_check_urls(checker, items)

        with patch.object(HttpChecker, 'check_urls', autospec=True, side_effect=stop_during_first_batch):
            response = self.scheduler.start_job(
                "https://example.com", CrawlSettings(check_batch_size=2), pre_analyzed_urls=SMART_URLS)

        status = self.scheduler.get_status(response['jobId'])
        assert status['status'] == JobStatus.FAILED
        assert status['errorMessage'] == "Stopped by user"
        assert status['stats']['linksChecked'] == 2
        assert status['stats']['totalLinksDiscovered'] == 6
        assert status['progress']['current'] == 2
        assert len(responses.calls) == 2

    @responses.activate
    @patch('time.sleep')
    def test_page_error_during_discovery_does_not_fail_job(self, mock_sleep):
        add_page("https://example.com/", '<a href="/a">A</a><a href="/b">B</a>')
        add_page("https://example.com/b", '<a href="/c">C</a>')
        responses.add(responses.GET, "https://example.com/c", status=404)

        scheduler = ChunkScheduler(self.registry, fetcher=FailingFetcher("https://example.com/a"))
        response = scheduler.start_job("https://example.com", CrawlSettings(max_depth=2, batch_retry_limit=0))

        assert response['status'] == JobStatus.COMPLETED
        checked = {link.url for link in self.registry.list_discovered_links(response['jobId'],
                                                                            status=LinkStatus.CHECKED)}
        assert checked == {"https://example.com/a", "https://example.com/b", "https://example.com/c"}
        broken = [link.url for link in self.registry.list_broken_links(response['jobId'])]
        assert "https://example.com/c" in broken

    @responses.activate
    @patch('time.sleep')
    def test_stop_from_another_process(self, mock_sleep, tmp_path):
        """A stop written through a second registry ends the run and stays on disk"""
        self.add_smart_urls()
        registry_dir = str(tmp_path)
        scheduler = ChunkScheduler(FileJobRegistry(registry_dir))
        real_check_urls = HttpChecker.check_urls
        stops = []

        def stop_elsewhere(checker, items):
            if not stops:
                job_id = scheduler.registry.list_jobs(1)[0].id
                stops.append(ChunkScheduler(FileJobRegistry(registry_dir)).stop_job(job_id))
            return real_check_urls(checker, items)

        with patch.object(HttpChecker, 'check_urls', autospec=True, side_effect=stop_elsewhere):
            response = scheduler.start_job(
                "https://example.com", CrawlSettings(check_batch_size=2), pre_analyzed_urls=SMART_URLS)

        assert stops[0]['message'] == "Stopped by user"
        assert response['status'] == JobStatus.FAILED
        assert len(responses.calls) == 2

        stored = FileJobRegistry(registry_dir)
        job = stored.get_job(response['jobId'])
        assert job.status == JobStatus.FAILED
        assert job.error_message == "Stopped by user"
        assert stored.count_discovered_links(job.id, status=LinkStatus.CHECKED) == 2

    @responses.activate
    def test_robots_disallow_fails_job(self):
        responses.add(responses.GET, "https://example.com/robots.txt", body="User-agent: *\nDisallow: /\n")
        job = self.registry.create_job("https://example.com", CrawlSettings())

        with pytest.raises(FatalJobError):
            self.scheduler.run_discovery(job.id)

        stored = self.registry.get_job(job.id)
        assert stored.status == JobStatus.FAILED
        assert "robots.txt" in stored.error_message

    @responses.activate
    @patch('time.sleep')
    def test_progress_is_monotonic_within_each_phase(self, mock_sleep):
        add_page("https://example.com/", '<a href="/a">A</a><a href="/b">B</a><a href="/c">C</a>')
        add_page("https://example.com/a", '<a href="/a1">A1</a><a href="/a2">A2</a>')
        add_page("https://example.com/b", '<a href="/b1">B1</a>')
        add_page("https://example.com/c", '<p>Nothing here</p>')
        for path in ("a1", "a2", "b1"):
            add_page(f"https://example.com/{path}", '<p>Leaf</p>')

        registry = RecordingRegistry()
        scheduler = ChunkScheduler(registry)
        response = scheduler.start_job(
            "https://example.com", CrawlSettings(max_depth=2, discovery_batch_size=1, check_batch_size=2))

        assert response['status'] == JobStatus.COMPLETED
        for phase in (JobPhase.DISCOVERY, JobPhase.CHECKING):
            values = [current for recorded_phase, current in registry.history if recorded_phase == phase]
            assert values
            assert values == sorted(values)
        assert scheduler.get_status(response['jobId'])['stats']['linksChecked'] == 6

    @responses.activate
    @patch('time.sleep')
    def test_background_job(self, mock_sleep):
        self.add_smart_urls()

        response = self.scheduler.start_job(
            "https://example.com", pre_analyzed_urls=SMART_URLS, background=True)

        assert self.scheduler.wait(response['jobId'], timeout=10) == True
        assert self.registry.get_job(response['jobId']).status == JobStatus.COMPLETED

    @responses.activate
    @patch('time.sleep')
    def test_resume_checking_skips_checked_links(self, mock_sleep):
        responses.add(responses.GET, "https://example.com/b", status=200)
        job = self.registry.create_job("https://example.com", CrawlSettings(), is_smart_crawl=True)
        self.registry.add_discovered_links(job.id, [
            DiscoveredLink(job.id, "https://example.com/a"),
            DiscoveredLink(job.id, "https://example.com/b"),
        ])
        self.registry.update_job_status(job.id, JobStatus.RUNNING, phase=JobPhase.CHECKING)
        self.registry.mark_link_checked(job.id, "https://example.com/a",
                                        CheckResult("https://example.com/a", True, status_code=200))

        self.scheduler.resume_job(job.id)

        assert [call.request.url for call in responses.calls] == ["https://example.com/b"]
        assert self.registry.get_job(job.id).status == JobStatus.COMPLETED

    def test_resume_terminal_job(self):
        job = self.registry.create_job("https://example.com", CrawlSettings())
        self.registry.update_job_status(job.id, JobStatus.FAILED, error_message="boom")

        with pytest.raises(JobStateError):
            self.scheduler.resume_job(job.id)

    def test_checking_precondition_fails_job(self):
        job = self.registry.create_job("https://example.com", CrawlSettings())

        with pytest.raises(FatalJobError):
            self.scheduler.run_checking(job.id)

        stored = self.registry.get_job(job.id)
        assert stored.status == JobStatus.FAILED
        assert "Cannot start checking" in stored.error_message

    @patch('time.sleep')
    def test_discovery_failure_is_fatal(self, mock_sleep):
        job = self.registry.create_job("https://example.com", CrawlSettings())

        with patch.object(self.scheduler.discovery, 'run', side_effect=RegistryError("disk full")):
            with pytest.raises(FatalJobError):
                self.scheduler.run_discovery(job.id)

        stored = self.registry.get_job(job.id)
        assert stored.status == JobStatus.FAILED
        assert stored.error_message == "Discovery failed: disk full"

    def test_one_loop_per_job(self):
        job = self.registry.create_job("https://example.com", CrawlSettings(), is_smart_crawl=True)
        self.registry.update_job_status(job.id, JobStatus.RUNNING, phase=JobPhase.CHECKING)

        with self.scheduler._claim(job.id):
            with pytest.raises(JobStateError):
                self.scheduler.run_checking(job.id)

    def test_invalid_start_request(self):
        with pytest.raises(InvalidSettingsError) as excinfo:
            self.scheduler.start_job("ftp://example.com", {'maxDepth': 9, 'timeout': 'fast'})

        assert len(excinfo.value.errors) == 3
        assert "max_depth must be between 1 and 5" in excinfo.value.errors
        assert self.registry.list_jobs() == []

    def test_smart_start_without_usable_urls(self):
        with pytest.raises(InvalidSettingsError):
            self.scheduler.start_job("https://example.com", pre_analyzed_urls=[{'sourceUrl': "https://example.com"}])
        assert self.registry.list_jobs() == []

    def test_stop_job(self):
        job = self.registry.create_job("https://example.com", CrawlSettings())

        result = self.scheduler.stop_job(job.id)

        assert result == {'jobId': job.id, 'status': JobStatus.FAILED, 'message': "Stopped by user"}
        assert self.registry.get_job(job.id).completed_at is not None
        with pytest.raises(JobStateError):
            self.scheduler.stop_job(job.id)
        with pytest.raises(JobNotFoundError):
            self.scheduler.stop_job("missing")

    def test_get_status_shape(self):
        job = self.registry.create_job("https://example.com", CrawlSettings(max_depth=2))

        status = self.scheduler.get_status(job.id)

        assert set(status) == {'jobId', 'url', 'status', 'phase', 'progress', 'stats', 'timestamps',
                               'settings', 'errorMessage'}
        assert status['jobId'] == job.id
        assert status['status'] == JobStatus.PENDING
        assert status['progress'] == {'current': 0, 'total': 0, 'percentage': 0, 'estimatedTimeRemaining': None}
        assert status['timestamps']['completedAt'] is None
        assert status['timestamps']['createdAt'] == job.created_at.isoformat()
        assert status['settings']['max_depth'] == 2
        with pytest.raises(JobNotFoundError):
            self.scheduler.get_status("missing")


class TestBatchOutcome:
    def test_outcome(self):
        assert BatchOutcome(5, checked=5, broken=1).ok == True
        failed = BatchOutcome(5, error=RuntimeError("boom"))
        assert failed.ok == False
        assert "boom" in repr(failed)
