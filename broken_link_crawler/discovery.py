"""
Breadth-first link discovery.

The DiscoveryEngine walks a site from the job's start URL, fetching HTML
pages in small batches and recording every link it finds (without checking
liveness). All traversal state lives in a FrontierState, which is
checkpointed to the registry after every batch so an interrupted discovery
continues where it stopped.
"""

import logging
import time
from collections import OrderedDict

import requests

from broken_link_crawler.errors import CrawlBlockedError
from broken_link_crawler.extractor import LinkExtractor
from broken_link_crawler.fetcher import PageFetcher
from broken_link_crawler.models import DiscoveredLink
from broken_link_crawler.robots import RobotsPolicy
from broken_link_crawler.serializers import DiscoveredLinkRecordSerializer
from broken_link_crawler.urls import is_safe_url, normalize_url


class FrontierState:
    """Traversal state of one discovery run"""

    def __init__(self, visited=None, pending=None, pages_processed=0, buffered_links=None,
                 discovered_urls=None):
        self.visited = set(visited or ())
        # url -> {'depth': int, 'source_url': str | None}, in discovery order
        self.pending = OrderedDict(pending or ())
        self.pages_processed = pages_processed
        self.buffered_links = list(buffered_links or ())
        self.discovered_urls = set(discovered_urls or ())
        self.stopped = False

    @classmethod
    def start(cls, url):
        return cls(pending=[(url, {'depth': 0, 'source_url': None})])

    @property
    def has_pending(self):
        return bool(self.pending)

    @property
    def known_pages(self):
        return self.pages_processed + len(self.pending)

    def next_batch(self, size):
        batch = []
        while self.pending and len(batch) < size:
            batch.append(self.pending.popitem(last=False))
        return batch

    def mark_visited(self, url):
        self.visited.add(url)
        self.visited.add(normalize_url(url))

    def enqueue(self, url, depth, source_url):
        if url in self.visited or url in self.pending:
            return False
        self.pending[url] = {'depth': depth, 'source_url': source_url}
        return True

    def record_link(self, job_id, link):
        """Buffer a discovered link; the first page a URL is seen on wins"""
        if link.url in self.discovered_urls:
            return False
        self.discovered_urls.add(link.url)
        self.buffered_links.append(DiscoveredLink.from_extracted(job_id, link))
        return True

    def to_checkpoint(self):
        return {
            'visited': sorted(self.visited),
            'pending': [[url, entry] for url, entry in self.pending.items()],
            'pages_processed': self.pages_processed,
            'buffered_links': DiscoveredLinkRecordSerializer(self.buffered_links, many=True).data,
            'discovered_urls': sorted(self.discovered_urls),
        }

    @classmethod
    def from_checkpoint(cls, data):
        return cls(
            visited=data.get('visited', []),
            pending=[(url, entry) for url, entry in data.get('pending', [])],
            pages_processed=data.get('pages_processed', 0),
            buffered_links=[DiscoveredLink.from_dict(row) for row in data.get('buffered_links', [])],
            discovered_urls=data.get('discovered_urls', []),
        )


class DiscoveryEngine:
    def __init__(self, registry, fetcher=None):
        self.registry = registry
        self.fetcher = fetcher or PageFetcher()
        self.logger = logging.getLogger(__name__)

    def run(self, job, should_stop=None):
        """
        Discover links for a job and store them in the registry.

        should_stop is polled at every batch boundary. Returns the final
        FrontierState. Raises CrawlBlockedError if robots.txt forbids the
        start URL and RegistryError if the final set of discovered links
        cannot be written. Errors on a single page are logged and skipped.
        """
        settings = job.settings
        extractor = LinkExtractor.from_settings(job.url, settings)
        frontier = self._restore(job)
        robots = self._robots_policy(job)
        batch_delay = max(settings.batch_delay, robots.crawl_delay or 0)

        self.logger.info(f"Starting discovery for {job.url} (max depth {settings.max_depth}, "
                         f"include external {settings.include_external})")

        while frontier.has_pending:
            if should_stop is not None and should_stop():
                self.logger.info(f"Discovery for job {job.id} stopped after {frontier.pages_processed} pages")
                frontier.stopped = True
                self._flush(job.id, frontier, settings.flush_size, final=False)
                return frontier

            remaining = settings.max_pages_for_discovery - frontier.pages_processed
            if remaining <= 0:
                self.logger.warning(f"Page limit of {settings.max_pages_for_discovery} reached, "
                                    f"{len(frontier.pending)} pages left unvisited")
                break

            for url, entry in frontier.next_batch(min(settings.discovery_batch_size, remaining)):
                if url in frontier.visited:
                    continue
                frontier.mark_visited(url)
                frontier.pages_processed += 1
                try:
                    if not robots.can_fetch(url):
                        self.logger.info(f"Not crawling {url}: disallowed by robots.txt")
                        continue
                    self._process_page(job.id, url, entry['depth'], extractor, frontier, settings)
                except Exception as e:
                    self.logger.error(f"Error crawling {url}: {e}")

            self._checkpoint(job.id, frontier, settings)
            if frontier.has_pending and batch_delay:
                time.sleep(batch_delay)

        self._flush(job.id, frontier, settings.flush_size, final=True)
        self.registry.clear_checkpoint(job.id)
        self.logger.info(f"Discovery complete: {frontier.pages_processed} pages visited, "
                         f"{len(frontier.discovered_urls)} links discovered")
        return frontier

    def _robots_policy(self, job):
        url = job.url.strip()
        if not job.settings.respect_robots_txt:
            return RobotsPolicy()
        # unsafe hosts are never requested, robots.txt included
        if job.settings.block_private_hosts and not is_safe_url(url)[0]:
            return RobotsPolicy()
        robots = RobotsPolicy.fetch(self.fetcher, url, timeout=min(job.settings.timeout, 5))
        if not robots.can_fetch(url):
            raise CrawlBlockedError(url, 'disallowed by robots.txt')
        return robots

    def _restore(self, job):
        checkpoint = self.registry.load_checkpoint(job.id)
        if checkpoint is None:
            return FrontierState.start(job.url.strip())
        frontier = FrontierState.from_checkpoint(checkpoint)
        self.logger.info(f"Resumed discovery for job {job.id}. Visited: {len(frontier.visited)}, "
                         f"To visit: {len(frontier.pending)}, Discovered: {len(frontier.discovered_urls)}")
        return frontier

    def _process_page(self, job_id, url, depth, extractor, frontier, settings):
        if settings.block_private_hosts:
            safe, reason = is_safe_url(url)
            if not safe:
                self.logger.warning(f"Not crawling {url}: {reason}")
                return

        try:
            response = self.fetcher.request(url, timeout=settings.timeout)
        except requests.exceptions.RequestException as e:
            self.logger.error(f"Failed to fetch {url}: {e}")
            return

        if not response.ok:
            self.logger.warning(f"Not extracting links from {url}: HTTP {response.status_code}")
            return
        if not response.is_html:
            self.logger.debug(f"Skipping non-HTML page {url} ({response.content_type})")
            return

        found = 0
        for link in extractor.extract_links(response.body, url, depth):
            if frontier.record_link(job_id, link):
                found += 1
            if link.should_crawl:
                frontier.enqueue(link.url, link.depth, url)
        self.logger.info(f"Crawled {url} (depth {depth}): {found} new links")

    def _checkpoint(self, job_id, frontier, settings):
        self.registry.update_job_progress(job_id, frontier.pages_processed, frontier.known_pages)
        self._flush(job_id, frontier, settings.flush_size, final=False)
        self.registry.save_checkpoint(job_id, frontier.to_checkpoint())

    def _flush(self, job_id, frontier, flush_size, final):
        """Write buffered links in chunks; only a failed final flush raises"""
        while frontier.buffered_links:
            chunk = frontier.buffered_links[:flush_size]
            try:
                self.registry.add_discovered_links(job_id, chunk)
            except Exception as e:
                if final:
                    self.logger.error(f"Failed to store discovered links for job {job_id}: {e}")
                    raise
                self.logger.error(f"Failed to flush discovered links for job {job_id}, will retry: {e}")
                return False
            del frontier.buffered_links[:len(chunk)]
        return True
