import logging

from broken_link_crawler.models import BrokenLink, ErrorType


class BrokenLinkRecorder:
    """Persists failing check results with the page they were found on"""

    def __init__(self, registry):
        self.registry = registry
        self.logger = logging.getLogger(__name__)

    def record(self, job_id, result):
        """Store one result if it is broken; returns True when a new row was written"""
        if result.is_working:
            return False

        broken_link = BrokenLink(
            job_id=job_id,
            url=result.url,
            source_url=result.source_url,
            status_code=result.status_code,
            error_type=result.error_type or ErrorType.OTHER,
            link_text=result.link_text or 'No text',
        )
        added = self.registry.add_broken_link(job_id, broken_link)
        if added:
            status = result.status_code if result.status_code is not None else broken_link.error_type
            self.logger.warning(f"Broken link: {result.url} ({status}) found on {result.source_url or 'unknown'}")
        return added

    def record_all(self, job_id, results):
        return sum(1 for result in results if self.record(job_id, result))
