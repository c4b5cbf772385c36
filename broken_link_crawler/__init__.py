"""
Broken link crawler: discovers a site's links and checks each one,
as resumable chunked jobs.
"""

from broken_link_crawler.analyzer import ContentAnalyzer
from broken_link_crawler.models import CrawlSettings, JobStatus
from broken_link_crawler.registry import FileJobRegistry, JobRegistry
from broken_link_crawler.scheduler import ChunkScheduler

__version__ = '1.0.0'

__all__ = ['ChunkScheduler', 'ContentAnalyzer', 'CrawlSettings', 'FileJobRegistry', 'JobRegistry', 'JobStatus']
