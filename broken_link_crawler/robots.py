"""
robots.txt handling for discovery and content analysis.

The file is fetched through the crawler's own PageFetcher so it shares the
session and User-Agent. A missing or unreadable robots.txt allows crawling.
"""

import logging
from urllib.parse import urlparse, urlunparse
from urllib.robotparser import RobotFileParser

import requests

ROBOTS_TIMEOUT = 5

logger = logging.getLogger(__name__)


def robots_url_for(url):
    parsed = urlparse(url)
    return urlunparse((parsed.scheme, parsed.netloc, '/robots.txt', '', '', ''))


class RobotsPolicy:
    def __init__(self, parser=None, user_agent='*'):
        self.parser = parser
        self.user_agent = user_agent

    @classmethod
    def fetch(cls, fetcher, url, timeout=ROBOTS_TIMEOUT):
        """Load the robots.txt that governs url"""
        user_agent = fetcher.session.headers.get('User-Agent', '*')
        robots_url = robots_url_for(url)
        try:
            response = fetcher.request(robots_url, timeout=timeout)
        except requests.exceptions.RequestException as e:
            logger.info(f"Could not fetch {robots_url}, proceeding with crawl: {e}")
            return cls(user_agent=user_agent)

        if not response.ok or not response.body:
            logger.debug(f"No robots.txt at {robots_url} (HTTP {response.status_code})")
            return cls(user_agent=user_agent)

        parser = RobotFileParser(robots_url)
        parser.parse(response.body.splitlines())
        return cls(parser, user_agent)

    def can_fetch(self, url):
        if self.parser is None:
            return True
        return self.parser.can_fetch(self.user_agent, url)

    @property
    def crawl_delay(self):
        if self.parser is None:
            return None
        return self.parser.crawl_delay(self.user_agent)
