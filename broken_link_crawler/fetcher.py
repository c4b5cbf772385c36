"""
Page-fetch primitive: one HTTP request, returning status/headers/body.

Network-level failures propagate as requests.RequestException; HTTP error
statuses are returned, not raised.
"""

import logging

import requests
from requests.structures import CaseInsensitiveDict

from broken_link_crawler.config import DEFAULT_USER_AGENT

HTML_CONTENT_TYPES = ('text/html', 'application/xhtml+xml')


class PageResponse:
    def __init__(self, ok, status_code, headers=None, body=None, url=None):
        self.ok = ok
        self.status_code = status_code
        self.headers = CaseInsensitiveDict(headers or {})
        self.body = body
        self.url = url

    @property
    def content_type(self):
        return (self.headers.get('content-type') or '').lower()

    @property
    def is_html(self):
        return any(kind in self.content_type for kind in HTML_CONTENT_TYPES)

    def __repr__(self):
        return f"PageResponse(status={self.status_code}, ok={self.ok}, type={self.content_type!r})"


class PageFetcher:
    def __init__(self, user_agent=DEFAULT_USER_AGENT, session=None):
        self.logger = logging.getLogger(__name__)

        # Session for connection pooling
        self.session = session or requests.Session()
        self.session.headers.update({
            'User-Agent': user_agent,
            'Accept': 'text/html,application/xhtml+xml,*/*;q=0.8',
        })

    def request(self, url, timeout, headers=None, read_body=True):
        """Issue a GET; redirects follow the requests default policy"""
        response = self.session.get(
            url,
            timeout=timeout,
            headers=headers,
            allow_redirects=True,
            stream=not read_body,
        )
        try:
            body = response.text if read_body else None
            return PageResponse(
                ok=response.ok,
                status_code=response.status_code,
                headers=response.headers,
                body=body,
                url=response.url,
            )
        finally:
            response.close()

    def close(self):
        self.session.close()
