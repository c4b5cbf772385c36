"""
HTTP liveness checker.

Checks a batch of URLs on a bounded worker pool. Every URL gets a
CheckResult; individual failures are classified and recorded, never raised.
"""

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime

import requests

from broken_link_crawler.config import DEFAULT_USER_AGENT
from broken_link_crawler.fetcher import PageFetcher
from broken_link_crawler.models import CheckResult, ErrorType
from broken_link_crawler.urls import is_safe_url, is_valid_url

TRANSIENT_ERRORS = frozenset([ErrorType.TIMEOUT, ErrorType.DNS_ERROR, ErrorType.CONNECTION_ERROR])

DNS_FAILURE_MARKERS = (
    'nameresolutionerror',
    'failed to resolve',
    'name or service not known',
    'nodename nor servname',
    'temporary failure in name resolution',
    'getaddrinfo failed',
    'no address associated with hostname',
)


def is_working_status(status_code):
    return status_code is not None and 200 <= status_code < 400


def classify_status(status_code):
    """Map a non-working HTTP status to an error type"""
    if status_code in (401, 403, 404):
        return str(status_code)
    if status_code >= 500:
        return '500'
    if status_code >= 400:
        return str(status_code)
    return ErrorType.OTHER


def classify_exception(error):
    """Map a requests exception to an error type"""
    if isinstance(error, requests.exceptions.SSLError):
        return ErrorType.SSL_ERROR
    # ConnectTimeout is both a Timeout and a ConnectionError
    if isinstance(error, requests.exceptions.Timeout):
        return ErrorType.TIMEOUT
    if isinstance(error, (requests.exceptions.InvalidURL, requests.exceptions.MissingSchema,
                          requests.exceptions.InvalidSchema)):
        return ErrorType.INVALID_URL
    if isinstance(error, requests.exceptions.ConnectionError):
        message = repr(error).lower()
        if any(marker in message for marker in DNS_FAILURE_MARKERS):
            return ErrorType.DNS_ERROR
        return ErrorType.CONNECTION_ERROR
    return ErrorType.OTHER


class HttpChecker:
    def __init__(self, timeout=10, max_concurrent=5, retry_attempts=2, retry_delay=1.0,
                 block_private_hosts=True, fetcher=None, user_agent=DEFAULT_USER_AGENT):
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        self.timeout = timeout
        self.max_concurrent = max_concurrent
        self.retry_attempts = retry_attempts
        self.retry_delay = retry_delay
        self.block_private_hosts = block_private_hosts
        self.fetcher = fetcher or PageFetcher(user_agent=user_agent)
        self.logger = logging.getLogger(__name__)

    @classmethod
    def from_settings(cls, settings, fetcher=None):
        return cls(
            timeout=settings.timeout,
            max_concurrent=settings.max_concurrent,
            retry_attempts=settings.retry_attempts,
            retry_delay=settings.retry_delay,
            block_private_hosts=settings.block_private_hosts,
            fetcher=fetcher,
        )

    def check_urls(self, items):
        """
        Check a batch of URLs and return results in input order.

        Items are URL strings, dicts with 'url' (and optionally 'sourceUrl'
        / 'linkText'), or objects with url/source_url/link_text attributes.
        Raises ValueError only for a malformed batch.
        """
        if not isinstance(items, (list, tuple)):
            raise ValueError("check_urls expects a list of URLs")
        if not items:
            raise ValueError("check_urls expects a non-empty list of URLs")

        targets = [self._target(item) for item in items]
        with ThreadPoolExecutor(max_workers=self.max_concurrent) as executor:
            results = list(executor.map(self._check_target, targets))

        broken = sum(1 for result in results if not result.is_working)
        self.logger.info(f"Checked {len(results)} URLs: {len(results) - broken} working, {broken} broken")
        return results

    def check_url(self, url, source_url=None, link_text='No text'):
        """Check a single URL, retrying transient network failures"""
        start_time = time.monotonic()

        if not is_valid_url(url):
            return self._failure(url, source_url, link_text, start_time, ErrorType.INVALID_URL,
                                 'Invalid URL format', attempts=0)

        if self.block_private_hosts:
            safe, reason = is_safe_url(url)
            if not safe:
                self.logger.warning(f"Blocked URL: {url} ({reason})")
                return self._failure(url, source_url, link_text, start_time,
                                     ErrorType.SECURITY_BLOCKED, f"Security: {reason}", attempts=0)

        attempt = 0
        while True:
            attempt += 1
            try:
                response = self.fetcher.request(url, timeout=self.timeout, read_body=False)
            except requests.exceptions.RequestException as e:
                error_type = classify_exception(e)
                if error_type in TRANSIENT_ERRORS and attempt <= self.retry_attempts:
                    self.logger.debug(f"Retrying {url} after {error_type} (attempt {attempt})")
                    time.sleep(self.retry_delay * attempt)
                    continue
                return self._failure(url, source_url, link_text, start_time, error_type, str(e),
                                     attempts=attempt)

            is_working = is_working_status(response.status_code)
            return CheckResult(
                url=url,
                source_url=source_url,
                link_text=link_text,
                is_working=is_working,
                status_code=response.status_code,
                response_time=self._elapsed_ms(start_time),
                error_type=None if is_working else classify_status(response.status_code),
                error_message=None if is_working else f"HTTP {response.status_code}",
                checked_at=datetime.now(),
                attempts=attempt,
            )

    def _check_target(self, target):
        url, source_url, link_text = target
        try:
            return self.check_url(url, source_url, link_text)
        except Exception as e:
            self.logger.exception(f"Unexpected error checking {url}")
            return CheckResult(
                url=url,
                source_url=source_url,
                link_text=link_text,
                is_working=False,
                error_type=ErrorType.OTHER,
                error_message=str(e),
            )

    def _failure(self, url, source_url, link_text, start_time, error_type, message, attempts):
        return CheckResult(
            url=url,
            source_url=source_url,
            link_text=link_text,
            is_working=False,
            status_code=None,
            response_time=self._elapsed_ms(start_time),
            error_type=error_type,
            error_message=message,
            checked_at=datetime.now(),
            attempts=attempts,
        )

    @staticmethod
    def _target(item):
        if isinstance(item, str):
            return item, None, 'No text'
        if isinstance(item, dict):
            url = item.get('url')
            source_url = item.get('sourceUrl', item.get('source_url'))
            link_text = item.get('linkText', item.get('link_text'))
        else:
            url = getattr(item, 'url', None)
            source_url = getattr(item, 'source_url', None)
            link_text = getattr(item, 'link_text', None)
        if not url:
            raise ValueError(f"Batch item has no URL: {item!r}")
        return url, source_url, link_text or 'No text'

    @staticmethod
    def _elapsed_ms(start_time):
        return int((time.monotonic() - start_time) * 1000)


def summarize(results):
    """Aggregate counts and average response time over check results"""
    summary = {
        'total': len(results),
        'working': 0,
        'broken': 0,
        'errors': {},
        'status_codes': {},
        'average_response_time': 0,
    }
    timed = []
    for result in results:
        if result.is_working:
            summary['working'] += 1
        else:
            summary['broken'] += 1
            error_type = result.error_type or ErrorType.OTHER
            summary['errors'][error_type] = summary['errors'].get(error_type, 0) + 1
        if result.status_code is not None:
            code = result.status_code
            summary['status_codes'][code] = summary['status_codes'].get(code, 0) + 1
        if result.response_time:
            timed.append(result.response_time)
    if timed:
        summary['average_response_time'] = round(sum(timed) / len(timed))
    return summary
