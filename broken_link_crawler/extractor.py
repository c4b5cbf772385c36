"""
Link extraction from fetched HTML pages.

Turns raw markup into normalized, classified ExtractedLink objects:
relative references are resolved, fragments dropped, internal/external
classified against the crawl origin, and each link flagged for whether the
discovery engine should fetch it for more links.
"""

import logging

from bs4 import BeautifulSoup

from broken_link_crawler.models import ExtractedLink
from broken_link_crawler.urls import (
    clean_text,
    is_internal_url,
    is_valid_url,
    normalize_url,
    resolve_url,
    should_crawl_url,
    should_skip_href,
)

LINK_TEXT_MAX_LENGTH = 100


class LinkExtractor:
    def __init__(self, origin_url=None, max_depth=3, include_external=False,
                 max_links_per_page=1000, respect_nofollow=True):
        self.origin_url = origin_url
        self.max_depth = max_depth
        self.include_external = include_external
        self.max_links_per_page = max_links_per_page
        self.respect_nofollow = respect_nofollow
        self.logger = logging.getLogger(__name__)

    @classmethod
    def from_settings(cls, origin_url, settings):
        return cls(
            origin_url=origin_url,
            max_depth=settings.max_depth,
            include_external=settings.include_external,
            max_links_per_page=settings.max_links_per_page,
            respect_nofollow=settings.respect_nofollow,
        )

    def extract_links(self, content, base_url, depth):
        """Extract classified links from a page found at the given depth"""
        if not is_valid_url(base_url):
            self.logger.warning(f"Cannot extract links, invalid base URL: {base_url}")
            return []
        if isinstance(content, bytes):
            content = content.decode('utf-8', errors='replace')
        if not content or not isinstance(content, str):
            return []

        link_depth = depth + 1
        if link_depth > self.max_depth:
            return []

        origin_url = self.origin_url or base_url
        soup = BeautifulSoup(content, 'html.parser')
        resolve_base = self._document_base(soup, base_url)

        links = []
        seen = set()
        for anchor in soup.find_all('a', href=True):
            if len(links) >= self.max_links_per_page:
                self.logger.info(f"Link cap of {self.max_links_per_page} reached on {base_url}")
                break

            href = anchor['href']
            if not href or not href.strip() or should_skip_href(href):
                continue
            if self.respect_nofollow and 'nofollow' in self._rel_values(anchor):
                continue

            absolute_url = resolve_url(href, resolve_base)
            if not absolute_url or not is_valid_url(absolute_url):
                continue

            url = normalize_url(absolute_url)
            if url in seen:
                continue
            seen.add(url)

            is_internal = is_internal_url(url, origin_url)
            if not is_internal and not self.include_external:
                continue

            links.append(ExtractedLink(
                url=url,
                source_url=base_url,
                depth=link_depth,
                link_text=self._link_text(anchor),
                is_internal=is_internal,
                should_crawl=is_internal and link_depth < self.max_depth and should_crawl_url(url),
            ))

        self.logger.debug(f"Extracted {len(links)} links from {base_url}")
        return links

    @staticmethod
    def _document_base(soup, base_url):
        base = soup.find('base', href=True)
        if base is None:
            return base_url
        return resolve_url(base['href'], base_url) or base_url

    @staticmethod
    def _rel_values(anchor):
        rel = anchor.get('rel') or []
        if isinstance(rel, str):
            rel = rel.split()
        return [value.lower() for value in rel]

    @staticmethod
    def _link_text(anchor):
        text = anchor.get_text(' ', strip=True)
        if not text:
            text = anchor.get('title') or anchor.get('aria-label') or ''
        if not text:
            image = anchor.find('img', alt=True)
            if image is not None:
                text = image['alt']
        return clean_text(text, LINK_TEXT_MAX_LENGTH) or 'No text'
