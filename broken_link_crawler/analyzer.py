"""
Content page analysis.

The ContentAnalyzer walks a site's internal pages, most promising first,
classifies each one by URL pattern and page structure, and returns the
content pages. Its contentPages list can be passed straight to
ChunkScheduler.start_job(pre_analyzed_urls=...) for a smart crawl.
"""

import heapq
import itertools
import logging
import re
import time
from urllib.parse import parse_qsl, urlparse

import requests
from bs4 import BeautifulSoup

from broken_link_crawler.errors import CrawlBlockedError, InvalidSettingsError
from broken_link_crawler.fetcher import PageFetcher
from broken_link_crawler.robots import RobotsPolicy
from broken_link_crawler.serializers import ContentPageSerializer, FilteredPageSerializer
from broken_link_crawler.urls import (clean_text, get_hostname, is_safe_url, is_valid_url, normalize_url,
                                      resolve_url, should_skip_href)

DEFAULT_MAX_DEPTH = 3
DEFAULT_MAX_PAGES = 1000
MAX_ANALYSIS_DEPTH = 5
MAX_LINKS_PER_PAGE = 200
CONTENT_THRESHOLD = 0.6
START_PRIORITY = 10


class PageType:
    CONTENT = 'content'
    PAGES = 'pages'
    WITH_PARAMS = 'withParams'
    PAGINATION = 'pagination'
    DATES = 'dates'
    MEDIA = 'media'
    ADMIN = 'admin'
    API = 'api'
    OTHER = 'other'

    ALL = (CONTENT, PAGES, WITH_PARAMS, PAGINATION, DATES, MEDIA, ADMIN, API, OTHER)
    NEVER_CONTENT = frozenset((ADMIN, API, MEDIA))


ADMIN_MARKERS = ('/wp-admin', '/admin', '/wp-content', '/wp-includes', '/dashboard',
                 '/login', '/register', '/auth')
API_MARKERS = ('/api/', '/rest/', '/graphql', '/webhook')
MEDIA_EXTENSIONS = (
    '.jpg', '.jpeg', '.png', '.gif', '.svg', '.webp', '.ico',
    '.pdf', '.doc', '.docx', '.xls', '.xlsx', '.ppt', '.pptx',
    '.zip', '.rar', '.tar', '.gz',
    '.mp3', '.mp4', '.avi', '.mov', '.wmv', '.flv',
    '.css', '.js', '.json', '.xml', '.txt',
)
PAGINATION_MARKERS = ('/page/', '/page-', '/feed', '/rss')
PAGINATION_PARAMS = ('page', 'p')
OTHER_MARKERS = ('/search', '/category/', '/tag/', '/archive', '/sitemap', '/robots.txt', '/.well-known/')

_DATE_ARCHIVE = re.compile(r'/\d{4}(/\d{1,2})?(/\d{1,2})?/')
_TRAILING_NUMBER = re.compile(r'/\d+/?$')
_LISTING_TITLE = re.compile(r'^(page \d+|archive|category|tag)', re.IGNORECASE)
_ERROR_TITLE = re.compile(r'(404|not found|error|login|register)', re.IGNORECASE)
_MENU_CLASS = re.compile(r'menu')
_ARTICLE_SCHEMA = ('Article', 'BlogPosting', 'NewsArticle')

logger = logging.getLogger(__name__)


def classify_url(url):
    """Classify a page by its URL alone; returns a PageType value"""
    try:
        parsed = urlparse(url)
    except (AttributeError, ValueError):
        return PageType.OTHER
    path = parsed.path.lower()
    params = parse_qsl(parsed.query, keep_blank_values=True)

    if any(marker in path for marker in ADMIN_MARKERS):
        return PageType.ADMIN
    if any(marker in path for marker in API_MARKERS):
        return PageType.API
    if path.endswith(MEDIA_EXTENSIONS):
        return PageType.MEDIA
    if _DATE_ARCHIVE.search(path):
        return PageType.DATES
    if (any(marker in path for marker in PAGINATION_MARKERS)
            or any(key.lower() in PAGINATION_PARAMS for key, _ in params)
            or _TRAILING_NUMBER.search(path)):
        return PageType.PAGINATION
    if parsed.query:
        # a few parameters can still be a content page
        return PageType.WITH_PARAMS if len(params) > 3 else PageType.PAGES
    if any(marker in path for marker in OTHER_MARKERS):
        return PageType.OTHER
    return PageType.PAGES


def page_title(soup):
    """The page's <title>, falling back to its first <h1>"""
    for tag in (soup.title, soup.find('h1')):
        if tag is not None:
            title = clean_text(tag.get_text(), max_length=100)
            if title:
                return title
    return 'Untitled Page'


def word_count(soup):
    return len(soup.get_text(' ', strip=True).split())


def content_score(soup, title=''):
    """
    Score how much a parsed page looks like primary content, from 0 to 1.

    Starts neutral at 0.5. Long text, paragraphs, headings, a moderate
    number of links, article markup and a meta description raise it.
    Thin pages and error or listing titles lower it.
    """
    score = 0.5

    if title and 10 < len(title) < 200:
        score += 0.1
        if not _LISTING_TITLE.search(title):
            score += 0.1
        if _ERROR_TITLE.search(title):
            score -= 0.3

    words = word_count(soup)
    if words > 100:
        score += 0.1
    if words > 300:
        score += 0.1
    if words > 1000:
        score += 0.1
    if words < 50:
        score -= 0.2

    links = len(soup.find_all('a', href=True))
    if len(soup.find_all('p')) > 2:
        score += 0.1
    if soup.find(['h1', 'h2', 'h3', 'h4', 'h5', 'h6']) is not None:
        score += 0.1
    if 3 < links < 100:
        score += 0.1

    if soup.find('nav') is not None:
        score += 0.05
    if soup.find(class_=_MENU_CLASS) is not None:
        score += 0.05

    markup = str(soup)
    if 'schema.org' in markup and any(kind in markup for kind in _ARTICLE_SCHEMA):
        score += 0.15

    if soup.find('meta', attrs={'name': 'description'}) or soup.find('meta', attrs={'property': 'og:description'}):
        score += 0.05

    return max(0.0, min(1.0, score))


class PageClassification:
    def __init__(self, type, is_content, score, confidence):
        self.type = type
        self.is_content = is_content
        self.score = score
        self.confidence = confidence

    def __repr__(self):
        return f"PageClassification(type={self.type!r}, score={self.score:.2f}, confidence={self.confidence!r})"


def classify_page(url, soup=None, title=''):
    """Classify a page by URL, refined by its content when a parsed page is given"""
    url_type = classify_url(url)
    if url_type in PageType.NEVER_CONTENT:
        return PageClassification(url_type, False, 0.0, 'high')

    if soup is not None:
        score = content_score(soup, title)
        is_content = score >= CONTENT_THRESHOLD
        if score > 0.8:
            confidence = 'high'
        elif score > 0.4:
            confidence = 'medium'
        else:
            confidence = 'low'
        return PageClassification(PageType.CONTENT if is_content else url_type, is_content, score, confidence)

    is_content = url_type == PageType.PAGES
    return PageClassification(PageType.CONTENT if is_content else url_type, is_content,
                              0.7 if is_content else 0.3, 'medium')


def link_priority(url, page_type, depth):
    """Queue priority of a discovered link; shallow clean URLs come first"""
    priority = 5 + (3 - depth)
    if page_type == PageType.PAGES:
        priority += 3
    elif page_type == PageType.WITH_PARAMS:
        priority += 1
    elif page_type in (PageType.PAGINATION, PageType.DATES):
        priority -= 2
    elif page_type == PageType.OTHER:
        priority -= 1

    path_depth = len([part for part in urlparse(url).path.split('/') if part])
    if path_depth <= 2:
        priority += 2
    if path_depth <= 1:
        priority += 1
    return max(1, priority)


class AnalyzedPage:
    def __init__(self, url, depth, source_url=None, type=PageType.OTHER, is_content=False, score=0.0,
                 confidence='low', title='', word_count=0, link_count=0, error=None):
        self.url = url
        self.depth = depth
        self.source_url = source_url
        self.type = type
        self.is_content = is_content
        self.score = score
        self.confidence = confidence
        self.title = title
        self.word_count = word_count
        self.link_count = link_count
        self.error = error


def recommendations(content_pages, total_pages):
    result = []
    ratio = content_pages / total_pages if total_pages else 0
    percent = round(ratio * 100)
    if ratio > 0.7:
        result.append({
            'type': 'success',
            'message': f"{percent}% of discovered pages are content pages.",
            'action': 'The site has a clean structure; a content-only crawl is recommended.',
        })
    elif ratio > 0.3:
        result.append({
            'type': 'info',
            'message': f"{percent}% of pages are content pages.",
            'action': 'A smart crawl of the content pages will be efficient.',
        })
    else:
        result.append({
            'type': 'warning',
            'message': f"Only {percent}% of pages are content pages.",
            'action': 'Use a content-only crawl to avoid checking low-value pages.',
        })

    if total_pages > 500:
        result.append({
            'type': 'suggestion',
            'message': f"Large site detected ({total_pages} pages).",
            'action': 'A smart crawl will take much less time than a full crawl.',
        })

    filtered = total_pages - content_pages
    if filtered > content_pages:
        result.append({
            'type': 'info',
            'message': f"Filtered out {filtered} non-content pages, keeping {content_pages} content pages.",
            'action': 'Checking only content pages keeps the results focused.',
        })
    return result


class ContentAnalyzer:
    def __init__(self, fetcher=None, timeout=10, page_delay=0.1, block_private_hosts=True,
                 respect_robots_txt=True):
        self.fetcher = fetcher or PageFetcher()
        self.timeout = timeout
        self.page_delay = page_delay
        self.block_private_hosts = block_private_hosts
        self.respect_robots_txt = respect_robots_txt
        self.logger = logging.getLogger(__name__)

    def analyze(self, url, max_depth=DEFAULT_MAX_DEPTH, max_pages=DEFAULT_MAX_PAGES):
        """
        Find the content pages of a site.

        Raises InvalidSettingsError for a bad URL or limits and
        CrawlBlockedError when the site may not be crawled. Pages that fail
        to load are counted under 'other' and never stop the analysis.
        """
        url = url.strip() if isinstance(url, str) else url
        self._validate(url, max_depth, max_pages)
        robots = self._robots_policy(url)
        hostname = get_hostname(url)

        self.logger.info(f"Analyzing content pages of {url} (max depth {max_depth}, max pages {max_pages})")

        counter = itertools.count()
        queue = [(-START_PRIORITY, next(counter), url, 0, None)]
        queued = {url}
        visited = set()
        pages = []
        links_discovered = 0

        while queue and len(pages) < max_pages:
            _, _, page_url, depth, source_url = heapq.heappop(queue)
            queued.discard(page_url)
            if page_url in visited:
                continue
            visited.add(page_url)
            visited.add(normalize_url(page_url))

            page = AnalyzedPage(page_url, depth, source_url)
            pages.append(page)
            try:
                soup = self._load(page, robots)
                if soup is not None and depth < max_depth:
                    for link_url, link_type in self._internal_links(soup, page_url, hostname):
                        if link_url in visited or link_url in queued:
                            continue
                        priority = link_priority(link_url, link_type, depth) + (3 - (depth + 1))
                        heapq.heappush(queue, (-priority, next(counter), link_url, depth + 1, page_url))
                        queued.add(link_url)
                        links_discovered += 1
            except Exception as e:
                self.logger.error(f"Error analyzing {page_url}: {e}")
                page.type, page.is_content, page.error = PageType.OTHER, False, str(e)

            if page.is_content:
                self.logger.info(f"Content page: {page_url} (score {page.score:.2f})")
            else:
                self.logger.debug(f"Filtered: {page_url} ({page.type}, score {page.score:.2f})")

            if queue and self.page_delay:
                time.sleep(self.page_delay)

        return self._report(url, pages, links_discovered)

    def _validate(self, url, max_depth, max_pages):
        errors = []
        if not is_valid_url(url):
            errors.append('Invalid URL format')
        if not isinstance(max_depth, int) or not 1 <= max_depth <= MAX_ANALYSIS_DEPTH:
            errors.append(f'maxDepth must be between 1 and {MAX_ANALYSIS_DEPTH}')
        if not isinstance(max_pages, int) or max_pages < 1:
            errors.append('maxPages must be at least 1')
        if errors:
            raise InvalidSettingsError(errors)

    def _robots_policy(self, url):
        if self.block_private_hosts:
            safe, reason = is_safe_url(url)
            if not safe:
                raise CrawlBlockedError(url, reason)
        if not self.respect_robots_txt:
            return RobotsPolicy()
        robots = RobotsPolicy.fetch(self.fetcher, url, timeout=min(self.timeout, 5))
        if not robots.can_fetch(url):
            raise CrawlBlockedError(url, 'disallowed by robots.txt')
        return robots

    def _load(self, page, robots):
        """Fetch and classify a page; returns its soup when links may be followed"""
        if not robots.can_fetch(page.url):
            page.error = 'Disallowed by robots.txt'
            return None
        if self.block_private_hosts:
            safe, reason = is_safe_url(page.url)
            if not safe:
                page.error = f'Security: {reason}'
                return None

        try:
            response = self.fetcher.request(page.url, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            page.error = str(e)
            return None
        if not response.ok:
            page.error = f'HTTP {response.status_code}'
            return None
        if not response.is_html:
            page.error = 'Not HTML content'
            return None

        soup = BeautifulSoup(response.body, 'html.parser')
        page.title = page_title(soup)
        page.word_count = word_count(soup)
        page.link_count = len(soup.find_all('a', href=True))
        classification = classify_page(page.url, soup, page.title)
        page.type = classification.type
        page.is_content = classification.is_content
        page.score = classification.score
        page.confidence = classification.confidence
        return soup

    def _internal_links(self, soup, base_url, hostname):
        links = []
        seen = set()
        for anchor in soup.find_all('a', href=True):
            if len(links) >= MAX_LINKS_PER_PAGE:
                break
            href = anchor['href']
            if not href.strip() or should_skip_href(href):
                continue
            absolute = resolve_url(href, base_url)
            if not absolute or not is_valid_url(absolute):
                continue
            link_url = normalize_url(absolute)
            if get_hostname(link_url) != hostname or link_url in seen:
                continue
            link_type = classify_url(link_url)
            if link_type in PageType.NEVER_CONTENT:
                continue
            seen.add(link_url)
            links.append((link_url, link_type))
        return links

    def _report(self, url, pages, links_discovered):
        content = [page for page in pages if page.is_content]
        filtered = [page for page in pages if not page.is_content]
        categories = {page_type: 0 for page_type in PageType.ALL}
        for page in pages:
            categories[PageType.CONTENT if page.is_content else page.type] += 1

        self.logger.info(f"Content analysis complete: {len(pages)} pages, {len(content)} content pages, "
                         f"{len(filtered)} filtered")
        return {
            'url': url,
            'contentPages': ContentPageSerializer(content, many=True).data,
            'filteredPages': FilteredPageSerializer(filtered, many=True).data,
            'summary': {
                'totalPagesFound': len(pages),
                'contentPages': len(content),
                'filteredOut': len(filtered),
                'pagesAnalyzed': len(pages),
                'totalLinksDiscovered': links_discovered,
                'recommendations': recommendations(len(content), len(pages)),
            },
            'categories': categories,
        }
