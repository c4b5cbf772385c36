"""
URL helpers shared by the extractor, the discovery engine and the checker.
"""

import ipaddress
import re
from urllib.parse import parse_qsl, urldefrag, urlencode, urljoin, urlparse, urlunparse

# Targets that are checked for liveness but never crawled for more links
SKIP_EXTENSIONS = frozenset((
    '.pdf', '.doc', '.docx', '.xls', '.xlsx', '.ppt', '.pptx',
    '.zip', '.rar', '.7z', '.exe', '.dmg', '.pkg', '.deb',
    '.jpg', '.jpeg', '.png', '.gif', '.svg', '.webp', '.ico',
    '.mp3', '.mp4', '.avi', '.mov', '.wmv', '.flv', '.webm', '.wav',
    '.css', '.js', '.map', '.xml', '.json',
    '.woff', '.woff2', '.ttf', '.eot',
))

SKIP_PATH_PREFIXES = ('/admin', '/wp-admin', '/api', '/private')

SKIP_HREF_PREFIXES = ('javascript:', 'mailto:', 'tel:', 'data:', '#')

BLOCKED_HOSTS = frozenset((
    'localhost', '0.0.0.0', '169.254.169.254',
    'metadata.google.internal', 'metadata.azure.com',
))

BLOCKED_HOST_SUFFIXES = ('.localhost', '.internal', '.local')

_WHITESPACE = re.compile(r'\s+')


def is_valid_url(url):
    """Check that a URL is absolute http(s) with a host"""
    if not url or not isinstance(url, str):
        return False
    try:
        parsed = urlparse(url.strip())
        # Accessing port validates it
        parsed.port
    except ValueError:
        return False
    return parsed.scheme in ('http', 'https') and bool(parsed.hostname)


def normalize_url(url):
    """
    Normalize a URL for deduplication and comparison.

    - Drops fragments (#...)
    - Lowercases scheme and host, removes default ports
    - Strips the trailing slash of non-root paths
    - Sorts query parameters

    Returns the input unchanged when it cannot be parsed.
    """
    try:
        defragged, _ = urldefrag(url.strip())
        parsed = urlparse(defragged)
        port = parsed.port
    except (AttributeError, ValueError):
        return url

    scheme = parsed.scheme.lower()
    hostname = (parsed.hostname or '').lower()
    if ':' in hostname:
        hostname = f'[{hostname}]'

    if port is None or (scheme == 'http' and port == 80) or (scheme == 'https' and port == 443):
        netloc = hostname
    else:
        netloc = f'{hostname}:{port}'
    if parsed.username:
        credentials = parsed.username
        if parsed.password:
            credentials = f'{credentials}:{parsed.password}'
        netloc = f'{credentials}@{netloc}'

    path = parsed.path or '/'
    if path != '/' and path.endswith('/'):
        path = path.rstrip('/') or '/'

    query = parsed.query
    if query:
        query = urlencode(sorted(parse_qsl(query, keep_blank_values=True)))

    return urlunparse((scheme, netloc, path, parsed.params, query, ''))


def resolve_url(href, base_url):
    """Resolve a (possibly relative) reference against a base URL"""
    try:
        return urljoin(base_url, href.strip())
    except (AttributeError, ValueError):
        return None


def get_hostname(url):
    try:
        return (urlparse(url).hostname or '').lower() or None
    except (AttributeError, ValueError):
        return None


def is_internal_url(url, origin_url):
    """Internal means same hostname as the crawl origin"""
    hostname = get_hostname(url)
    return hostname is not None and hostname == get_hostname(origin_url)


def should_skip_href(href):
    return href.strip().lower().startswith(SKIP_HREF_PREFIXES)


def should_crawl_url(url):
    """Whether a URL looks like an HTML page worth fetching for more links"""
    try:
        path = urlparse(url).path.lower()
    except (AttributeError, ValueError):
        return False
    if any(path.endswith(ext) for ext in SKIP_EXTENSIONS):
        return False
    if any(path == prefix or path.startswith(prefix + '/') for prefix in SKIP_PATH_PREFIXES):
        return False
    return True


def is_safe_url(url):
    """
    Check whether a URL may be requested.

    Returns a (safe, reason) tuple. Localhost, private and link-local
    addresses, cloud metadata services and internal-only domains are refused.
    """
    if not is_valid_url(url):
        return False, 'Invalid URL format'

    hostname = get_hostname(url)
    if hostname in BLOCKED_HOSTS or hostname.endswith(BLOCKED_HOST_SUFFIXES):
        return False, 'Internal host access blocked'

    try:
        address = ipaddress.ip_address(hostname.strip('[]'))
    except ValueError:
        return True, None

    if address.is_loopback or address.is_unspecified:
        return False, 'Localhost access blocked'
    if address.is_private or address.is_link_local or address.is_reserved:
        return False, 'Private network access blocked'
    return True, None


def clean_text(text, max_length=200):
    """Collapse whitespace and truncate"""
    if not text:
        return ''
    return _WHITESPACE.sub(' ', text).strip()[:max_length]


def chunk_list(items, size):
    """Split a list into consecutive chunks of at most size items"""
    if size < 1:
        raise ValueError("chunk size must be at least 1")
    return [items[i:i + size] for i in range(0, len(items), size)]
