"""
Paginated result queries over a job's links.
"""

import math
from enum import Enum

from broken_link_crawler.errors import JobNotFoundError
from broken_link_crawler.serializers import BrokenLinkSerializer, DiscoveredLinkSerializer, JobSerializer

DEFAULT_LIMIT = 50
MAX_LIMIT = 100
MOST_COMMON_ERRORS = 5


def _all_links(registry, job_id, offset, limit, error_type, search):
    rows = registry.list_discovered_links(job_id, offset=offset, limit=limit)
    return rows, registry.count_discovered_links(job_id)


def _working_links(registry, job_id, offset, limit, error_type, search):
    rows = registry.list_discovered_links(job_id, offset=offset, limit=limit, is_working=True)
    return rows, registry.count_discovered_links(job_id, is_working=True)


def _broken_links(registry, job_id, offset, limit, error_type, search):
    rows = registry.list_broken_links(job_id, offset=offset, limit=limit, error_type=error_type, search=search)
    return rows, registry.count_broken_links(job_id, error_type=error_type, search=search)


def _internal_pages(registry, job_id, offset, limit, error_type, search):
    rows = registry.list_discovered_links(job_id, offset=offset, limit=limit, is_internal=True)
    return rows, registry.count_discovered_links(job_id, is_internal=True)


class ResultView(Enum):
    ALL = 'all'
    WORKING = 'working'
    BROKEN = 'broken'
    PAGES = 'pages'

    def fetch(self, registry, job_id, offset, limit, error_type=None, search=None):
        """Return (rows, total count) for this view"""
        return _STRATEGIES[self](registry, job_id, offset, limit, error_type, search)

    def serialize(self, rows):
        if self is ResultView.BROKEN:
            return BrokenLinkSerializer(rows, many=True).data
        return DiscoveredLinkSerializer(rows, many=True).data


_STRATEGIES = {
    ResultView.ALL: _all_links,
    ResultView.WORKING: _working_links,
    ResultView.BROKEN: _broken_links,
    ResultView.PAGES: _internal_pages,
}


def validate_pagination(page, limit):
    """Clamp page to >= 1 and limit to 1..100; unparsable values fall back to defaults"""
    try:
        page = int(page)
    except (TypeError, ValueError):
        page = 1
    try:
        limit = int(limit)
    except (TypeError, ValueError):
        limit = DEFAULT_LIMIT
    return max(1, page), min(MAX_LIMIT, max(1, limit))


def summarize_errors(registry, job_id):
    counts = registry.broken_link_error_counts(job_id)
    most_common = sorted(counts.items(), key=lambda item: item[1], reverse=True)[:MOST_COMMON_ERRORS]
    return {
        'totalBrokenLinks': sum(counts.values()),
        'errorTypes': counts,
        'mostCommonErrors': [{'type': error_type, 'count': count} for error_type, count in most_common],
    }


def get_results(registry, job_id, view=ResultView.BROKEN, page=1, limit=DEFAULT_LIMIT,
                error_type=None, search=None):
    """One page of a job's results plus an error-type summary"""
    job = registry.get_job(job_id)
    if job is None:
        raise JobNotFoundError(job_id)

    view = ResultView(view)
    page, limit = validate_pagination(page, limit)
    if error_type == 'all':
        error_type = None
    if view is not ResultView.BROKEN:
        error_type = search = None

    offset = (page - 1) * limit
    rows, total = view.fetch(registry, job_id, offset, limit, error_type=error_type, search=search)
    total_pages = math.ceil(total / limit)
    has_next = page < total_pages
    has_prev = page > 1

    return {
        'jobId': job_id,
        'view': view.value,
        'job': JobSerializer(job).data,
        'links': view.serialize(rows),
        'pagination': {
            'currentPage': page,
            'totalPages': total_pages,
            'totalCount': total,
            'limit': limit,
            'hasNextPage': has_next,
            'hasPrevPage': has_prev,
            'nextPage': page + 1 if has_next else None,
            'prevPage': page - 1 if has_prev else None,
        },
        'summary': summarize_errors(registry, job_id),
        'filters': {
            'errorType': error_type,
            'search': search or None,
        },
    }
