"""
Data model for crawl jobs, discovered links, broken links and check results.

Also holds the job state machine table and the crawl settings object.
"""

import copy
from datetime import datetime


class JobStatus:
    PENDING = 'pending'
    RUNNING = 'running'
    READY_FOR_CHECKING = 'ready_for_checking'
    COMPLETED = 'completed'
    FAILED = 'failed'

    TERMINAL = frozenset([COMPLETED, FAILED])

    # Status changes never go back to an earlier state; running(checking)
    # after ready_for_checking is a new phase, not a revert.
    TRANSITIONS = {
        PENDING: frozenset([RUNNING, FAILED]),
        RUNNING: frozenset([READY_FOR_CHECKING, COMPLETED, FAILED]),
        READY_FOR_CHECKING: frozenset([RUNNING, FAILED]),
        COMPLETED: frozenset(),
        FAILED: frozenset(),
    }

    @classmethod
    def can_transition(cls, current, requested):
        """Check whether the state machine allows current -> requested"""
        return requested in cls.TRANSITIONS.get(current, ())


class JobPhase:
    DISCOVERY = 'discovery'
    CHECKING = 'checking'


class LinkStatus:
    PENDING = 'pending'
    CHECKED = 'checked'


class ErrorType:
    TIMEOUT = 'timeout'
    DNS_ERROR = 'dns_error'
    CONNECTION_ERROR = 'connection_error'
    SSL_ERROR = 'ssl_error'
    INVALID_URL = 'invalid_url'
    SECURITY_BLOCKED = 'security_blocked'
    OTHER = 'other'


STOPPED_BY_USER = 'Stopped by user'


def _parse_datetime(value):
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


class CrawlSettings:
    """Per-job knobs for discovery and checking"""

    DEFAULTS = {
        'max_depth': 3,
        'include_external': False,
        'timeout': 10,
        'max_concurrent': 5,
        'retry_attempts': 2,
        'retry_delay': 1.0,
        'check_batch_size': 25,
        'discovery_batch_size': 10,
        'batch_delay': 0.2,
        'max_links_per_page': 1000,
        'max_pages_for_discovery': 2000,
        'flush_size': 100,
        'batch_retry_limit': 2,
        'respect_nofollow': True,
        'block_private_hosts': True,
        'respect_robots_txt': True,
    }

    # camelCase keys used by job start requests
    ALIASES = {
        'maxDepth': 'max_depth',
        'includeExternal': 'include_external',
        'maxConcurrent': 'max_concurrent',
        'retryAttempts': 'retry_attempts',
        'retryDelay': 'retry_delay',
        'checkBatchSize': 'check_batch_size',
        'discoveryBatchSize': 'discovery_batch_size',
        'batchDelay': 'batch_delay',
        'maxLinksPerPage': 'max_links_per_page',
        'maxPagesForDiscovery': 'max_pages_for_discovery',
        'flushSize': 'flush_size',
        'batchRetryLimit': 'batch_retry_limit',
        'respectNoFollow': 'respect_nofollow',
        'blockPrivateHosts': 'block_private_hosts',
        'respectRobots': 'respect_robots_txt',
    }

    # name -> (minimum, maximum); None means unbounded
    RANGES = {
        'max_depth': (1, 5),
        'timeout': (1, 60),
        'max_concurrent': (1, 50),
        'retry_attempts': (0, 5),
        'retry_delay': (0, None),
        'check_batch_size': (1, 100),
        'discovery_batch_size': (1, 100),
        'batch_delay': (0, 5),
        'max_links_per_page': (1, None),
        'max_pages_for_discovery': (1, None),
        'flush_size': (1, 1000),
        'batch_retry_limit': (0, None),
    }

    BOOLEANS = ('include_external', 'respect_nofollow', 'block_private_hosts', 'respect_robots_txt')

    def __init__(self, **overrides):
        unknown = set(overrides) - set(self.DEFAULTS)
        if unknown:
            raise TypeError(f"Unknown settings: {', '.join(sorted(unknown))}")
        for name, default in self.DEFAULTS.items():
            setattr(self, name, overrides.get(name, default))

    @classmethod
    def from_dict(cls, data, base=None):
        """Build settings from a request dict, accepting camelCase keys.

        Keys that are not settings are ignored so that stored job settings
        with extra markers round-trip.
        """
        values = base.to_dict() if base is not None else {}
        for key, value in (data or {}).items():
            name = cls.ALIASES.get(key, key)
            if name in cls.DEFAULTS:
                values[name] = value
        return cls(**values)

    def validate(self):
        """Return a list of problems; an empty list means the settings are usable"""
        errors = []
        for name, (low, high) in self.RANGES.items():
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                errors.append(f"{name} must be a number")
                continue
            if low is not None and value < low:
                errors.append(self._range_message(name, low, high))
            elif high is not None and value > high:
                errors.append(self._range_message(name, low, high))
        for name in self.BOOLEANS:
            if not isinstance(getattr(self, name), bool):
                errors.append(f"{name} must be a boolean")
        return errors

    @staticmethod
    def _range_message(name, low, high):
        if high is None:
            return f"{name} must be at least {low}"
        return f"{name} must be between {low} and {high}"

    def to_dict(self):
        return {name: getattr(self, name) for name in self.DEFAULTS}

    def __eq__(self, other):
        return isinstance(other, CrawlSettings) and self.to_dict() == other.to_dict()

    def __repr__(self):
        return f"CrawlSettings(max_depth={self.max_depth}, include_external={self.include_external}, timeout={self.timeout})"


class Progress:
    def __init__(self, current=0, total=0, percentage=0):
        self.current = current
        self.total = total
        self.percentage = percentage


class Job:
    """A crawl job record as stored by the registry"""

    def __init__(self, id, url, settings=None, status=JobStatus.PENDING, phase=None,
                 progress=None, created_at=None, started_at=None, completed_at=None,
                 error_message=None, is_smart_crawl=False):
        self.id = id
        self.url = url
        self.settings = settings or CrawlSettings()
        self.status = status
        self.phase = phase
        self.progress = progress or Progress()
        self.created_at = created_at or datetime.now()
        self.started_at = started_at
        self.completed_at = completed_at
        self.error_message = error_message
        self.is_smart_crawl = is_smart_crawl

    @property
    def is_terminal(self):
        return self.status in JobStatus.TERMINAL

    def copy(self):
        return copy.deepcopy(self)

    @classmethod
    def from_dict(cls, data):
        return cls(
            id=data['id'],
            url=data['url'],
            settings=CrawlSettings.from_dict(data.get('settings')),
            status=data.get('status', JobStatus.PENDING),
            phase=data.get('phase'),
            progress=Progress(**data.get('progress', {})),
            created_at=_parse_datetime(data.get('created_at')),
            started_at=_parse_datetime(data.get('started_at')),
            completed_at=_parse_datetime(data.get('completed_at')),
            error_message=data.get('error_message'),
            is_smart_crawl=data.get('is_smart_crawl', False),
        )

    def __repr__(self):
        return f"Job(id={self.id!r}, url={self.url!r}, status={self.status!r}, phase={self.phase!r})"


class ExtractedLink:
    def __init__(self, url, source_url, depth, link_text='No text', is_internal=True,
                 should_crawl=False):
        self.url = url
        self.source_url = source_url
        self.depth = depth
        self.link_text = link_text
        self.is_internal = is_internal
        self.should_crawl = should_crawl

    def __repr__(self):
        return f"ExtractedLink({self.url!r}, depth={self.depth}, internal={self.is_internal}, crawl={self.should_crawl})"


class DiscoveredLink:
    """A link found for a job; checked exactly once"""

    def __init__(self, job_id, url, source_url=None, depth=0, is_internal=True,
                 link_text='No text', status=LinkStatus.PENDING, http_status_code=None,
                 response_time=None, checked_at=None, is_working=None, error_message=None,
                 error_type=None):
        self.job_id = job_id
        self.url = url
        self.source_url = source_url
        self.depth = depth
        self.is_internal = is_internal
        self.link_text = link_text
        self.status = status
        self.http_status_code = http_status_code
        self.response_time = response_time
        self.checked_at = checked_at
        self.is_working = is_working
        self.error_message = error_message
        self.error_type = error_type

    @classmethod
    def from_extracted(cls, job_id, link):
        return cls(
            job_id=job_id,
            url=link.url,
            source_url=link.source_url,
            depth=link.depth,
            is_internal=link.is_internal,
            link_text=link.link_text,
        )

    def apply_result(self, result):
        self.status = LinkStatus.CHECKED
        self.http_status_code = result.status_code
        self.response_time = result.response_time
        self.checked_at = result.checked_at
        self.is_working = result.is_working
        self.error_message = result.error_message
        self.error_type = result.error_type

    @classmethod
    def from_dict(cls, data):
        values = dict(data)
        values['checked_at'] = _parse_datetime(values.get('checked_at'))
        return cls(**values)

    def __repr__(self):
        return f"DiscoveredLink({self.url!r}, status={self.status!r})"


class BrokenLink:
    """A failing check, attributed to the page that references it"""

    def __init__(self, job_id, url, source_url=None, status_code=None,
                 error_type=ErrorType.OTHER, link_text='No text', created_at=None):
        self.job_id = job_id
        self.url = url
        self.source_url = source_url
        self.status_code = status_code
        self.error_type = error_type
        self.link_text = link_text
        self.created_at = created_at or datetime.now()

    @property
    def key(self):
        return (self.job_id, self.url, self.source_url)

    @classmethod
    def from_dict(cls, data):
        values = dict(data)
        values['created_at'] = _parse_datetime(values.get('created_at'))
        return cls(**values)

    def __repr__(self):
        return f"BrokenLink({self.url!r}, source={self.source_url!r}, error={self.error_type!r})"


class CheckResult:
    """Liveness verdict for one URL"""

    def __init__(self, url, is_working, status_code=None, response_time=0, error_type=None,
                 error_message=None, checked_at=None, source_url=None, link_text='No text',
                 attempts=1):
        self.url = url
        self.is_working = is_working
        self.status_code = status_code
        self.response_time = response_time
        self.error_type = error_type
        self.error_message = error_message
        self.checked_at = checked_at or datetime.now()
        self.source_url = source_url
        self.link_text = link_text
        self.attempts = attempts

    def __repr__(self):
        return f"CheckResult({self.url!r}, working={self.is_working}, status={self.status_code}, error={self.error_type!r})"
