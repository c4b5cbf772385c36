"""
Exception types raised by the crawl engine.

Per-link failures are never raised; they are encoded in each CheckResult.
"""


class CrawlerError(Exception):
    """Base class for all crawler errors"""


class InvalidSettingsError(CrawlerError):
    """Raised when a start request carries an invalid URL or settings"""

    def __init__(self, errors):
        if isinstance(errors, str):
            errors = [errors]
        self.errors = list(errors)
        super().__init__(f"Invalid settings: {', '.join(self.errors)}")


class JobNotFoundError(CrawlerError):
    """Raised when a job id is unknown to the registry"""

    def __init__(self, job_id):
        self.job_id = job_id
        super().__init__(f"Job not found: {job_id}")


class JobStateError(CrawlerError):
    """Raised when an operation's status precondition is not met"""


class InvalidTransitionError(JobStateError):
    """Raised when a status change is not allowed by the state machine"""

    def __init__(self, job_id, current, requested):
        self.job_id = job_id
        self.current = current
        self.requested = requested
        super().__init__(f"Job {job_id}: cannot move from '{current}' to '{requested}'")


class RegistryError(CrawlerError):
    """Raised when the job registry cannot read or write a record"""


class FatalJobError(CrawlerError):
    """Raised after a job has been moved to the failed state"""

    def __init__(self, job_id, message):
        self.job_id = job_id
        super().__init__(f"Job {job_id} failed: {message}")


class CrawlBlockedError(CrawlerError):
    """Raised when a site may not be crawled (unsafe host or robots.txt)"""

    def __init__(self, url, reason):
        self.url = url
        self.reason = reason
        super().__init__(f"Crawling {url} is not allowed: {reason}")
