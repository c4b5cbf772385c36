"""
Progress arithmetic for status polls: percentage, ETA and elapsed time.
"""

from datetime import datetime

from broken_link_crawler.models import JobStatus


def calculate_percentage(current, total):
    if not total or total <= 0:
        return 0
    return min(100, round(current / total * 100))


def estimate_time_remaining(current, total, started_at, now=None):
    """Seconds left at the observed rate, or None when there is no rate yet"""
    if started_at is None or current <= 0 or total <= current:
        return None
    now = now or datetime.now()
    elapsed = (now - started_at).total_seconds()
    if elapsed <= 0:
        return None
    rate = current / elapsed
    return round((total - current) / rate)


class ProgressTracker:
    def __init__(self, clock=datetime.now):
        self.clock = clock

    def snapshot(self, job):
        """Progress block of a status poll for the given job"""
        progress = job.progress
        estimate = None
        if job.status == JobStatus.RUNNING:
            estimate = estimate_time_remaining(
                progress.current,
                progress.total,
                job.started_at or job.created_at,
                now=self.clock(),
            )
        return {
            'current': progress.current,
            'total': progress.total,
            'percentage': calculate_percentage(progress.current, progress.total),
            'estimated_time_remaining': estimate,
        }

    def elapsed_seconds(self, job):
        """Seconds from creation to completion, or to now for live jobs"""
        end = job.completed_at or self.clock()
        return max(0, int((end - job.created_at).total_seconds()))
