import os
from dataclasses import dataclass

DEFAULT_USER_AGENT = 'Mozilla/5.0 (compatible; BrokenLinkCrawler/1.0)'


@dataclass(frozen=True)
class Config:
    user_agent: str = DEFAULT_USER_AGENT
    registry_dir: str = '.crawl_jobs'
    log_file: str = 'broken_link_crawler.log'
    log_level: str = 'INFO'
    max_concurrent: int = 5
    timeout: float = 10.0


def load_config(environ=None):
    """Read process-level defaults from BLC_* environment variables"""
    env = os.environ if environ is None else environ
    return Config(
        user_agent=env.get('BLC_USER_AGENT', DEFAULT_USER_AGENT),
        registry_dir=env.get('BLC_REGISTRY_DIR', '.crawl_jobs'),
        log_file=env.get('BLC_LOG_FILE', 'broken_link_crawler.log'),
        log_level=env.get('BLC_LOG_LEVEL', 'INFO').upper(),
        max_concurrent=int(env.get('BLC_MAX_CONCURRENT', '5')),
        timeout=float(env.get('BLC_TIMEOUT', '10')),
    )
