"""
Command-line entry point.

Runs crawl jobs against a file-backed registry so that an interrupted run
can be resumed, polled or stopped from a later invocation.
"""

import json
import logging
import signal
import sys
from datetime import datetime

from broken_link_crawler.analyzer import DEFAULT_MAX_DEPTH, DEFAULT_MAX_PAGES, ContentAnalyzer
from broken_link_crawler.config import load_config
from broken_link_crawler.errors import CrawlerError, InvalidSettingsError
from broken_link_crawler.fetcher import PageFetcher
from broken_link_crawler.models import CrawlSettings, JobStatus
from broken_link_crawler.registry import FileJobRegistry
from broken_link_crawler.scheduler import ChunkScheduler
from broken_link_crawler.serializers import BrokenLinkSerializer

TRUE_VALUES = ('true', 't', '1', 'yes', 'y')
FALSE_VALUES = ('false', 'f', '0', 'no', 'n')

logger = logging.getLogger(__name__)


def setup_logging(config):
    """Setup logging configuration"""
    logging.basicConfig(
        level=getattr(logging, config.log_level, logging.INFO),
        format='%(asctime)s - %(levelname)s - %(message)s',
        handlers=[
            logging.FileHandler(config.log_file),
            logging.StreamHandler(sys.stdout)
        ]
    )


def print_help():
    """Print detailed help information"""
    help_text = """
Broken Link Crawler - Find broken links on websites with resumable jobs

USAGE:
    broken-link-crawler <start_url> [max_depth] [include_external]
    broken-link-crawler --smart <start_url> [urls_file]
    broken-link-crawler --analyze <start_url> [max_depth] [max_pages]
    broken-link-crawler --resume <job_id>
    broken-link-crawler --status <job_id>
    broken-link-crawler --stop <job_id>
    broken-link-crawler --help

ARGUMENTS:
    start_url          The URL to start crawling from (required)
                       Must be a valid HTTP or HTTPS URL
                       Example: https://example.com

    max_depth          How many links away from start_url to look (optional, default: 3)
                       - 1: Check the links found on start_url
                       - 2: Also check links found on those pages
                       - up to 5
                       Example: 2

    include_external   Whether to check links to other domains (optional, default: false)
                       External pages are checked but never crawled
                       Example: true

    urls_file          A text file with one URL per line to check without discovery.
                       Blank lines and lines starting with # are ignored.
                       Without it, --smart analyzes the site first and checks
                       only the content pages it finds.

    max_pages          Page limit for --analyze (optional, default: 1000)

COMMANDS:
    --analyze <url>    Find a site's content pages and print them as JSON
    --resume <job_id>  Continue an interrupted job from its saved state
    --status <job_id>  Print the job's status as JSON
    --stop <job_id>    Mark a job as stopped so it is not resumed

EXAMPLES:
    # Crawl a site three levels deep, internal links only
    broken-link-crawler https://example.com

    # Shallow crawl that also checks external links
    broken-link-crawler https://example.com 1 true

    # Check a prepared list of URLs
    broken-link-crawler --smart https://example.com urls.txt

    # Check only the pages that look like content
    broken-link-crawler --smart https://example.com

ENVIRONMENT:
    BLC_REGISTRY_DIR   Directory for job files (default: .crawl_jobs)
    BLC_LOG_FILE       Log file (default: broken_link_crawler.log)
    BLC_LOG_LEVEL      Log level (default: INFO)
    BLC_USER_AGENT     User-Agent header for requests
    BLC_MAX_CONCURRENT Parallel checks per batch (default: 5)
    BLC_TIMEOUT        Request timeout in seconds (default: 10)

OUTPUT FILES:
    - <registry_dir>/job_<job_id>.json: Job state for status and resume
    - broken_link_crawler.log: Detailed log file
    - broken_links_report_<job_id>_YYYYMMDD_HHMMSS.json: Final report

INTERRUPTION:
    Press Ctrl+C to stop. Progress is saved after every batch;
    continue with --resume <job_id>.
    """
    print(help_text)


def parse_bool(value, name):
    value = value.lower()
    if value in TRUE_VALUES:
        return True
    if value in FALSE_VALUES:
        return False
    raise ValueError(f"{name} must be 'true' or 'false', got '{value}'")


def read_urls_file(path):
    """Read URLs from a text file, one per line"""
    with open(path, 'r') as f:
        return [line.strip() for line in f if line.strip() and not line.strip().startswith('#')]


def generate_report(registry, job_id, status):
    """Write a JSON report of the job's broken links and return its file name"""
    report_file = f"broken_links_report_{job_id[:8]}_{datetime.now().strftime('%Y%m%d_%H%M%S')}.json"
    broken_links = registry.list_broken_links(job_id, limit=registry.count_broken_links(job_id))
    report = {
        'summary': {
            'jobId': job_id,
            'url': status['url'],
            'status': status['status'],
            'totalLinksDiscovered': status['stats']['totalLinksDiscovered'],
            'linksChecked': status['stats']['linksChecked'],
            'totalBrokenLinks': status['stats']['brokenLinksFound'],
            'errorTypes': registry.broken_link_error_counts(job_id),
            'settings': status['settings'],
            'scanCompleted': datetime.now().isoformat(),
        },
        'brokenLinks': BrokenLinkSerializer(broken_links, many=True).data,
    }
    with open(report_file, 'w') as f:
        json.dump(report, f, indent=2)
    return report_file


def build_scheduler(config):
    registry = FileJobRegistry(config.registry_dir)
    return ChunkScheduler(registry, fetcher=PageFetcher(user_agent=config.user_agent))


def build_analyzer(config):
    return ContentAnalyzer(PageFetcher(user_agent=config.user_agent), timeout=config.timeout)


def parse_analyze_args(args):
    """Turn '<start_url> [max_depth] [max_pages]' into (url, max_depth, max_pages)"""
    if not args:
        raise ValueError("--analyze requires a <start_url>")
    limits = []
    for name, value, default in (('max_depth', args[1:2], DEFAULT_MAX_DEPTH),
                                 ('max_pages', args[2:3], DEFAULT_MAX_PAGES)):
        try:
            limits.append(int(value[0]) if value else default)
        except ValueError:
            raise ValueError(f"{name} must be a number, got '{value[0]}'")
    return args[0], limits[0], limits[1]


def analyze_content_pages(analyzer, start_url, max_depth=DEFAULT_MAX_DEPTH, max_pages=DEFAULT_MAX_PAGES):
    report = analyzer.analyze(start_url, max_depth=max_depth, max_pages=max_pages)
    summary = report['summary']
    logger.info(f"Content analysis of {start_url}: {summary['contentPages']} content pages out of "
                f"{summary['totalPagesFound']} analyzed")
    return report


def run_to_completion(scheduler, job_id):
    """Wait for a background job, exiting cleanly on Ctrl+C"""

    def signal_handler(signum, frame):
        logger.info(f"Received signal {signum}. Progress is saved; resume with --resume {job_id}")
        sys.exit(0)

    signal.signal(signal.SIGINT, signal_handler)
    while not scheduler.wait(job_id, timeout=1.0):
        pass

    status = scheduler.get_status(job_id)
    stats = status['stats']
    logger.info(f"Summary: {stats['totalLinksDiscovered']} links discovered, "
                f"{stats['linksChecked']} checked, {stats['brokenLinksFound']} broken")

    if status['status'] != JobStatus.COMPLETED:
        print(f"Job {job_id} ended as {status['status']}: {status.get('errorMessage')}")
        return 1

    try:
        report_file = generate_report(scheduler.registry, job_id, status)
        logger.info(f"Report generated: {report_file}")
    except OSError as e:
        logger.error(f"Failed to generate report: {e}")
    return 0


def parse_crawl_args(args, config):
    """Turn '<start_url> [max_depth] [include_external]' into (url, settings)"""
    start_url = args[0]
    if not start_url.startswith(('http://', 'https://')):
        raise ValueError(f"Invalid URL '{start_url}'. URL must start with http:// or https://")

    max_depth = CrawlSettings.DEFAULTS['max_depth']
    if len(args) > 1:
        try:
            max_depth = int(args[1])
        except ValueError:
            raise ValueError(f"max_depth must be a number, got '{args[1]}'")

    include_external = False
    if len(args) > 2:
        include_external = parse_bool(args[2], 'include_external')

    settings = CrawlSettings(
        max_depth=max_depth,
        include_external=include_external,
        timeout=config.timeout,
        max_concurrent=config.max_concurrent,
    )
    return start_url, settings


def main(argv=None):
    """Main function to run the broken link crawler"""
    args = sys.argv[1:] if argv is None else argv

    if args and args[0] in ['--help', '-h', 'help']:
        print_help()
        sys.exit(0)

    if not args:
        print("ERROR: Missing required argument <start_url>")
        print("\nUsage: broken-link-crawler <start_url> [max_depth] [include_external]")
        print("       broken-link-crawler --help")
        sys.exit(1)

    config = load_config()
    setup_logging(config)
    command = args[0]

    try:
        if command in ('--status', '--stop', '--resume'):
            if len(args) < 2:
                print(f"ERROR: {command} requires a <job_id>")
                sys.exit(1)
            scheduler = build_scheduler(config)
            job_id = args[1]
            if command == '--status':
                print(json.dumps(scheduler.get_status(job_id), indent=2))
                sys.exit(0)
            if command == '--stop':
                result = scheduler.stop_job(job_id)
                print(f"Job {job_id}: {result['message']}")
                sys.exit(0)
            scheduler.resume_job(job_id, background=True)
            sys.exit(run_to_completion(scheduler, job_id))

        if command == '--analyze':
            start_url, max_depth, max_pages = parse_analyze_args(args[1:])
            report = analyze_content_pages(build_analyzer(config), start_url, max_depth, max_pages)
            print(json.dumps(report, indent=2))
            sys.exit(0)

        if command == '--smart':
            if len(args) < 2:
                print("ERROR: --smart requires <start_url> [urls_file]")
                sys.exit(1)
            start_url, settings = parse_crawl_args(args[1:2], config)
            if len(args) > 2:
                urls = read_urls_file(args[2])
            else:
                urls = analyze_content_pages(build_analyzer(config), start_url)['contentPages']
                if not urls:
                    print(f"ERROR: No content pages found on {start_url}")
                    sys.exit(1)
            scheduler = build_scheduler(config)
            response = scheduler.start_job(start_url, settings, pre_analyzed_urls=urls, background=True)
        else:
            start_url, settings = parse_crawl_args(args, config)
            print("Starting broken link crawler with:")
            print(f"  URL: {start_url}")
            print(f"  Max depth: {settings.max_depth}")
            print(f"  Include external: {settings.include_external}")
            print("  Press Ctrl+C to stop and save progress")
            print("-" * 50)
            scheduler = build_scheduler(config)
            response = scheduler.start_job(start_url, settings, background=True)
    except InvalidSettingsError as e:
        for error in e.errors:
            print(f"ERROR: {error}")
        sys.exit(1)
    except (ValueError, OSError, CrawlerError) as e:
        print(f"ERROR: {e}")
        sys.exit(1)

    job_id = response['jobId']
    print(f"Job {job_id} started ({response['mode']}); resume later with --resume {job_id}")
    sys.exit(run_to_completion(scheduler, job_id))


if __name__ == "__main__":
    main()
