"""
Entry point for crawlbot.
Parses arguments, derives the allowed domain from the seed URL, runs the crawl
and exits non-zero if any page failed.
"""

import argparse
import logging
import os
import sys
import time

from tabulate import tabulate

from crawlbot.core import DEFAULT_MAX_CONCURRENCY, DEFAULT_TIMEOUT_MS, DEFAULT_WAIT_UNTIL, setup_logger
from crawlbot.crawler import Crawler
from crawlbot.errors import BrowserUnavailable
from crawlbot.models import FormConfig, WaitUntil
from crawlbot.url_utils import registrable_domain

LOGIN_URL_PATTERN = r"/auth/login/([^/]+/)?$"


def build_parser():
    parser = argparse.ArgumentParser(prog="crawlbot", description="Send the robots!")
    parser.add_argument("url", help="seed URL; its registrable domain bounds the crawl")
    parser.add_argument("--debug", action="store_true", help="headful browser and DEBUG logging")
    parser.add_argument("--screenshots", default=None, help="directory for full-page screenshots")
    parser.add_argument("-c", "--concurrency", type=int, default=None,
                        help=f"worker count (default: {DEFAULT_MAX_CONCURRENCY})")
    parser.add_argument("--proxy", default=None, help="outbound proxy address, e.g. http://127.0.0.1:8080")
    parser.add_argument("--timeout", type=int, default=DEFAULT_TIMEOUT_MS, help="navigation timeout (ms)")
    parser.add_argument("--wait-until", default=DEFAULT_WAIT_UNTIL,
                        help="load | domcontentloaded | networkidle | commit")
    parser.add_argument("--block", action="append", default=[], metavar="SUBSTRING",
                        help="block requests whose URL contains SUBSTRING (repeatable)")
    parser.add_argument("--username", default=None, help="login form username")
    parser.add_argument("--password", default=None, help="login form password")
    parser.add_argument("--log-file", default=None)
    return parser


def build_form_configs(args):
    if args.username is None and args.password is None:
        return []
    return [FormConfig(
        url_pattern=LOGIN_URL_PATTERN,
        fields={
            "#id_username": args.username or "",
            "#id_password": args.password or "",
        },
        submit_selector="button[type=submit]",
    )]


def print_summary(crawler, duration):
    stats = crawler.stats()
    rows = [
        ["Crawl time (s)", f"{duration:.2f}"],
        ["URLs visited", stats["visited_count"]],
        ["Tasks completed", stats["completed"]],
        ["Peak concurrency", stats["peak_in_flight"]],
        ["Errors", stats["errors"]],
        ["Memory (MB)", f"{stats['memory_mb']:.1f}"],
    ]
    print(tabulate(rows, headers=["Metric", "Value"], tablefmt="github"))
    if stats["requests"]:
        print()
        print(tabulate(sorted(stats["requests"].items()), headers=["Request decision", "Count"], tablefmt="github"))


def run(args):
    level = logging.DEBUG if args.debug else logging.INFO
    log = setup_logger(log_file=args.log_file, level=level)

    try:
        wait_until = WaitUntil.parse(args.wait_until)
    except ValueError:
        log.error(f"Unknown --wait-until value: {args.wait_until}")
        return 2
    if args.concurrency is not None and args.concurrency < 1:
        log.error(f"--concurrency must be at least 1, got {args.concurrency}")
        return 2

    if args.screenshots:
        os.makedirs(args.screenshots, exist_ok=True)

    domains = [registrable_domain(args.url)]
    crawler = Crawler(
        domains=domains,
        max_concurrency=DEFAULT_MAX_CONCURRENCY if args.concurrency is None else args.concurrency,
        screenshots=args.screenshots,
        timeout=args.timeout,
        wait_until=wait_until,
        block_list=args.block,
        form_configs=build_form_configs(args),
        proxy=args.proxy,
        headless=not args.debug,
    )

    log.info("Automating Humans...")
    log.info(f"-> screenshots: {args.screenshots}")
    log.info(f"-> maxConcurrency: {crawler.max_concurrency}")
    log.info(f"-> initialUrl: {args.url}")
    log.info(f"-> allowedDomains: {', '.join(domains)}")
    log.info(f"-> proxy: {args.proxy}")

    start = time.time()
    fatal = None
    try:
        crawler.init()
        crawler.queue(args.url)
        crawler.on_idle()
    except BrowserUnavailable as e:
        fatal = e
    finally:
        crawler.close()

    print_summary(crawler, time.time() - start)

    errors = crawler.errors()
    if errors:
        print(f"\nThere were {len(errors)} error(s) encountered:", file=sys.stderr)
        print(tabulate([(url, error) for url, error in errors], headers=["URL", "Error"]), file=sys.stderr)
    if fatal is not None:
        log.critical(f"Crawl aborted: {fatal}")
        return 1
    return 1 if crawler.has_errors() else 0


def main(argv=None):
    args = build_parser().parse_args(argv)
    sys.exit(run(args))


if __name__ == "__main__":
    main()
