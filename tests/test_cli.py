import io
import unittest
from collections import Counter
from contextlib import redirect_stderr, redirect_stdout
from unittest.mock import MagicMock, patch

from crawlbot import cli
from crawlbot.errors import BrowserUnavailable, NavigationError
from crawlbot.models import ErrorRecord, WaitUntil


def fake_crawler(errors=(), fatal=None):
    crawler = MagicMock()
    crawler.max_concurrency = 2
    crawler.errors.return_value = list(errors)
    crawler.has_errors.return_value = bool(errors)
    crawler.stats.return_value = {
        "visited_count": 3,
        "completed": 3,
        "peak_in_flight": 2,
        "errors": len(errors),
        "memory_mb": 42.0,
        "requests": Counter({"allowed": 10, "blocked-resource-type": 4}),
    }
    if fatal is not None:
        crawler.on_idle.side_effect = fatal
    return crawler


class TestArguments(unittest.TestCase):

    def test_defaults(self):
        args = cli.build_parser().parse_args(["https://example.com/"])
        self.assertEqual(args.url, "https://example.com/")
        self.assertFalse(args.debug)
        self.assertIsNone(args.screenshots)
        self.assertEqual(args.block, [])

    def test_repeatable_block(self):
        args = cli.build_parser().parse_args(["https://example.com/", "--block", "ads", "--block", "chat", "-c", "4"])
        self.assertEqual(args.block, ["ads", "chat"])
        self.assertEqual(args.concurrency, 4)

    def test_form_configs_only_with_credentials(self):
        args = cli.build_parser().parse_args(["https://example.com/"])
        self.assertEqual(cli.build_form_configs(args), [])

        args = cli.build_parser().parse_args(["https://example.com/", "--username", "robot", "--password", "pw"])
        [config] = cli.build_form_configs(args)
        self.assertEqual(config.fields, {"#id_username": "robot", "#id_password": "pw"})
        self.assertTrue(config.matches("https://example.com/auth/login/"))


class TestRun(unittest.TestCase):

    def run_cli(self, crawler, argv):
        args = cli.build_parser().parse_args(argv)
        out, err = io.StringIO(), io.StringIO()
        with patch("crawlbot.cli.Crawler", return_value=crawler) as factory, \
                patch("crawlbot.cli.setup_logger", return_value=MagicMock()), \
                redirect_stdout(out), redirect_stderr(err):
            code = cli.run(args)
        return code, factory, out.getvalue(), err.getvalue()

    def test_clean_crawl_exits_zero(self):
        crawler = fake_crawler()
        code, factory, out, _ = self.run_cli(crawler, ["https://www.example.com/start", "--wait-until", "load"])

        self.assertEqual(code, 0)
        kwargs = factory.call_args.kwargs
        self.assertEqual(kwargs["domains"], ["example.com"])
        self.assertIs(kwargs["wait_until"], WaitUntil.LOAD)
        self.assertTrue(kwargs["headless"])
        crawler.init.assert_called_once_with()
        crawler.queue.assert_called_once_with("https://www.example.com/start")
        crawler.close.assert_called_once_with()
        self.assertIn("URLs visited", out)
        self.assertIn("blocked-resource-type", out)

    def test_errors_exit_non_zero(self):
        error = NavigationError("net::ERR_NAME_NOT_RESOLVED", url="https://example.com/x")
        crawler = fake_crawler(errors=[ErrorRecord("https://example.com/x", error)])
        code, _, _, err = self.run_cli(crawler, ["https://example.com/"])

        self.assertEqual(code, 1)
        self.assertIn("There were 1 error(s) encountered", err)
        self.assertIn("https://example.com/x", err)

    def test_browser_unavailable_exits_non_zero(self):
        crawler = fake_crawler(fatal=BrowserUnavailable("browser failed to start"))
        code, _, _, _ = self.run_cli(crawler, ["https://example.com/"])

        self.assertEqual(code, 1)
        crawler.close.assert_called_once_with()

    def test_unknown_wait_until(self):
        crawler = fake_crawler()
        code, factory, _, _ = self.run_cli(crawler, ["https://example.com/", "--wait-until", "sometime"])
        self.assertEqual(code, 2)
        factory.assert_not_called()

    def test_zero_concurrency_is_rejected(self):
        crawler = fake_crawler()
        code, factory, _, _ = self.run_cli(crawler, ["https://example.com/", "-c", "0"])
        self.assertEqual(code, 2)
        factory.assert_not_called()

    def test_explicit_concurrency_is_passed_through(self):
        crawler = fake_crawler()
        _, factory, _, _ = self.run_cli(crawler, ["https://example.com/", "-c", "1"])
        self.assertEqual(factory.call_args.kwargs["max_concurrency"], 1)

    def test_debug_runs_headful(self):
        crawler = fake_crawler()
        _, factory, _, _ = self.run_cli(crawler, ["https://example.com/", "--debug", "--proxy", "http://127.0.0.1:8080"])
        self.assertFalse(factory.call_args.kwargs["headless"])
        self.assertEqual(factory.call_args.kwargs["proxy"], "http://127.0.0.1:8080")


if __name__ == "__main__":
    unittest.main()
