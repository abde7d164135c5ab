import dataclasses
import unittest

from crawlbot.policy import (
    ALLOWED,
    BLOCKED_DOMAIN,
    BLOCKED_RESOURCE_TYPE,
    BLOCKED_SUBSTRING,
    TELEMETRY,
    TIMED_OUT,
    TOO_MANY_REQUESTS,
    PageRequest,
    RequestPolicy,
)


class TestRequestPolicy(unittest.TestCase):

    def setUp(self):
        self.policy = RequestPolicy(domains={"example.com"}, block_list=("tracker.js",))
        self.filter = self.policy.new_filter()

    def test_allows_same_site_document(self):
        verdict = self.filter.check("https://example.com/about", "document")
        self.assertEqual(verdict, (True, ALLOWED))

    def test_allows_subdomain_document(self):
        self.assertTrue(self.filter.check("https://docs.example.com/", "document").allowed)

    def test_blocks_foreign_document_navigation(self):
        verdict = self.filter.check("https://other.org/", "document")
        self.assertEqual(verdict, (False, BLOCKED_DOMAIN))

    def test_foreign_subresource_not_judged_by_domain(self):
        """Scenario: non-navigation request to another domain -> only kind/substring rules apply."""
        self.assertTrue(self.filter.check("https://cdn.other.org/lib.js", "script").allowed)
        self.assertEqual(self.filter.check("https://cdn.other.org/logo.png", "image"),
                         (False, BLOCKED_RESOURCE_TYPE))

    def test_blocked_resource_kinds(self):
        for kind in ("image", "media", "font", "texttrack", "object", "beacon", "imageset"):
            verdict = self.filter.check(f"https://example.com/{kind}", kind)
            self.assertEqual(verdict, (False, BLOCKED_RESOURCE_TYPE), kind)

    def test_blocked_substrings(self):
        self.assertEqual(self.filter.check("https://www.google-analytics.com/collect", "xhr"),
                         (False, BLOCKED_SUBSTRING))
        self.assertEqual(self.filter.check("https://example.com/static/tracker.js", "script"),
                         (False, BLOCKED_SUBSTRING))

    def test_telemetry_dominates_blocked_kind(self):
        """Scenario: telemetry endpoint that is also a blocked kind -> allowed."""
        verdict = self.filter.check("https://browser.sentry-cdn.com/bundle.min.js", "image")
        self.assertEqual(verdict, (True, TELEMETRY))

    def test_telemetry_allowed_after_timeout(self):
        self.filter.mark_timed_out()
        self.assertTrue(self.filter.check("https://sentry.io/api/1/store/", "xhr").allowed)

    def test_timed_out_blocks_everything_else(self):
        self.filter.mark_timed_out()
        self.assertEqual(self.filter.check("https://example.com/app.js", "script"), (False, TIMED_OUT))
        self.assertTrue(self.filter.timed_out)

    def test_retry_ceiling(self):
        """Scenario: requests 1-5 to the same normalized URL allowed, 6th blocked."""
        verdicts = [self.filter.check(f"https://example.com/api/poll?n={i}#x", "xhr") for i in range(6)]
        self.assertTrue(all(v.allowed for v in verdicts[:5]))
        self.assertEqual(verdicts[5], (False, TOO_MANY_REQUESTS))
        self.assertEqual(self.filter.attempts("https://example.com/api/poll"), 6)

    def test_reset_starts_a_new_page_load(self):
        for _ in range(6):
            self.filter.check("https://example.com/api/poll", "xhr")
        self.filter.mark_timed_out()
        self.filter.reset()
        self.assertFalse(self.filter.timed_out)
        self.assertTrue(self.filter.check("https://example.com/api/poll", "xhr").allowed)

    def test_filters_do_not_share_state(self):
        other = self.policy.new_filter()
        self.filter.mark_timed_out()
        self.assertTrue(other.check("https://example.com/", "document").allowed)

    def test_decide_accepts_explicit_request(self):
        request = PageRequest(url="https://other.org/", resource_kind="document",
                              is_document_navigation=False, is_telemetry_endpoint=False)
        self.assertTrue(self.filter.decide(request).allowed)
        request = request._replace(is_telemetry_endpoint=True, resource_kind="font")
        self.assertEqual(self.filter.decide(request), (True, TELEMETRY))

    def test_stats_count_reasons(self):
        self.filter.check("https://example.com/", "document")
        self.filter.check("https://example.com/a.png", "image")
        self.filter.check("https://example.com/b.png", "image")
        self.assertEqual(self.filter.stats(), {ALLOWED: 1, BLOCKED_RESOURCE_TYPE: 2})

    def test_is_link_allowed(self):
        self.assertTrue(self.policy.is_link_allowed("https://example.com/a"))
        self.assertTrue(self.policy.is_link_allowed("http://shop.example.com/a"))
        self.assertFalse(self.policy.is_link_allowed("https://other.org/a"))
        self.assertFalse(self.policy.is_link_allowed("mailto:someone@example.com"))
        self.assertFalse(self.policy.is_link_allowed("javascript:void(0)"))
        self.assertFalse(self.policy.is_link_allowed("https://example.com/share/facebook"))

    def test_policy_is_immutable(self):
        with self.assertRaises(dataclasses.FrozenInstanceError):
            self.policy.retry_ceiling = 10
        self.assertIsInstance(self.policy.domains, frozenset)


if __name__ == "__main__":
    unittest.main()
