import threading
import unittest

from crawlbot.ledger import VisitedLedger


class TestVisitedLedger(unittest.TestCase):

    def test_first_claim_wins(self):
        ledger = VisitedLedger()
        self.assertTrue(ledger.try_claim("https://example.com/a"))
        self.assertFalse(ledger.try_claim("https://example.com/a"))
        self.assertEqual(len(ledger), 1)

    def test_fragment_is_ignored(self):
        ledger = VisitedLedger()
        self.assertTrue(ledger.try_claim("https://example.com/a#top"))
        self.assertFalse(ledger.try_claim("https://example.com/a"))
        self.assertFalse(ledger.try_claim("https://example.com/a#bottom"))
        self.assertIn("https://example.com/a#anything", ledger)

    def test_query_is_part_of_the_key(self):
        ledger = VisitedLedger()
        self.assertTrue(ledger.try_claim("https://example.com/a?page=1"))
        self.assertTrue(ledger.try_claim("https://example.com/a?page=2"))
        self.assertEqual(len(ledger), 2)

    def test_concurrent_claims_of_same_url(self):
        """Scenario: N threads claim the same URL at once -> exactly one succeeds."""
        ledger = VisitedLedger()
        threads_count = 16
        barrier = threading.Barrier(threads_count)
        results = []
        results_lock = threading.Lock()

        def claim(i):
            barrier.wait()
            ok = ledger.try_claim(f"https://example.com/shared#from-{i}")
            with results_lock:
                results.append(ok)

        threads = [threading.Thread(target=claim, args=(i,)) for i in range(threads_count)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        self.assertEqual(results.count(True), 1)
        self.assertEqual(len(ledger), 1)


if __name__ == "__main__":
    unittest.main()
