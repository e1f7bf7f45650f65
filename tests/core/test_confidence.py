import unittest

from raiz.core import confidence
from raiz.core.aggregator import merge_vulnerabilities
from raiz.core.model import ConfidenceLevel, MatchQuality, Source, Vulnerability


class TestConfidence(unittest.TestCase):

    def test_osv_alone_is_medium(self):
        vuln = Vulnerability(id="CVE-2021-44228", source=Source.OSV, match_quality=MatchQuality.RANGE)
        score, level = confidence.assess(vuln)
        self.assertEqual(score, 77)
        self.assertEqual(level, ConfidenceLevel.MEDIUM)

    def test_confirmed_by_nvd_exact_is_high(self):
        osv = Vulnerability(id="GHSA-jfh8-c2jp-5v3q", source=Source.OSV, aliases=frozenset({"CVE-2021-44228"}))
        nvd = Vulnerability(id="CVE-2021-44228", source=Source.NVD, match_quality=MatchQuality.EXACT)
        merged = merge_vulnerabilities([osv, nvd])
        self.assertEqual(len(merged), 1)
        score, level = confidence.assess(merged[0])
        self.assertEqual(score, 100)
        self.assertEqual(level, ConfidenceLevel.HIGH)

    def test_more_sources_never_lower_confidence(self):
        for match in (0.5, 0.8, 1.0):
            for reliability in (0.6, 0.8, 1.0):
                scores = [confidence.confidence(match, reliability, n, False) for n in range(1, 6)]
                self.assertEqual(scores, sorted(scores))

    def test_score_is_clamped(self):
        self.assertEqual(confidence.confidence(1.0, 1.0, 10, True), 100)
        self.assertEqual(confidence.confidence(0.0, 0.0, 0, False), 0)

    def test_levels(self):
        self.assertEqual(confidence.confidence_level(80), ConfidenceLevel.HIGH)
        self.assertEqual(confidence.confidence_level(79), ConfidenceLevel.MEDIUM)
        self.assertEqual(confidence.confidence_level(50), ConfidenceLevel.MEDIUM)
        self.assertEqual(confidence.confidence_level(49), ConfidenceLevel.LOW)

    def test_canonical_ids(self):
        self.assertTrue(confidence.is_canonical_id("CVE-2022-42889"))
        self.assertTrue(confidence.is_canonical_id("GHSA-599f-7c49-w659"))
        self.assertFalse(confidence.is_canonical_id("sonatype-2021-1234"))
        self.assertFalse(confidence.is_canonical_id("CVE-22-1"))


if __name__ == "__main__":
    unittest.main()
