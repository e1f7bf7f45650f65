import unittest

from raiz.core import risk
from raiz.core.model import ExploitMaturity, Scope, Severity


class TestRiskScore(unittest.TestCase):

    def test_worst_case_is_100(self):
        score = risk.risk_score(Severity.CRITICAL, 0, Scope.COMPILE, ExploitMaturity.POC)
        self.assertEqual(score, 100)

    def test_medium_transitive_test_dependency(self):
        score = risk.risk_score(Severity.MEDIUM, 2, Scope.TEST, ExploitMaturity.NONE)
        self.assertEqual(score, 52)

    def test_depth_bands(self):
        self.assertEqual(risk.depth_score(0), 100)
        self.assertEqual(risk.depth_score(1), 80)
        self.assertEqual(risk.depth_score(2), 60)
        self.assertEqual(risk.depth_score(3), 40)
        self.assertEqual(risk.depth_score(12), 40)
        with self.assertRaises(ValueError):
            risk.depth_score(-1)

    def test_custom_depth_table(self):
        score = risk.risk_score(Severity.LOW, 5, Scope.COMPILE, ExploitMaturity.NONE, depth_table=(100, 50))
        # 0.4*40 + 0.2*50 + 0.2*100 + 0.2*40
        self.assertEqual(score, 54)

    def test_deterministic_and_bounded(self):
        for severity in Severity:
            for scope in Scope:
                for exploit in ExploitMaturity:
                    for depth in range(5):
                        a = risk.risk_score(severity, depth, scope, exploit)
                        b = risk.risk_score(severity, depth, scope, exploit)
                        self.assertEqual(a, b)
                        self.assertGreaterEqual(a, 0)
                        self.assertLessEqual(a, 100)

    def test_deeper_never_scores_higher(self):
        scores = [risk.risk_score(Severity.HIGH, d, Scope.RUNTIME, ExploitMaturity.THEORETICAL) for d in range(6)]
        self.assertEqual(scores, sorted(scores, reverse=True))

    def test_breakdown(self):
        parts = risk.score_breakdown(Severity.HIGH, 1, Scope.PROVIDED, ExploitMaturity.WEAPONIZED)
        self.assertEqual(parts, {"severity": 80, "depth": 80, "scope": 60, "exploit": 80})


if __name__ == "__main__":
    unittest.main()
