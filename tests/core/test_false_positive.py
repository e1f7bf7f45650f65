import unittest

from raiz.core import false_positive
from raiz.core.model import DependencyCoordinate, DependencyNode, Ecosystem, Likelihood, Scope, Source, Vulnerability


def node(group="org.example", artifact="lib", version="1.2.0", scope=Scope.COMPILE, optional=False, classifier=""):
    return DependencyNode(DependencyCoordinate(Ecosystem.MAVEN, group, artifact, version, classifier),
                          scope=scope, optional=optional)


def vuln(rng=">=1.0, <1.5"):
    return Vulnerability(id="CVE-2023-0001", source=Source.OSV, affected_version_range=rng)


class TestFalsePositiveAnalyzer(unittest.TestCase):

    def test_plain_compile_dependency_has_no_indicators(self):
        result = false_positive.analyze(node(), vuln())
        self.assertEqual(result.indicators, [])
        self.assertEqual(result.likelihood, Likelihood.LOW)
        self.assertEqual(result.reachability, "unknown")

    def test_test_scope_is_medium(self):
        result = false_positive.analyze(node(scope=Scope.TEST), vuln())
        self.assertEqual(len(result.indicators), 1)
        self.assertIn("test", result.indicators[0])
        self.assertEqual(result.likelihood, Likelihood.MEDIUM)

    def test_provided_and_optional_is_high(self):
        result = false_positive.analyze(node(scope=Scope.PROVIDED, optional=True), vuln())
        self.assertEqual(len(result.indicators), 2)
        self.assertEqual(result.likelihood, Likelihood.HIGH)

    def test_shaded_artifact(self):
        result = false_positive.analyze(node(artifact="lib-shaded"), vuln())
        self.assertTrue(any("repackaged" in i for i in result.indicators))
        self.assertEqual(result.likelihood, Likelihood.MEDIUM)

    def test_shaded_classifier(self):
        result = false_positive.analyze(node(classifier="jar-with-dependencies"), vuln())
        self.assertEqual(len(result.indicators), 1)

    def test_relocated_group(self):
        result = false_positive.analyze(node(group="org.acme.thirdparty", artifact="guava", version="1.2"), vuln())
        self.assertTrue(any("com.google.guava" in i for i in result.indicators))

    def test_upstream_group_is_not_flagged(self):
        result = false_positive.analyze(node(group="io.netty", artifact="netty-all", version="1.2"), vuln())
        self.assertEqual(result.indicators, [])

    def test_range_without_lower_bound(self):
        result = false_positive.analyze(node(), vuln("<2.0"))
        self.assertEqual(len(result.indicators), 1)
        self.assertIn("no lower bound", result.indicators[0])
        self.assertEqual(result.likelihood, Likelihood.MEDIUM)

    def test_range_spanning_many_majors(self):
        result = false_positive.analyze(node(version="3.0"), vuln(">=1.0, <9.0"))
        self.assertIn("spans 8 major versions", result.indicators[0])

    def test_exact_version_range_is_not_broad(self):
        result = false_positive.analyze(node(version="1.2.0"), vuln("=1.2.0"))
        self.assertEqual(result.indicators, [])

    def test_span_threshold_is_configurable(self):
        result = false_positive.analyze(node(version="1.5"), vuln(">=1.0, <3.0"), span_threshold=2)
        self.assertEqual(len(result.indicators), 1)


if __name__ == "__main__":
    unittest.main()
