import unittest

from raiz.core import versions
from raiz.core.versions import Version


class TestVersionOrdering(unittest.TestCase):

    def test_numeric_parts_compare_as_numbers(self):
        self.assertLess(Version("2.9.0"), Version("2.10.0"))
        self.assertGreater(Version("1.10"), Version("1.9.9"))

    def test_trailing_zeros_are_insignificant(self):
        self.assertEqual(Version("1.0.0"), Version("1"))
        self.assertEqual(Version("2.1"), Version("2.1.0"))
        self.assertEqual(hash(Version("2.1")), hash(Version("2.1.0")))

    def test_qualifiers(self):
        self.assertLess(Version("1.0-alpha"), Version("1.0-beta"))
        self.assertLess(Version("1.0-beta"), Version("1.0-rc1"))
        self.assertLess(Version("1.0-rc1"), Version("1.0"))
        self.assertLess(Version("1.0-SNAPSHOT"), Version("1.0"))
        self.assertEqual(Version("1.0.Final"), Version("1.0"))
        self.assertLess(Version("1.0"), Version("1.0-sp1"))
        self.assertLess(Version("1.0-sp1"), Version("1.0.1"))

    def test_major(self):
        self.assertEqual(Version("2.15.1").major, 2)
        self.assertEqual(Version("v3").major, 3)
        self.assertEqual(Version("final").major, 0)


class TestRanges(unittest.TestCase):

    def test_canonical_range(self):
        rng = ">=2.0.0, <2.15.0 || =1.2.3"
        self.assertTrue(versions.contains(rng, "2.14.1"))
        self.assertTrue(versions.contains(rng, "1.2.3"))
        self.assertFalse(versions.contains(rng, "2.15.0"))
        self.assertFalse(versions.contains(rng, "1.9"))

    def test_maven_bracket_range(self):
        self.assertTrue(versions.contains("[1.0,2.0)", "1.5"))
        self.assertFalse(versions.contains("[1.0,2.0)", "2.0"))
        self.assertTrue(versions.contains("(,1.5]", "1.5"))
        self.assertTrue(versions.contains("[1.2]", "1.2.0"))
        self.assertTrue(versions.contains("(,1.0],[1.2,)", "1.3"))
        self.assertFalse(versions.contains("(,1.0],[1.2,)", "1.1"))

    def test_unparsable_or_empty_range_is_unknown(self):
        self.assertIsNone(versions.contains("", "1.0"))
        self.assertIsNone(versions.contains("[", "1.0"))

    def test_matching_branch(self):
        branch = versions.matching_branch(">=1.0, <2.0 || >=3.0, <3.1", "3.0.5")
        self.assertEqual([op for op, _ in branch], [">=", "<"])
        self.assertEqual(str(branch[0][1]), "3.0")
        self.assertIsNone(versions.matching_branch(">=1.0, <2.0", "2.5"))

    def test_format_constraints_skips_missing_bounds(self):
        self.assertEqual(versions.format_constraints((">=", "1.0"), ("<", "2.0")), ">=1.0, <2.0")
        self.assertEqual(versions.format_constraints((">=", None), ("<", "2.0")), "<2.0")


if __name__ == "__main__":
    unittest.main()
