import os
import sys
import unittest


ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
SRC = os.path.join(ROOT, "src")
if SRC not in sys.path:
    sys.path.insert(0, SRC)

from cms.roles import has_permission, is_known_role
from cms.slug import generate_slug, is_valid_slug


class TestSlug(unittest.TestCase):
    def test_punctuation_stripped(self) -> None:
        self.assertEqual(generate_slug("Blog Post!!"), "blog-post")

    def test_whitespace_runs_collapse(self) -> None:
        self.assertEqual(generate_slug("Team   Members\tList"), "team-members-list")

    def test_slug_is_pure(self) -> None:
        self.assertEqual(generate_slug("Events 2024"), generate_slug("Events 2024"))
        self.assertEqual(generate_slug("Events 2024"), "events-2024")

    def test_empty_name(self) -> None:
        self.assertEqual(generate_slug(""), "")
        self.assertEqual(generate_slug("!!!"), "")

    def test_is_valid_slug(self) -> None:
        self.assertTrue(is_valid_slug("blog-post"))
        self.assertFalse(is_valid_slug("Blog Post"))
        self.assertFalse(is_valid_slug(""))
        self.assertFalse(is_valid_slug(None))

    def test_trailing_newline_is_not_a_slug(self) -> None:
        self.assertFalse(is_valid_slug("blog\n"))
        self.assertFalse(is_valid_slug("\nblog"))


class TestRoles(unittest.TestCase):
    def test_hierarchy(self) -> None:
        self.assertTrue(has_permission("admin", "editor"))
        self.assertTrue(has_permission("editor", "editor"))
        self.assertFalse(has_permission("viewer", "editor"))

    def test_no_requirement_allows_everyone(self) -> None:
        self.assertTrue(has_permission(None, None))
        self.assertTrue(has_permission("viewer", ""))

    def test_unknown_role_denied(self) -> None:
        self.assertFalse(has_permission("owner", "viewer"))
        self.assertFalse(has_permission(None, "viewer"))
        self.assertFalse(is_known_role("owner"))


if __name__ == "__main__":
    unittest.main()
