"""Tests for the repository summary given to the onboarding assistant."""

from __future__ import annotations

import unittest

from ecp.services.github import RepositoryAccessError, RepositoryInfo
from ecp.services.repo_context import KEY_FILE_CHARS, build_repository_context
from ecp.tracking.types import RepoFileEntry

FILES = {
    "README.md": "# Kits\n" + "x" * (KEY_FILE_CHARS + 100),
    "package.json": '{"name": "kits"}',
    "docs/README.md": "nested readme is not a key file",
    "src/lib/analytics.ts": "export function onOrder() {\n  posthog.capture('kit_ordered');\n}\n",
    "src/pages/plans.tsx": "mixpanel.track('plan_viewed');\n",
    "src/pages/broken.tsx": "",
    "public/logo.svg": "<svg/>",
}


class _StubReader:
    def __init__(self, *, tree_error: bool = False) -> None:
        self.tree_error = tree_error
        self.reads: list[str] = []

    def describe(self) -> RepositoryInfo:
        return RepositoryInfo(
            full_name="acme/kits",
            description="Meal kit storefront",
            language="TypeScript",
            topics=("ecommerce", "nextjs"),
            default_branch="main",
        )

    def list_files(self) -> list[RepoFileEntry]:
        if self.tree_error:
            raise RepositoryAccessError("GitHub API 409: Git Repository is empty.")
        entries = [RepoFileEntry(path=path) for path in FILES]
        entries.append(RepoFileEntry(path="src", type="tree"))
        return entries

    def read_file(self, path: str) -> str:
        self.reads.append(path)
        if path == "src/pages/broken.tsx":
            raise RepositoryAccessError("GitHub API 500")
        return FILES[path]


class _NoRepositoryReader(_StubReader):
    def describe(self) -> RepositoryInfo:
        raise RepositoryAccessError("GitHub API 404: Not Found")


class RepositoryContextTests(unittest.TestCase):
    def test_collects_metadata_key_files_tree_and_tracking_calls(self) -> None:
        reader = _StubReader()

        context = build_repository_context(reader, max_source_files=15, context_lines=1, batch_size=2)

        self.assertEqual(context.info.full_name, "acme/kits")
        self.assertEqual(set(context.key_files), {"README.md", "package.json"})
        self.assertEqual(len(context.key_files["README.md"]), KEY_FILE_CHARS)
        self.assertNotIn("src", context.file_tree)
        self.assertIn("public/logo.svg", context.file_tree)
        self.assertEqual(
            [(call.event_name, call.file_path, call.line) for call in context.tracking_calls],
            [("kit_ordered", "src/lib/analytics.ts", 2), ("plan_viewed", "src/pages/plans.tsx", 1)],
        )
        self.assertNotIn("docs/README.md", reader.reads)

    def test_render_puts_tracking_calls_before_the_file_tree(self) -> None:
        rendered = build_repository_context(_StubReader(), context_lines=0).render()

        self.assertTrue(rendered.startswith("Repository: acme/kits\nDescription: Meal kit storefront\n"))
        self.assertIn("Topics: ecommerce, nextjs", rendered)
        self.assertIn("- kit_ordered (src/lib/analytics.ts:2)", rendered)
        self.assertIn('--- package.json ---\n{"name": "kits"}', rendered)
        self.assertLess(rendered.index("Tracking calls found:"), rendered.index("File tree:"))

    def test_missing_tree_still_yields_metadata(self) -> None:
        with self.assertLogs("ecp.services.repo_context", level="WARNING"):
            context = build_repository_context(_StubReader(tree_error=True))

        self.assertEqual(context.file_tree, [])
        self.assertEqual(context.tracking_calls, [])
        self.assertEqual(context.render(), (
            "Repository: acme/kits\nDescription: Meal kit storefront\nLanguage: TypeScript\n"
            "Topics: ecommerce, nextjs"
        ))

    def test_unreadable_repository_is_raised(self) -> None:
        with self.assertRaises(RepositoryAccessError):
            build_repository_context(_NoRepositoryReader())


if __name__ == "__main__":
    unittest.main()
