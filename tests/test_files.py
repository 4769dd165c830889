from coderag.config import DEFAULT_EXCLUDE_PATTERNS, DEFAULT_INCLUDE_PATTERNS
from coderag.indexing.files import GlobMatcher, expand_braces, find_files, glob_to_regex


def test_expand_braces():
    assert expand_braces("**/*.{js,ts}") == ["**/*.js", "**/*.ts"]
    assert expand_braces("{a,b}/{c,d}") == ["a/c", "a/d", "b/c", "b/d"]
    assert expand_braces("plain/*.py") == ["plain/*.py"]


def test_double_star_prefix_matches_any_depth():
    regex = glob_to_regex("**/*.py")
    assert regex.match("a.py")
    assert regex.match("src/pkg/a.py")
    assert not regex.match("a.pyc")


def test_single_star_stays_in_one_segment():
    regex = glob_to_regex("src/*.py")
    assert regex.match("src/a.py")
    assert not regex.match("src/pkg/a.py")


def test_trailing_double_star_matches_directory_and_contents():
    regex = glob_to_regex("**/node_modules/**")
    assert regex.match("node_modules")
    assert regex.match("web/node_modules/lib/index.js")
    assert not regex.match("web/node_modules_extra/x.js")


def test_question_mark_and_classes():
    assert glob_to_regex("file?.txt").match("file1.txt")
    assert not glob_to_regex("file?.txt").match("file10.txt")
    assert glob_to_regex("v[0-9].md").match("v3.md")
    assert not glob_to_regex("v[!0-9].md").match("v3.md")


def test_matcher_with_defaults():
    matcher = GlobMatcher(DEFAULT_INCLUDE_PATTERNS, DEFAULT_EXCLUDE_PATTERNS)
    assert matcher.is_included("src/app.py")
    assert matcher.is_included("README.md")
    assert not matcher.is_included("node_modules/lib/index.js")
    assert not matcher.is_included(".git/hooks/pre-commit.py")
    assert not matcher.is_included("data.bin")
    assert matcher.is_excluded("build")


def test_find_files_filters_and_sorts(workspace):
    found = find_files(workspace, DEFAULT_INCLUDE_PATTERNS, DEFAULT_EXCLUDE_PATTERNS)

    relative = [p.relative_to(workspace.resolve()).as_posix() for p in found]
    assert relative == ["docs/README.md", "src/app.py", "src/util.ts"]
    assert all(p.is_absolute() for p in found)


def test_find_files_on_missing_root(tmp_path):
    assert find_files(tmp_path / "missing", ["**/*"]) == []
