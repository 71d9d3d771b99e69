from rsync_watch.ignore import IgnoreMatcher, read_patterns


def test_empty_matcher_ignores_nothing():
    matcher = IgnoreMatcher()
    assert not matcher
    assert matcher.is_ignored("anything.swp") is False


def test_gitignore_semantics():
    matcher = IgnoreMatcher(["*.swp", "node_modules/", "/build"])
    assert matcher.is_ignored(".notes.txt.swp")
    assert matcher.is_ignored("node_modules", is_dir=True)
    assert matcher.is_ignored("web/node_modules/react/index.js")
    assert matcher.is_ignored("build/out.o")
    assert not matcher.is_ignored("src/build.py")
    assert not matcher.is_ignored("node_modules")


def test_read_patterns_skips_comments_and_blanks(tmp_path):
    path = tmp_path / ".rsyncwatchignore"
    path.write_text("# editor files\n*.swp\n\n  tmp/  \n", encoding="utf-8")
    assert read_patterns(path) == ["*.swp", "tmp/"]
