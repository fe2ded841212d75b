import os

import pytest

from codestudio.vfs import (
    FileSystemError,
    MemoryBackend,
    NativeBackend,
    PathCollision,
    PathNotFound,
    VirtualFileSystem,
    split_path,
)


@pytest.fixture(params=["memory", "native"])
def vfs(request, tmp_path):
    if request.param == "memory":
        return VirtualFileSystem(MemoryBackend())
    return VirtualFileSystem(NativeBackend(tmp_path))


def test_split_path_normalizes_segments():
    assert split_path("/src//./app.ts") == ["src", "app.ts"]
    assert split_path("src\\lib\\x.py") == ["src", "lib", "x.py"]
    assert split_path("") == []
    with pytest.raises(FileSystemError):
        split_path("../etc/passwd")


def test_write_then_read_round_trip_with_nested_dirs(vfs):
    content = "line1\r\nline2\né"
    vfs.write("src/components/Button.tsx", content)
    assert vfs.read("src/components/Button.tsx") == content
    assert vfs.read("./src/components/Button.tsx") == content


def test_read_missing_raises_not_found(vfs):
    with pytest.raises(PathNotFound):
        vfs.read("nope.txt")


def test_write_through_file_raises_collision(vfs):
    vfs.write("a.txt", "x")
    with pytest.raises(PathCollision):
        vfs.write("a.txt/b.txt", "y")


def test_list_orders_directories_first_then_name(vfs):
    vfs.write("b.txt", "")
    vfs.write("a.txt", "")
    vfs.create_directory("zdir")
    vfs.write("adir/x.js", "")
    nodes = vfs.list("")
    assert [(n.name, n.kind) for n in nodes] == [
        ("adir", "directory"),
        ("zdir", "directory"),
        ("a.txt", "file"),
        ("b.txt", "file"),
    ]
    assert nodes[0].path == "adir"


def test_list_recursive_skips_excluded_directories(vfs):
    vfs.write("src/index.js", "")
    vfs.write("node_modules/pkg/index.js", "")
    vfs.write(".git/HEAD", "")
    vfs.write("dist/bundle.js", "")
    tree = vfs.list_recursive("")
    names = [n.name for n in tree]
    assert names == ["src"]
    assert tree[0].children[0].path == "src/index.js"


def test_search_by_name_is_case_insensitive_and_skips_excluded(vfs):
    vfs.write("src/UserCard.tsx", "")
    vfs.write("src/user.py", "")
    vfs.write("node_modules/user/index.js", "")
    vfs.write("src/.userrc", "")
    assert vfs.search_by_name("USER") == ["src/UserCard.tsx", "src/user.py"]
    assert vfs.search_by_name("  ") == []


def test_delete_directory_recursively(vfs):
    vfs.write("pkg/a.py", "")
    vfs.write("pkg/sub/b.py", "")
    vfs.delete("pkg")
    assert not vfs.exists("pkg")
    with pytest.raises(PathNotFound):
        vfs.delete("pkg")


def test_read_many_reports_errors_per_path(vfs):
    vfs.write("a.txt", "A")
    result = vfs.read_many(["a.txt", "missing.txt"])
    assert result["a.txt"] == "A"
    assert result["missing.txt"].startswith("Error:")


def test_exactly_one_notification_per_write_and_delete(vfs):
    events = []
    unsubscribe = vfs.subscribe(lambda kind, path, content: events.append((kind, path, content)))
    vfs.write("src/a.js", "const a = 1;")
    vfs.read("src/a.js")
    vfs.list("src")
    vfs.create_directory("empty")
    vfs.delete("src/a.js")
    assert events == [("write", "src/a.js", "const a = 1;"), ("delete", "src/a.js", None)]
    unsubscribe()
    vfs.write("src/b.js", "")
    assert len(events) == 2


def test_failing_listener_does_not_undo_write(vfs):
    def boom(kind, path, content):
        raise RuntimeError("listener broke")

    vfs.subscribe(boom)
    vfs.write("a.txt", "kept")
    assert vfs.read("a.txt") == "kept"


def test_seeded_memory_backend_has_readme():
    vfs = VirtualFileSystem(MemoryBackend.seeded())
    assert vfs.kind == "memory"
    assert vfs.read("README.md").startswith("# In-Memory Workspace")


@pytest.mark.skipif(os.name == "nt" or os.geteuid() == 0, reason="needs POSIX permissions as non-root")
def test_native_unreadable_subtree_is_treated_as_empty(tmp_path):
    vfs = VirtualFileSystem(NativeBackend(tmp_path))
    vfs.write("open/a.txt", "a")
    vfs.write("locked/b.txt", "b")
    locked = tmp_path / "locked"
    locked.chmod(0)
    try:
        tree = vfs.list_recursive("")
        by_name = {n.name: n for n in tree}
        assert by_name["locked"].children == []
        assert by_name["open"].children[0].name == "a.txt"
    finally:
        locked.chmod(0o755)
