from codestudio.schemas import AgentConfig
from codestudio.vfs import MemoryBackend, NativeBackend
from codestudio.workspace import open_workspace, select_backend
from tests.fakes import FakeFetcher, FakeShellExecutor, FakeSyntaxValidator, make_settings


def _open(settings, **kwargs):
    return open_workspace(
        settings,
        shell_executor=FakeShellExecutor(),
        validator=FakeSyntaxValidator(),
        fetcher=FakeFetcher(),
        **kwargs,
    )


def test_select_backend_prefers_writable_directory(tmp_path):
    assert isinstance(select_backend(str(tmp_path)), NativeBackend)
    fallback = select_backend(str(tmp_path / "missing"))
    assert isinstance(fallback, MemoryBackend)
    assert isinstance(select_backend(None), MemoryBackend)


def test_native_workspace_indexes_existing_files_and_starts_shell_in_root(tmp_path):
    root = tmp_path / "project"
    (root / "src").mkdir(parents=True)
    (root / "src" / "main.py").write_text("def start():\n    pass\n")
    (root / "node_modules" / "pkg").mkdir(parents=True)
    (root / "node_modules" / "pkg" / "index.js").write_text("function vendored() {}")
    (root / "big.js").write_text("x" * 50)

    settings = make_settings(tmp_path, workspace_root=str(root), index_max_file_bytes=40)
    ws = _open(settings)
    assert ws.kind == "native"
    assert "src/main.py" in ws.index
    assert "node_modules/pkg/index.js" not in ws.index
    assert "big.js" not in ws.index
    assert ws.shell.cwd == str(root.resolve())


def test_memory_workspace_environment_block(settings):
    ws = _open(settings)
    agent = AgentConfig(id="a", name="A", credential_id="c", model="m", root_path="/app")
    assert ws.environment_block(agent) == "[ENVIRONMENT]\nCWD: /app\nFileSystem Type: memory"
    assert ws.shell.cwd == "~"
    assert "README.md" in ws.index


async def test_close_detaches_index(settings):
    ws = _open(settings)
    await ws.close()
    ws.vfs.write("late.py", "def late(): pass")
    assert "late.py" not in ws.index
