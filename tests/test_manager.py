"""Tests for the document lifecycle, publishing and dependency cascades."""
import asyncio

from thriftdiag.config import DiagnosticsSettings, Settings
from thriftdiag.diagnostics.includes import IncludeTypeCollector
from thriftdiag.diagnostics.manager import DiagnosticManager, InMemoryPublisher
from thriftdiag.diagnostics.workspace import LocalWorkspace
from thriftdiag.exceptions import ErrorReporter
from thriftdiag.models.records import Issue, TextRange

from conftest import codes

SHARED = "exception Err {}\n"
MAIN = 'include "shared.thrift"\nservice S {\n  void f() throws (1: Err e)\n}\n'


def _manager(settings, workspace=None, **kwargs):
    workspace = workspace or LocalWorkspace()
    publisher = InMemoryPublisher()
    return DiagnosticManager(workspace, publisher, settings, **kwargs), workspace, publisher


def test_open_publishes_issues_and_updates_state(fast_settings, write_file):
    path = write_file("a.thrift", "struct S { 1: i32 a, 1: i32 b }\n")
    manager, workspace, publisher = _manager(fast_settings)

    async def scenario():
        document = workspace.open(path)
        assert manager.on_open(document) is True
        await manager.scheduler.wait_idle(timeout=2)

    asyncio.run(scenario())

    assert codes(publisher.get(path)) == ["field.duplicateId"]
    state = manager.get_state(path)
    assert state.version == 1
    assert state.is_analyzing is False
    assert state.last_analysis_at is not None


def test_publish_replaces_previous_issues(fast_settings, write_file):
    path = write_file("a.thrift", "typedef Foo Bar\n")
    manager, workspace, publisher = _manager(fast_settings)

    async def scenario():
        document = workspace.open(path)
        manager.on_open(document)
        await manager.scheduler.wait_idle(timeout=2)
        first = publisher.get(path)
        manager.on_change(workspace.update(path, "typedef i32 Bar\n"))
        await manager.scheduler.wait_idle(timeout=2)
        return first

    first = asyncio.run(scenario())

    assert codes(first) == ["typedef.unknownBase"]
    assert publisher.get(path) == []
    assert manager.get_state(path).version == 2


def test_included_types_and_dependency_edges(fast_settings, write_file):
    shared = write_file("shared.thrift", SHARED)
    main = write_file("main.thrift", MAIN)
    manager, workspace, publisher = _manager(fast_settings)

    async def scenario():
        manager.on_open(workspace.open(main))
        await manager.scheduler.wait_idle(timeout=2)

    asyncio.run(scenario())

    assert publisher.get(main) == []
    snapshot = manager.dependency_snapshot()
    assert snapshot.includes[main.resolve()] == frozenset({shared.resolve()})
    assert snapshot.included_by[shared.resolve()] == frozenset({main.resolve()})


def test_change_in_included_file_cascades_to_dependents(fast_settings, write_file):
    shared = write_file("shared.thrift", SHARED)
    main = write_file("main.thrift", MAIN)
    manager, workspace, publisher = _manager(fast_settings)

    async def scenario():
        manager.on_open(workspace.open(main))
        manager.on_open(workspace.open(shared))
        await manager.scheduler.wait_idle(timeout=2)
        assert publisher.get(main) == []

        manager.on_change(workspace.update(shared, "struct Err {}\n"))
        await manager.scheduler.wait_idle(timeout=2)

    asyncio.run(scenario())

    assert codes(publisher.get(main)) == ["service.throws.notException"]


def test_skip_dependents_stops_cascade(fast_settings, write_file):
    shared = write_file("shared.thrift", SHARED)
    main = write_file("main.thrift", MAIN)
    manager, workspace, publisher = _manager(fast_settings)

    async def scenario():
        manager.on_open(workspace.open(main))
        await manager.scheduler.wait_idle(timeout=2)
        before = manager.get_state(main).last_analysis_at

        shared_doc = workspace.open(shared, text="struct Err {}\n")
        manager.schedule_analysis(shared_doc, immediate=True, skip_dependents=True)
        await manager.scheduler.wait_idle(timeout=2)
        return before

    before = asyncio.run(scenario())

    assert manager.get_state(main).last_analysis_at == before
    assert publisher.get(main) == []


def test_unchanged_document_is_throttled(write_file):
    settings = Settings(diagnostics=DiagnosticsSettings(analysis_delay_ms=10, min_analysis_interval_ms=5000))
    path = write_file("a.thrift", "struct S {}\n")
    manager, workspace, publisher = _manager(settings)

    async def scenario():
        document = workspace.open(path)
        manager.on_open(document)
        await manager.scheduler.wait_idle(timeout=2)
        accepted = manager.on_change(document)
        manager.dispose()
        return accepted

    assert asyncio.run(scenario()) is False


def test_unsupported_files_are_ignored(fast_settings, write_file):
    path = write_file("notes.txt", "struct S {\n")
    manager, workspace, publisher = _manager(fast_settings)

    async def scenario():
        return manager.on_open(workspace.open(path))

    assert asyncio.run(scenario()) is False
    assert publisher.all() == {}


def test_close_clears_everything(fast_settings, write_file):
    write_file("shared.thrift", SHARED)
    main = write_file("main.thrift", MAIN.replace("Err e", "Missing e"))
    manager, workspace, publisher = _manager(fast_settings)

    async def scenario():
        document = workspace.open(main)
        manager.on_open(document)
        await manager.scheduler.wait_idle(timeout=2)
        assert publisher.get(main)
        manager.on_close(workspace.close(main))

    asyncio.run(scenario())

    assert publisher.get(main) == []
    assert manager.get_state(main) is None
    assert manager.dependency_snapshot().includes == {}
    assert manager.collector.cache.size() == 1


def test_external_change_invalidates_cache_and_reschedules(fast_settings, write_file):
    shared = write_file("shared.thrift", SHARED)
    main = write_file("main.thrift", MAIN)
    manager, workspace, publisher = _manager(fast_settings)

    async def scenario():
        manager.on_open(workspace.open(main))
        await manager.scheduler.wait_idle(timeout=2)
        assert manager.collector.cache.size() == 1

        assert manager.on_external_change(shared.parent / "README.md") == 0
        shared.write_text("struct Err {}\n", encoding="utf-8")
        count = manager.on_external_change(shared)
        assert manager.collector.cache.size() == 0
        await manager.scheduler.wait_idle(timeout=2)
        return count

    assert asyncio.run(scenario()) == 1
    assert codes(publisher.get(main)) == ["service.throws.notException"]


class ExplodingCollector(IncludeTypeCollector):
    async def collect(self, document):
        raise RuntimeError("disk on fire")


def test_failure_boundary_clears_diagnostics_and_resets_state(fast_settings, write_file):
    path = write_file("a.thrift", "struct S {}\n")
    workspace = LocalWorkspace()
    reporter = ErrorReporter()
    manager, _, publisher = _manager(
        fast_settings,
        workspace,
        collector=ExplodingCollector(workspace),
        error_reporter=reporter,
    )
    stale = Issue(message="stale", range=TextRange.on_line(0, 0, 1), code="type.unknown")

    async def scenario():
        document = workspace.open(path)
        publisher.publish(document.path, [stale])
        manager.on_open(document)
        await manager.scheduler.wait_idle(timeout=2)

    asyncio.run(scenario())

    assert path.resolve() not in publisher.all()
    assert manager.get_state(path).is_analyzing is False
    assert [report.component for report in reporter.reports] == ["DiagnosticManager"]
    assert "disk on fire" in reporter.reports[0].message


def test_dispose_resets_manager(fast_settings, write_file):
    main = write_file("main.thrift", MAIN)
    write_file("shared.thrift", SHARED)
    manager, workspace, publisher = _manager(fast_settings)

    async def scenario():
        manager.on_open(workspace.open(main))
        await manager.scheduler.wait_idle(timeout=2)
        manager.dispose()

    asyncio.run(scenario())

    assert manager.dependency_snapshot().includes == {}
    assert manager.get_state(main) is None
    assert manager.scheduler.is_idle()


class RecordingPublisher(InMemoryPublisher):
    def __init__(self):
        super().__init__()
        self.published = []

    def publish(self, path, issues):
        super().publish(path, issues)
        self.published.append(path.name)


def test_cascade_stops_after_one_hop(fast_settings, write_file):
    base = write_file("a.thrift", "struct X {}\n")
    middle = write_file("b.thrift", 'include "a.thrift"\nstruct Y {\n  1: a.X x\n}\n')
    top = write_file("c.thrift", 'include "b.thrift"\nstruct Z {\n  1: b.Y y\n}\n')
    workspace = LocalWorkspace()
    publisher = RecordingPublisher()
    manager = DiagnosticManager(workspace, publisher, fast_settings)

    async def scenario():
        for path in (base, middle, top):
            manager.on_open(workspace.open(path))
        await manager.scheduler.wait_idle(timeout=2)
        assert manager.dependency_snapshot().included_by[middle.resolve()] == frozenset({top.resolve()})
        publisher.published.clear()
        top_analysed_at = manager.get_state(top).last_analysis_at

        manager.on_change(workspace.update(base, "struct X {}\nstruct W {}\n"))
        await manager.scheduler.wait_idle(timeout=2)
        return top_analysed_at

    top_analysed_at = asyncio.run(scenario())

    assert publisher.published == ["a.thrift", "b.thrift"]
    assert manager.get_state(top).last_analysis_at == top_analysed_at
