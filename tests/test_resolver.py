import functools
import logging
from pathlib import Path

import pytest

from buildtools_installer import resolver
from buildtools_installer.dispatch import install_payloads
from buildtools_installer.errors import IntegrityFailure, ResolutionFailure
from buildtools_installer.lib.net import download_payload
from buildtools_installer.resolver import PREINSTALLED, InstallContext, install_all, install_package

from conftest import make_package, payload_json


class Recorder:
    """Stands in for both the fetcher and the dispatcher."""

    def __init__(self):
        self.events: list[tuple[str, str]] = []
        self.work_dirs: list[Path] = []

    def fetch(self, dest_dir, payload):
        self.events.append(("fetch", payload.file_name))
        path = Path(dest_dir) / payload.file_name
        path.write_bytes(b"payload")
        return path

    def install(self, work_dir, package, payloads):
        self.work_dirs.append(Path(work_dir))
        self.events.append(("install", package.id))

    @property
    def installs(self) -> list[str]:
        return [name for kind, name in self.events if kind == "install"]


def _exe(pkg_id, deps=None, **fields):
    return make_package(
        pkg_id,
        type="Exe",
        dependencies=deps or {},
        payloads=[payload_json(f"{pkg_id.lower()}.exe", pkg_id.encode())],
        installParams={"fileName": "[Payload]", "parameters": ""},
        **fields,
    )


def _ctx(packages, rec, **kwargs):
    return InstallContext(packages=packages, fetch=rec.fetch, install=rec.install, **kwargs)


def test_meta_package_installs_only_its_dependency():
    rec = Recorder()
    packages = [make_package("A", dependencies={"B": {}}), _exe("B")]

    install_package(_ctx(packages, rec), "A")

    assert rec.events == [("fetch", "b.exe"), ("install", "B")]


def test_diamond_installs_shared_dependency_once():
    rec = Recorder()
    packages = [
        _exe("A", {"B": "1", "C": "1"}),
        _exe("B", {"D": "1"}),
        _exe("C", {"D": "1"}),
        _exe("D"),
    ]
    ctx = _ctx(packages, rec)

    install_package(ctx, "A")

    assert rec.installs == ["D", "B", "C", "A"]
    assert ctx.installed_order == ["D", "B", "C", "A"]


def test_dependencies_install_before_dependents_at_any_depth():
    rec = Recorder()
    chain = [_exe(f"P{i}", {f"P{i + 1}": "1"}) for i in range(6)] + [_exe("P6")]

    install_package(_ctx(chain, rec), "P0")

    assert rec.installs == [f"P{i}" for i in range(6, -1, -1)]
    # every fetch for a package comes right before its install
    for i, (kind, name) in enumerate(rec.events):
        if kind == "install":
            assert rec.events[i - 1] == ("fetch", f"{name.lower()}.exe")


def test_cycle_terminates():
    rec = Recorder()
    packages = [_exe("A", {"B": "1"}), _exe("B", {"A": "1"})]

    install_package(_ctx(packages, rec), "A")

    assert rec.installs == ["B", "A"]


def test_optional_and_foreign_consumer_edges_are_skipped():
    rec = Recorder()
    packages = [
        make_package(
            "Workload",
            dependencies={
                "Recommended.Thing": {"type": "Recommended"},
                "Enterprise.Only": {"when": ["Microsoft.VisualStudio.Product.Enterprise"]},
                "BuildTools.Thing": {"when": ["Microsoft.VisualStudio.Product.BuildTools"]},
            },
        ),
        _exe("Recommended.Thing"),
        _exe("Enterprise.Only"),
        _exe("BuildTools.Thing"),
    ]

    install_package(_ctx(packages, rec), "Workload")

    assert rec.installs == ["BuildTools.Thing"]


def test_consumer_is_configurable():
    rec = Recorder()
    packages = [
        make_package("Workload", dependencies={"Enterprise.Only": {"when": ["Enterprise"]}}),
        _exe("Enterprise.Only"),
    ]

    install_package(_ctx(packages, rec, consumer="Enterprise"), "Workload")

    assert rec.installs == ["Enterprise.Only"]


def test_preinstalled_ids_are_never_installed():
    rec = Recorder()
    redist = PREINSTALLED[0]
    packages = [_exe("App", {redist: "1"}), _exe(redist)]

    install_package(_ctx(packages, rec), "App")

    assert rec.installs == ["App"]


def test_ledger_is_per_context():
    packages = [_exe("A")]
    first, second = Recorder(), Recorder()

    install_package(_ctx(packages, first), "A")
    install_package(_ctx(packages, second), "A")

    assert first.installs == ["A"]
    assert second.installs == ["A"]


def test_install_all_respects_root_order_and_ledger():
    rec = Recorder()
    packages = [_exe("Product", {"Shared": "1"}), _exe("Workload", {"Shared": "1"}), _exe("Shared")]

    install_all(_ctx(packages, rec), ["Product", "Workload", "Product"])

    assert rec.installs == ["Shared", "Product", "Workload"]


def test_inapplicable_language_only_package_is_skipped():
    rec = Recorder()
    packages = [make_package("Product", dependencies={"Lang.Pack": "1"}), _exe("Lang.Pack", language="ko-KR")]
    ctx = _ctx(packages, rec)

    install_package(ctx, "Product")

    assert rec.events == []
    assert ctx.skipped == ["Lang.Pack"]


def test_ignore_behavior_on_edge_tolerates_missing_dependency():
    rec = Recorder()
    packages = [
        _exe("Product", {"Arm.Only": {"chip": "arm64", "behaviors": "IgnoreApplicabilityFailures"}}),
        _exe("Arm.Only", chip="x64"),
    ]

    install_package(_ctx(packages, rec), "Product")

    assert rec.installs == ["Product"]


def test_unresolvable_dependency_aborts_before_dependent_installs():
    rec = Recorder()
    packages = [_exe("Product", {"Missing": "1"})]

    with pytest.raises(ResolutionFailure):
        install_package(_ctx(packages, rec), "Product")

    assert rec.events == []


def test_temp_dir_removed_after_success_and_failure():
    rec = Recorder()
    install_package(_ctx([_exe("A")], rec), "A")
    assert rec.work_dirs and not rec.work_dirs[0].exists()

    seen: list[Path] = []

    def failing_install(work_dir, package, payloads):
        seen.append(Path(work_dir))
        raise RuntimeError("installer crashed")

    ctx = InstallContext(packages=[_exe("A")], fetch=rec.fetch, install=failing_install)
    with pytest.raises(RuntimeError):
        install_package(ctx, "A")
    assert seen and not seen[0].exists()


def test_hash_mismatch_aborts_before_dispatch(server):
    good = b"good bytes"
    packages = [
        make_package(
            "B",
            type="Exe",
            payloads=[payload_json("b.exe", good, url="https://download.example.com/b.exe")],
            installParams={"fileName": "[Payload]", "parameters": ""},
        )
    ]
    server.routes["https://download.example.com/b.exe"] = b"evil bytes"
    rec = Recorder()

    with server.client() as client:
        ctx = InstallContext(
            packages=packages,
            fetch=lambda d, p: download_payload(d, p, client=client),
            install=rec.install,
        )
        with pytest.raises(IntegrityFailure):
            install_package(ctx, "B")

    assert rec.installs == []


def test_temp_dir_removal_failure_is_logged_not_fatal(monkeypatch, caplog):
    real_rmtree = resolver.shutil.rmtree
    left_behind = []

    def stuck(path):
        left_behind.append(path)
        raise OSError(32, "The process cannot access the file", str(path))

    monkeypatch.setattr(resolver.shutil, "rmtree", stuck)
    rec = Recorder()
    packages = [_exe("A", {"B": "1"}), _exe("B")]

    with caplog.at_level(logging.WARNING, logger="buildtools_installer.resolver"):
        install_package(_ctx(packages, rec), "A")

    assert rec.installs == ["B", "A"]
    assert caplog.text.count("Could not remove temp dir") == 2
    for path in left_behind:
        real_rmtree(path)


def test_reboot_requested_dependency_does_not_stop_dependent(fake_subprocess, tmp_path):
    fake_subprocess.returncodes["b.exe"] = 3010
    rec = Recorder()
    ctx = InstallContext(
        packages=[_exe("A", {"B": "1"}), _exe("B")],
        fetch=rec.fetch,
        install=functools.partial(install_payloads, install_root=tmp_path),
    )

    install_package(ctx, "A")

    assert [Path(argv[0]).name for argv in fake_subprocess.argvs] == ["b.exe", "a.exe"]
    assert ctx.installed_order == ["B", "A"]
