from __future__ import annotations

import logging
import shutil
import tempfile
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, ContextManager, Iterable, Iterator, List, Optional, Protocol, Sequence, Set

from .applicability import TargetEnvironment, select_package
from .lib.manifests import DependencyFilter, ItemPayload, ManifestPackage

logger = logging.getLogger(__name__)


DEFAULT_CONSUMER = "Microsoft.VisualStudio.Product.BuildTools"

# Runtime redistributables assumed present on the target image.
PREINSTALLED = (
    "Microsoft.Net.4.6.1.FullRedist.NonThreshold",
    "Microsoft.Net.4.6.1.FullRedist.Threshold",
    "Microsoft.VisualCpp.Redist.14",
    "Microsoft.VisualCpp.Redist.14.Latest",
)


class Fetcher(Protocol):
    def __call__(self, dest_dir: Path, payload: ItemPayload) -> Path:
        ...


class Installer(Protocol):
    def __call__(self, work_dir: Path, package: ManifestPackage, payloads: Sequence[Path]) -> None:
        ...


@contextmanager
def scoped_temp_dir(label: str) -> Iterator[Path]:
    """Temporary directory removed on every exit path; removal errors are only logged."""

    path = Path(tempfile.mkdtemp(prefix="buildtools-"))
    try:
        yield path
    finally:
        try:
            shutil.rmtree(path)
        except OSError as e:
            logger.warning("Could not remove temp dir for %s: %s", label, e)


@dataclass
class InstallContext:
    """Everything one run needs; ``installed`` is the ledger of handled ids."""

    packages: Sequence[ManifestPackage]
    fetch: Fetcher
    install: Installer
    consumer: str = DEFAULT_CONSUMER
    target: TargetEnvironment = field(default_factory=TargetEnvironment)
    installed: Set[str] = field(default_factory=lambda: set(PREINSTALLED))
    temp_dir: Callable[[str], ContextManager[Path]] = scoped_temp_dir
    installed_order: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)


def install_package(ctx: InstallContext, package_id: str, dep_filter: Optional[DependencyFilter] = None) -> None:
    """Install ``package_id`` after its dependencies, at most once per context."""

    if package_id in ctx.installed:
        logger.info("Skipping already-installed package: %s", package_id)
        return
    # Mark before recursing: this is what breaks dependency cycles.
    ctx.installed.add(package_id)

    pkg = select_package(ctx.packages, package_id, dep_filter, target=ctx.target)
    if pkg is None:
        logger.info("Ignoring lack of applicable package: %s", package_id)
        ctx.skipped.append(package_id)
        return

    for dep_id, dep in pkg.dependencies.items():
        if dep.is_optional:
            logger.info("Skipping %s package: %s", dep.type, dep_id)
            continue
        if not dep.applies_to(ctx.consumer):
            logger.info("Skipping package not used by %s: %s", ctx.consumer, dep_id)
            continue
        install_package(ctx, dep_id, dep)

    if not pkg.payloads:
        logger.info("Package has no payloads: %s", package_id)
        return

    logger.info("Downloading payloads for package %s version %s", package_id, pkg.version)
    with ctx.temp_dir(package_id) as work_dir:
        files = [ctx.fetch(work_dir, p) for p in pkg.payloads]
        ctx.install(work_dir, pkg, files)
    ctx.installed_order.append(package_id)


def install_all(ctx: InstallContext, package_ids: Iterable[str]) -> None:
    for package_id in package_ids:
        install_package(ctx, package_id)
