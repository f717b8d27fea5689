from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Sequence

from .errors import ResolutionFailure
from .lib.manifests import DependencyFilter, ManifestPackage

logger = logging.getLogger(__name__)


NEUTRAL = "neutral"


@dataclass(frozen=True)
class TargetEnvironment:
    chip: str = "x64"
    language: str = "en-us"


def _language_ok(pkg: ManifestPackage, target: TargetEnvironment) -> bool:
    lang = pkg.language
    return not lang or lang.lower() == NEUTRAL or lang.lower() == target.language.lower()


def _chip_ok(pkg: ManifestPackage, wanted: str, target: TargetEnvironment) -> bool:
    chip = pkg.chip.lower()
    if chip == NEUTRAL:
        return True
    if not wanted:
        return not chip or chip == target.chip.lower()
    return chip == wanted.lower()


def select_package(
    packages: Sequence[ManifestPackage],
    package_id: str,
    dep_filter: Optional[DependencyFilter] = None,
    *,
    target: Optional[TargetEnvironment] = None,
) -> Optional[ManifestPackage]:
    """Return the first package definition applicable to ``target``.

    Returns None when nothing applies but that is acceptable: the edge
    ignores applicability failures, or every candidate was for another
    language. Raises ResolutionFailure otherwise.
    """

    target = target or TargetEnvironment()
    wanted_chip = dep_filter.chip if dep_filter is not None else ""
    wanted_id = package_id.lower()

    any_wrong_language = False
    all_wrong_language = True

    logger.info("Searching the manifest for package: %s", package_id)
    for pkg in packages:
        if pkg.id.lower() != wanted_id:
            continue
        if not _language_ok(pkg, target):
            any_wrong_language = True
            logger.info("Skipping %s version %s as it has language: %s", pkg.type, pkg.version, pkg.language)
            continue
        all_wrong_language = False
        if not _chip_ok(pkg, wanted_chip, target):
            if wanted_chip:
                logger.info(
                    "Skipping %s version %s as it has chip type %s and %s was expected.",
                    pkg.type,
                    pkg.version,
                    pkg.chip,
                    wanted_chip,
                )
            else:
                logger.info("Skipping %s version %s as it has chip type %s", pkg.type, pkg.version, pkg.chip)
            continue
        logger.info("Found %s version %s", pkg.type, pkg.version)
        return pkg

    if dep_filter is not None and dep_filter.ignores_applicability_failures:
        return None
    if any_wrong_language and all_wrong_language:
        return None
    raise ResolutionFailure(f"Could not find package in the manifest: {package_id}")
