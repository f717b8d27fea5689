from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable, Sequence

from .errors import ConfigurationFailure
from .lib.archive import VSIX_CONTENT_PREFIX, extract_vsix
from .lib.command import CmdResult, run_cmd
from .lib.manifests import ManifestPackage

logger = logging.getLogger(__name__)


PAYLOAD_SENTINEL = "[Payload]"
DEFAULT_INSTALL_ROOT = "C:\\BuildTools"

# Windows Installer convention: success, restart required.
REBOOT_REQUIRED = 3010
OK_CODES = (0, REBOOT_REQUIRED)

Runner = Callable[..., CmdResult]


def replace_placeholders(source: str) -> str:
    source = source.replace("[CEIPConsent]", "/CEIPConsent")
    source = source.replace('"[LogFile]"', "con")
    if "[" not in source:
        return source
    raise ConfigurationFailure(f"placeholder present: {source}")


def split_parameters(arguments: str) -> list[str]:
    if '"' in arguments:
        raise ConfigurationFailure(f"arguments include quotes: {arguments}")
    return arguments.split()


def _exec(runner: Runner, work_dir: Path, argv: Sequence[str], *, dry_run: bool) -> CmdResult:
    logger.info("Executing program %s with arguments %s", argv[0], list(argv[1:]))
    res = runner(list(argv), cwd=str(work_dir), ok_codes=OK_CODES, dry_run=dry_run)
    if res.returncode == REBOOT_REQUIRED:
        logger.warning("Ignoring exit code %d: restart requested", REBOOT_REQUIRED)
    return res


def install_payloads(
    work_dir: str | Path,
    package: ManifestPackage,
    payloads: Sequence[Path],
    *,
    runner: Runner = run_cmd,
    install_root: str | Path = DEFAULT_INSTALL_ROOT,
    vsix_prefix: str = VSIX_CONTENT_PREFIX,
    dry_run: bool = False,
) -> None:
    """Install a package whose payloads are already downloaded and verified."""

    work = Path(work_dir)
    if not payloads:
        raise ConfigurationFailure(f"{package.id}: nothing to install")
    first = Path(payloads[0])
    kind = package.type.lower()

    if kind == "exe":
        if package.install_params.file_name != PAYLOAD_SENTINEL:
            raise ConfigurationFailure(
                f"{package.id}: unexpected EXE install filename {package.install_params.file_name!r}"
            )
        args = split_parameters(replace_placeholders(package.install_params.parameters))
        _exec(runner, work, [str(work / first.name), *args], dry_run=dry_run)
    elif kind == "msi":
        args = ["/i", first.name]
        for key, value in package.msi_properties.items():
            args.append(f"{key}={replace_placeholders(value)}")
        _exec(runner, work, ["msiexec.exe", *args], dry_run=dry_run)
    elif kind == "msu":
        _exec(runner, work, ["wusa.exe", first.name, "/quiet", "/norestart"], dry_run=dry_run)
    elif kind == "vsix":
        extract_vsix(work / first.name, install_root, prefix=vsix_prefix, dry_run=dry_run)
    else:
        raise ConfigurationFailure(f"Don't know how to install package type: {package.type}")
