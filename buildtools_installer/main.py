from __future__ import annotations

import argparse
import functools
import logging
import sys
from typing import Any, Dict, Optional

import httpx

from .config import InstallerConfig, load_installer_config
from .dispatch import install_payloads
from .errors import InstallerError, ResolutionFailure
from .lib.manifests import Manifest, find_channel_item, parse_channel, parse_manifest
from .lib.net import download_payload, fetch_bytes, http_client, verify_digest
from .lib.signature import POLICY_REQUIRE, check_manifest, load_trust_anchors
from .logging_utils import DEFAULT_LOG_PATH, configure_logging
from .resolver import InstallContext, install_all

logger = logging.getLogger(__name__)


DEFAULT_CONFIG_PATH = "buildtools-installer.yaml"


def load_manifest(cfg: InstallerConfig, *, client: httpx.Client) -> Manifest:
    channel = parse_channel(fetch_bytes(cfg.channel_url, client=client))
    item = find_channel_item(channel.items, cfg.manifest_item_id)
    if not item.payloads or not item.payloads[0].url:
        raise ResolutionFailure(f"Channel item {item.id} has no manifest payload URL")

    payload = item.payloads[0]
    data = fetch_bytes(payload.url, client=client)
    if payload.sha256:
        verify_digest(data, payload.sha256, what=f"manifest {payload.file_name}")
    anchors = load_trust_anchors(cfg.trust_anchors) if cfg.manifest_signature == POLICY_REQUIRE else []
    check_manifest(data, policy=cfg.manifest_signature, trust_anchors=anchors)
    return parse_manifest(data)


def build_context(cfg: InstallerConfig, manifest: Manifest, *, client: httpx.Client) -> InstallContext:
    return InstallContext(
        packages=manifest.packages,
        fetch=functools.partial(download_payload, client=client, verify_size=cfg.verify_payload_size),
        install=functools.partial(
            install_payloads,
            install_root=cfg.install_root,
            vsix_prefix=cfg.vsix_prefix,
            dry_run=cfg.dry_run,
        ),
        consumer=cfg.consumer,
        target=cfg.target,
        installed=set(cfg.preinstalled),
    )


def run(cfg: InstallerConfig, *, client: Optional[httpx.Client] = None) -> Dict[str, Any]:
    """Resolve and install ``cfg.packages``; returns a run summary."""

    cfg.validate()
    logger.info(
        "Installing %s (consumer=%s chip=%s language=%s dry_run=%s)",
        ", ".join(cfg.packages),
        cfg.consumer,
        cfg.target.chip,
        cfg.target.language,
        cfg.dry_run,
    )

    try:
        with http_client(client, timeout_s=cfg.http_timeout) as c:
            manifest = load_manifest(cfg, client=c)
            ctx = build_context(cfg, manifest, client=c)
            install_all(ctx, cfg.packages)
    except Exception:
        logger.exception("Installer failed")
        raise

    logger.info("Done!")
    return {"installed": list(ctx.installed_order), "skipped": list(ctx.skipped)}


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="buildtools-installer")
    p.add_argument("--config", default=DEFAULT_CONFIG_PATH, help="Path to installer config (yaml)")
    p.add_argument("--log", default=DEFAULT_LOG_PATH, help="Path to installer log")
    p.add_argument(
        "--package",
        action="append",
        default=None,
        help="Root package id to install (repeatable; replaces the configured list)",
    )
    p.add_argument("--channel-url", default=None, help="Channel URL to resolve the manifest from")
    p.add_argument("--install-root", default=None, help="Destination for VSIX contents")
    p.add_argument("--require-signature", action="store_true", help="Refuse unsigned or untrusted manifests")
    p.add_argument("--dry-run", action="store_true", help="Download and verify, but do not run installers")
    return p


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    configure_logging(log_path=args.log)

    try:
        cfg = load_installer_config(args.config, required=args.config != DEFAULT_CONFIG_PATH)
        cfg = cfg.with_overrides(
            packages=args.package,
            channel_url=args.channel_url,
            install_root=args.install_root,
            manifest_signature=POLICY_REQUIRE if args.require_signature else None,
            dry_run=True if args.dry_run else None,
        )
        run(cfg)
    except (InstallerError, FileNotFoundError) as e:
        print(f"buildtools-installer: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
