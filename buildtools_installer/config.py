from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from .applicability import TargetEnvironment
from .dispatch import DEFAULT_INSTALL_ROOT
from .errors import ConfigurationFailure
from .lib.archive import VSIX_CONTENT_PREFIX
from .lib.signature import DEFAULT_TRUST_ANCHORS, POLICIES, POLICY_SKIP
from .resolver import DEFAULT_CONSUMER, PREINSTALLED

DEFAULT_CHANNEL_URL = "https://aka.ms/vs/15/release/channel"
DEFAULT_MANIFEST_ITEM = "Microsoft.VisualStudio.Manifests.VisualStudio"
DEFAULT_PACKAGES = (
    "Microsoft.VisualStudio.Product.BuildTools",
    "Microsoft.VisualStudio.Workload.VCTools",
    "Microsoft.VisualStudio.Component.VC.140",
    "Microsoft.VisualStudio.Component.WinXP",
)


@dataclass(frozen=True)
class InstallerConfig:
    raw: Dict[str, Any]

    @property
    def channel_url(self) -> str:
        return str(self.raw.get("channel_url") or DEFAULT_CHANNEL_URL)

    @property
    def manifest_item_id(self) -> str:
        return str(self.raw.get("manifest_item_id") or DEFAULT_MANIFEST_ITEM)

    @property
    def packages(self) -> List[str]:
        return [str(p) for p in (self.raw.get("packages") or DEFAULT_PACKAGES)]

    @property
    def consumer(self) -> str:
        return str(self.raw.get("consumer") or DEFAULT_CONSUMER)

    @property
    def preinstalled(self) -> List[str]:
        value = self.raw.get("preinstalled")
        if value is None:
            return list(PREINSTALLED)
        return [str(p) for p in value]

    def _target_raw(self) -> Dict[str, Any]:
        t = self.raw.get("target") or {}
        if not isinstance(t, dict):
            raise ConfigurationFailure(f"target must be a mapping with chip/language, got {t!r}")
        return t

    @property
    def target(self) -> TargetEnvironment:
        t = self._target_raw()
        return TargetEnvironment(
            chip=str(t.get("chip") or "x64"),
            language=str(t.get("language") or "en-us"),
        )

    @property
    def install_root(self) -> str:
        return str(self.raw.get("install_root") or DEFAULT_INSTALL_ROOT)

    @property
    def vsix_prefix(self) -> str:
        return str(self.raw.get("vsix_prefix") or VSIX_CONTENT_PREFIX)

    @property
    def manifest_signature(self) -> str:
        return str(self.raw.get("manifest_signature") or POLICY_SKIP).lower()

    @property
    def trust_anchors(self) -> str:
        return str(self.raw.get("trust_anchors") or DEFAULT_TRUST_ANCHORS)

    @property
    def verify_payload_size(self) -> bool:
        return bool(self.raw.get("verify_payload_size", True))

    @property
    def http_timeout(self) -> float:
        return float(self.raw.get("http_timeout") or 60)

    @property
    def dry_run(self) -> bool:
        return bool(self.raw.get("dry_run", False))

    def with_overrides(self, **overrides: Any) -> "InstallerConfig":
        raw = dict(self.raw)
        raw.update({k: v for k, v in overrides.items() if v is not None})
        return InstallerConfig(raw=raw)

    def validate(self) -> "InstallerConfig":
        if self.manifest_signature not in POLICIES:
            raise ConfigurationFailure(
                f"manifest_signature must be one of {', '.join(POLICIES)}, got {self.manifest_signature!r}"
            )
        if not isinstance(self.raw.get("packages") or [], list):
            raise ConfigurationFailure("packages must be a list")
        if not self.packages:
            raise ConfigurationFailure("No packages requested")
        self._target_raw()
        return self


def load_installer_config(path: Optional[str], *, required: bool = False) -> InstallerConfig:
    """Load YAML config; a missing optional file yields defaults."""

    if not path:
        return InstallerConfig(raw={})
    p = Path(path)
    if not p.exists():
        if required:
            raise FileNotFoundError(path)
        return InstallerConfig(raw={})

    if p.suffix.lower() not in {".yaml", ".yml"}:
        raise ConfigurationFailure("installer config must be YAML")

    try:
        raw = yaml.safe_load(p.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        raise ConfigurationFailure(f"{p}: invalid YAML: {e}") from e
    if not isinstance(raw, dict):
        raise ConfigurationFailure(f"{p} must contain a mapping/object")

    return InstallerConfig(raw=raw)
