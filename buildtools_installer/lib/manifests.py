from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

from ..errors import DecodeFailure, ResolutionFailure

logger = logging.getLogger(__name__)


IGNORE_APPLICABILITY_FAILURES = "IgnoreApplicabilityFailures"


def _mapping(value: Any, what: str) -> Dict[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise DecodeFailure(f"{what} must be an object, got {type(value).__name__}")
    return value


def _list(value: Any, what: str) -> List[Any]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise DecodeFailure(f"{what} must be a list, got {type(value).__name__}")
    return value


def _str(value: Any, what: str) -> str:
    if value is None:
        return ""
    if not isinstance(value, str):
        raise DecodeFailure(f"{what} must be a string, got {type(value).__name__}")
    return value


def _load_json(data: bytes, what: str) -> Dict[str, Any]:
    try:
        obj = json.loads(data)
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise DecodeFailure(f"{what} is not valid JSON: {e}") from e
    return _mapping(obj, what)


@dataclass(frozen=True)
class ItemPayload:
    file_name: str
    sha256: str
    size: Optional[int] = None
    url: str = ""

    @classmethod
    def from_json(cls, obj: Any) -> "ItemPayload":
        d = _mapping(obj, "payload")
        size = d.get("size")
        if size is not None and (isinstance(size, bool) or not isinstance(size, int)):
            raise DecodeFailure(f"payload size must be an integer, got {size!r}")
        return cls(
            file_name=_str(d.get("fileName"), "payload.fileName"),
            sha256=_str(d.get("sha256"), "payload.sha256"),
            size=size,
            url=_str(d.get("url"), "payload.url"),
        )


@dataclass(frozen=True)
class ChannelItem:
    id: str
    version: str = ""
    type: str = ""
    payloads: Tuple[ItemPayload, ...] = ()

    @classmethod
    def from_json(cls, obj: Any) -> "ChannelItem":
        d = _mapping(obj, "channel item")
        return cls(
            id=_str(d.get("id"), "channelItem.id"),
            version=_str(d.get("version"), "channelItem.version"),
            type=_str(d.get("type"), "channelItem.type"),
            payloads=tuple(ItemPayload.from_json(p) for p in _list(d.get("payloads"), "channelItem.payloads")),
        )


@dataclass(frozen=True)
class DependencyFilter:
    """Constraint attached to a dependency edge.

    Manifests encode it either as a bare version string or as an object
    with version/type/chip/when/behaviors keys.
    """

    version: str = ""
    type: str = ""
    chip: str = ""
    when: Tuple[str, ...] = ()
    behaviors: str = ""

    @classmethod
    def from_json(cls, value: Any) -> "DependencyFilter":
        if isinstance(value, str):
            return cls(version=value)
        if not isinstance(value, dict):
            raise DecodeFailure(f"dependency must be a string or an object, got {type(value).__name__}")
        when = tuple(_str(w, "dependency.when[]") for w in _list(value.get("when"), "dependency.when"))
        return cls(
            version=_str(value.get("version"), "dependency.version"),
            type=_str(value.get("type"), "dependency.type"),
            chip=_str(value.get("chip"), "dependency.chip"),
            when=when,
            behaviors=_str(value.get("behaviors"), "dependency.behaviors"),
        )

    @property
    def is_optional(self) -> bool:
        # Optional/Recommended edges are never followed.
        return bool(self.type)

    @property
    def ignores_applicability_failures(self) -> bool:
        return IGNORE_APPLICABILITY_FAILURES.lower() in self.behaviors.lower()

    def applies_to(self, consumer: str) -> bool:
        return not self.when or consumer in self.when


@dataclass(frozen=True)
class InstallParams:
    file_name: str = ""
    parameters: str = ""

    @classmethod
    def from_json(cls, obj: Any) -> "InstallParams":
        d = _mapping(obj, "installParams")
        return cls(
            file_name=_str(d.get("fileName"), "installParams.fileName"),
            parameters=_str(d.get("parameters"), "installParams.parameters"),
        )


@dataclass(frozen=True)
class ManifestPackage:
    id: str
    version: str = ""
    type: str = ""
    chip: str = ""
    language: str = ""
    dependencies: Dict[str, DependencyFilter] = field(default_factory=dict)
    payloads: Tuple[ItemPayload, ...] = ()
    install_params: InstallParams = field(default_factory=InstallParams)
    msi_properties: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_json(cls, obj: Any) -> "ManifestPackage":
        d = _mapping(obj, "package")
        pkg_id = _str(d.get("id"), "package.id")
        if not pkg_id:
            raise DecodeFailure("package without an id")
        deps = {
            str(k): DependencyFilter.from_json(v)
            for k, v in _mapping(d.get("dependencies"), f"{pkg_id}.dependencies").items()
        }
        props = {
            str(k): _str(v, f"{pkg_id}.msiProperties.{k}")
            for k, v in _mapping(d.get("msiProperties"), f"{pkg_id}.msiProperties").items()
        }
        return cls(
            id=pkg_id,
            version=_str(d.get("version"), "package.version"),
            type=_str(d.get("type"), "package.type"),
            chip=_str(d.get("chip"), "package.chip"),
            language=_str(d.get("language"), "package.language"),
            dependencies=deps,
            payloads=tuple(ItemPayload.from_json(p) for p in _list(d.get("payloads"), f"{pkg_id}.payloads")),
            install_params=InstallParams.from_json(d.get("installParams")),
            msi_properties=props,
        )


@dataclass(frozen=True)
class Channel:
    items: Tuple[ChannelItem, ...]


@dataclass(frozen=True)
class Manifest:
    packages: Tuple[ManifestPackage, ...]


def parse_channel(data: bytes) -> Channel:
    logger.info("Decoding channel JSON data...")
    obj = _load_json(data, "channel")
    items = tuple(ChannelItem.from_json(i) for i in _list(obj.get("channelItems"), "channelItems"))
    return Channel(items=items)


def parse_manifest(data: bytes) -> Manifest:
    logger.info("Decoding manifest JSON data...")
    obj = _load_json(data, "manifest")
    packages = tuple(ManifestPackage.from_json(p) for p in _list(obj.get("packages"), "packages"))
    logger.info("Manifest lists %d packages", len(packages))
    return Manifest(packages=packages)


def find_channel_item(items: Sequence[ChannelItem], item_id: str) -> ChannelItem:
    logger.info("Searching for channel item: %s", item_id)
    for item in items:
        if item.id == item_id:
            logger.info("Found %s version %s", item.type, item.version)
            return item
    raise ResolutionFailure(f"Could not find channel item: {item_id}")
