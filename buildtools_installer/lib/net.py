from __future__ import annotations

import contextlib
import hashlib
import logging
from pathlib import Path
from typing import Iterator, Optional

import httpx

from ..errors import ConfigurationFailure, IntegrityFailure, TransportFailure
from .manifests import ItemPayload

logger = logging.getLogger(__name__)


DEFAULT_TIMEOUT_S = 60.0
CHUNK_SIZE = 1 << 16


@contextlib.contextmanager
def http_client(
    client: Optional[httpx.Client] = None,
    *,
    timeout_s: float = DEFAULT_TIMEOUT_S,
) -> Iterator[httpx.Client]:
    """Yield ``client`` as-is, or a fresh one that is closed afterwards."""

    if client is not None:
        yield client
        return
    with httpx.Client(timeout=httpx.Timeout(timeout_s), follow_redirects=True) as c:
        yield c


def fetch_bytes(url: str, *, client: Optional[httpx.Client] = None) -> bytes:
    logger.info("Requesting URL: %s", url)
    try:
        with http_client(client) as c:
            resp = c.get(url)
            resp.raise_for_status()
            return resp.content
    except httpx.HTTPStatusError as e:
        raise TransportFailure(f"HTTP {e.response.status_code} for {url}") from e
    except httpx.HTTPError as e:
        raise TransportFailure(f"Request failed for {url}: {e}") from e


def verify_digest(data: bytes, expected: str, *, what: str) -> str:
    actual = hashlib.sha256(data).hexdigest()
    if actual.lower() != expected.strip().lower():
        raise IntegrityFailure(f"Hash mismatch for {what}:\n  expected {expected}\n  actual {actual}")
    return actual


def _safe_file_name(name: str) -> str:
    if not name or name in {".", ".."} or "/" in name or "\\" in name:
        raise ConfigurationFailure(f"Refusing payload file name: {name!r}")
    return name


def download_payload(
    dest_dir: str | Path,
    payload: ItemPayload,
    *,
    client: Optional[httpx.Client] = None,
    verify_size: bool = True,
) -> Path:
    """Stream a payload to ``dest_dir`` and verify it in the same pass.

    SHA-256 is computed while writing. A digest mismatch (or a size mismatch
    when the manifest declares one) removes the file and raises
    IntegrityFailure.
    """

    dest = Path(dest_dir) / _safe_file_name(payload.file_name)
    logger.info("Downloading file %s from URL: %s", payload.file_name, payload.url)
    if not payload.url:
        raise ConfigurationFailure(f"Payload {payload.file_name} has no URL")

    sha = hashlib.sha256()
    written = 0
    try:
        with http_client(client) as c:
            with c.stream("GET", payload.url) as resp:
                resp.raise_for_status()
                with dest.open("wb") as f:
                    for chunk in resp.iter_bytes(CHUNK_SIZE):
                        sha.update(chunk)
                        f.write(chunk)
                        written += len(chunk)
    except httpx.HTTPStatusError as e:
        dest.unlink(missing_ok=True)
        raise TransportFailure(f"HTTP {e.response.status_code} for {payload.url}") from e
    except httpx.HTTPError as e:
        dest.unlink(missing_ok=True)
        raise TransportFailure(f"Download failed for {payload.url}: {e}") from e
    except OSError as e:
        with contextlib.suppress(OSError):
            dest.unlink(missing_ok=True)
        raise TransportFailure(f"Could not write {dest}: {e}") from e

    actual = sha.hexdigest()
    if actual.lower() != payload.sha256.strip().lower():
        dest.unlink(missing_ok=True)
        raise IntegrityFailure(
            f"Hash mismatch for {payload.file_name}:\n  expected {payload.sha256}\n  actual {actual}"
        )

    if verify_size and payload.size and payload.size > 0 and written != payload.size:
        dest.unlink(missing_ok=True)
        raise IntegrityFailure(
            f"Size mismatch for {payload.file_name}: expected {payload.size} bytes, got {written}"
        )

    logger.debug("Verified %s (%d bytes, sha256=%s)", payload.file_name, written, actual)
    return dest
