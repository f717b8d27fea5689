"""Manifest authenticity checks.

Signed manifests are laid out as two JSON fragments:

- the first line is the signed body, an object left open with a trailing
  comma (``{"manifestVersion": ..., "packages": [...],``);
- the remaining lines hold ``"signature": {...}}``.

Closing the first line with ``}`` yields the exact bytes that were
digested and signed. The signature block carries ``signInfo`` (digest
method and base64 digest value), a base64 ``signatureValue`` and the
signing certificate under ``keyInfo.x509Data``.

Verification is RSA PKCS#1 v1.5 over the closed body using the key of the
first ``x509Data`` certificate (``cryptography``). The remaining entries are
intermediates: the signer must chain through them to one of the trust
anchors. The Microsoft code signing roots ship in ``data/microsoft-roots.pem``
and are the default anchors. Validity periods are not checked; signing
certificates of published manifests expire long before the manifests do.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Sequence

from cryptography import x509
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import padding, rsa

from ..errors import ConfigurationFailure, IntegrityFailure

logger = logging.getLogger(__name__)


POLICY_SKIP = "skip"
POLICY_REQUIRE = "require"
POLICIES = (POLICY_SKIP, POLICY_REQUIRE)

DEFAULT_TRUST_ANCHORS = Path(__file__).resolve().parents[1] / "data" / "microsoft-roots.pem"


@dataclass(frozen=True)
class SignedManifest:
    body: bytes
    signature_method: str
    digest_method: str
    digest_value: bytes
    signature_value: bytes
    certificates_der: tuple[bytes, ...]


def _b64(value: Any, what: str) -> bytes:
    if not isinstance(value, str) or not value:
        raise IntegrityFailure(f"signature field {what} missing")
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError) as e:
        raise IntegrityFailure(f"signature field {what} is not base64") from e


def split_signed_manifest(data: bytes) -> SignedManifest:
    newline = data.find(b"\n")
    if newline < 1:
        raise IntegrityFailure("unexpected signed manifest format")
    line = data[:newline]
    eol = b"\n"
    if line.endswith(b"\r"):
        line = line[:-1]
        eol = b"\r\n"
    if not line.endswith(b","):
        raise IntegrityFailure("unexpected signed manifest format")

    body = line[:-1] + b"}" + eol
    try:
        sig_doc = json.loads(b"{" + data[newline + 1:])
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise IntegrityFailure(f"signature block is not valid JSON: {e}") from e

    sig: Dict[str, Any] = (sig_doc or {}).get("signature") or {}
    sign_info = sig.get("signInfo") or {}
    key_info = sig.get("keyInfo") or {}
    x509_data = key_info.get("x509Data") or []
    if not isinstance(x509_data, list) or not x509_data:
        raise IntegrityFailure("signature block carries no certificate")

    return SignedManifest(
        body=body,
        signature_method=str(sign_info.get("signatureMethod") or ""),
        digest_method=str(sign_info.get("digestMethod") or ""),
        digest_value=_b64(sign_info.get("digestValue"), "signInfo.digestValue"),
        signature_value=_b64(sig.get("signatureValue"), "signatureValue"),
        certificates_der=tuple(_b64(c, f"keyInfo.x509Data[{i}]") for i, c in enumerate(x509_data)),
    )


def _hash_name(method: str) -> str:
    m = method.lower()
    if "sha256" in m:
        return "sha256"
    if "sha1" in m:
        return "sha1"
    raise IntegrityFailure(f"unsupported signature algorithm: {method or '<empty>'}")


def load_trust_anchors(path: str | Path) -> list[x509.Certificate]:
    p = Path(path)
    if not p.exists():
        raise ConfigurationFailure(f"trust anchor bundle not found: {p}")
    try:
        anchors = x509.load_pem_x509_certificates(p.read_bytes())
    except ValueError as e:
        raise ConfigurationFailure(f"trust anchor bundle unreadable: {p}: {e}") from e
    logger.info("Loaded %d trust anchors from %s", len(anchors), str(p))
    return anchors


def _issuer_among(cert: x509.Certificate, candidates: Sequence[x509.Certificate]) -> Optional[x509.Certificate]:
    for candidate in candidates:
        try:
            cert.verify_directly_issued_by(candidate)
            return candidate
        except (ValueError, TypeError, InvalidSignature):
            continue
    return None


def build_chain(
    cert: x509.Certificate,
    intermediates: Sequence[x509.Certificate],
    anchors: Sequence[x509.Certificate],
) -> list[x509.Certificate]:
    """Return ``[cert, *intermediates used, anchor]`` or raise IntegrityFailure.

    Each intermediate is used at most once, so a looping bundle terminates.
    """

    chain = [cert]
    pool = list(intermediates)
    current = cert
    while True:
        if current in anchors:
            return chain
        anchor = _issuer_among(current, anchors)
        if anchor is not None:
            chain.append(anchor)
            return chain
        issuer = _issuer_among(current, pool)
        if issuer is None:
            raise IntegrityFailure(
                f"manifest signer is not trusted: no chain from {cert.subject.rfc4514_string()} "
                f"(stuck at issuer {current.issuer.rfc4514_string()})"
            )
        pool.remove(issuer)
        chain.append(issuer)
        current = issuer


def verify_manifest_signature(
    data: bytes,
    *,
    trust_anchors: Sequence[x509.Certificate],
) -> x509.Certificate:
    """Verify a signed manifest against ``trust_anchors``; returns the signing certificate."""

    if not trust_anchors:
        raise ConfigurationFailure("manifest signature verification needs at least one trust anchor")

    signed = split_signed_manifest(data)

    digest_name = _hash_name(signed.digest_method)
    actual = hashlib.new(digest_name, signed.body).digest()
    if actual != signed.digest_value:
        raise IntegrityFailure(
            f"manifest digest mismatch ({digest_name}): expected {signed.digest_value.hex()} actual {actual.hex()}"
        )

    try:
        certs = [x509.load_der_x509_certificate(der) for der in signed.certificates_der]
    except ValueError as e:
        raise IntegrityFailure(f"signing certificate unreadable: {e}") from e
    cert, intermediates = certs[0], certs[1:]

    key = cert.public_key()
    if not isinstance(key, rsa.RSAPublicKey):
        raise IntegrityFailure("signing certificate does not carry an RSA key")

    algorithm = hashes.SHA256() if _hash_name(signed.signature_method) == "sha256" else hashes.SHA1()
    try:
        key.verify(signed.signature_value, signed.body, padding.PKCS1v15(), algorithm)
    except InvalidSignature as e:
        raise IntegrityFailure("manifest signature does not verify") from e

    chain = build_chain(cert, intermediates, trust_anchors)
    logger.info(
        "Manifest signature verified (signer=%s, anchor=%s)",
        cert.subject.rfc4514_string(),
        chain[-1].subject.rfc4514_string(),
    )
    return cert


def check_manifest(
    data: bytes,
    *,
    policy: str = POLICY_SKIP,
    trust_anchors: Sequence[x509.Certificate] = (),
) -> Optional[x509.Certificate]:
    if policy == POLICY_SKIP:
        logger.warning("Manifest signature NOT verified (manifest_signature=skip)")
        return None
    if policy == POLICY_REQUIRE:
        return verify_manifest_signature(data, trust_anchors=trust_anchors)
    raise ConfigurationFailure(f"unknown manifest_signature policy: {policy!r} (expected one of {POLICIES})")
