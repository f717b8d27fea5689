from __future__ import annotations

import base64
import datetime
import hashlib
import json
import subprocess
import sys
from pathlib import Path

import httpx
import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa
from cryptography.x509.oid import NameOID

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from buildtools_installer.lib import command
from buildtools_installer.lib.manifests import ManifestPackage


def sha256_hex(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def make_package(pkg_id: str, **fields) -> ManifestPackage:
    """Build a package from manifest-style JSON keys."""
    obj = {"id": pkg_id}
    obj.update(fields)
    return ManifestPackage.from_json(obj)


def payload_json(file_name: str, data: bytes, url: str | None = None, **extra) -> dict:
    out = {
        "fileName": file_name,
        "sha256": sha256_hex(data),
        "url": url or f"https://download.example.com/{file_name}",
    }
    out.update(extra)
    return out


class FakeServer:
    """Serves canned bodies by URL and remembers what was requested."""

    def __init__(self, routes: dict[str, bytes] | None = None):
        self.routes = dict(routes or {})
        self.requested: list[str] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        self.requested.append(url)
        if url not in self.routes:
            return httpx.Response(404, text="not found")
        return httpx.Response(200, content=self.routes[url])

    def client(self) -> httpx.Client:
        return httpx.Client(transport=httpx.MockTransport(self.handler))


class FakeSubprocess:
    def __init__(self):
        self.calls: list[dict] = []
        self.returncodes: dict[str, int] = {}

    def __call__(self, argv, **kwargs):
        self.calls.append({"argv": list(argv), "cwd": kwargs.get("cwd")})
        code = self.returncodes.get(Path(argv[0]).name, 0)
        return subprocess.CompletedProcess(argv, code, stdout="", stderr="")

    @property
    def argvs(self) -> list[list[str]]:
        return [c["argv"] for c in self.calls]


@pytest.fixture
def fake_subprocess(monkeypatch: pytest.MonkeyPatch) -> FakeSubprocess:
    fake = FakeSubprocess()
    monkeypatch.setattr(command.subprocess, "run", fake)
    return fake


@pytest.fixture
def server() -> FakeServer:
    return FakeServer()


def make_cert(common_name: str, issuer=None, *, ca: bool = False):
    """RSA key and certificate; self-signed unless ``issuer`` is a (key, cert) pair."""
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])
    issuer_key, issuer_name = (key, name) if issuer is None else (issuer[0], issuer[1].subject)
    now = datetime.datetime.now(datetime.timezone.utc)
    cert = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(issuer_name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - datetime.timedelta(days=1))
        .not_valid_after(now + datetime.timedelta(days=1))
        .add_extension(x509.BasicConstraints(ca=ca, path_length=None), critical=True)
        .sign(issuer_key, hashes.SHA256())
    )
    return key, cert


def signed_manifest(key, chain, packages) -> bytes:
    """Manifest bytes in the signed layout, signed by ``key``; ``chain`` goes into x509Data."""
    first_line = json.dumps({"manifestVersion": "1.1", "packages": packages})[:-1].encode() + b","
    body = first_line[:-1] + b"}\r\n"
    sig_block = {
        "signature": {
            "signInfo": {
                "signatureMethod": "http://www.w3.org/2001/04/xmldsig-more#rsa-sha256",
                "digestMethod": "http://www.w3.org/2001/04/xmlenc#sha256",
                "digestValue": base64.b64encode(hashlib.sha256(body).digest()).decode(),
                "canonicalization": "json",
            },
            "signatureValue": base64.b64encode(key.sign(body, padding.PKCS1v15(), hashes.SHA256())).decode(),
            "keyInfo": {
                "x509Data": [base64.b64encode(c.public_bytes(serialization.Encoding.DER)).decode() for c in chain],
            },
        }
    }
    return first_line + b"\r\n" + json.dumps(sig_block)[1:].encode()


def write_pem(path: Path, *certs) -> Path:
    path.write_bytes(b"".join(c.public_bytes(serialization.Encoding.PEM) for c in certs))
    return path
