# Copyright 2025 The Sigstore Authors
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#      http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""Shared fixtures: an in-memory registry and test certificates."""

import datetime
import json
import time

from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID
import pytest
import requests

from signed_oci._oci import attachment
from signed_oci._oci import registry


class MockOrasClient(registry.OrasClient):
    """An in-memory registry.

    Manifests are keyed by the string form of their reference, blobs by
    digest.
    """

    @staticmethod
    def http_error(status_code: int) -> requests.HTTPError:
        response = requests.Response()
        response.status_code = status_code
        return requests.HTTPError(f"{status_code} error", response=response)

    def __init__(self):
        self.manifests: dict[str, dict] = {}
        self.blobs: dict[str, bytes] = {}
        self.unavailable_blobs: set[str] = set()
        self.failing_manifests: dict[str, Exception] = {}
        self.blob_delays: dict[str, float] = {}
        self.manifest_requests: list[str] = []

    def get_manifest(self, image_ref):
        key = str(image_ref)
        self.manifest_requests.append(key)
        if key in self.failing_manifests:
            raise self.failing_manifests[key]
        if key not in self.manifests:
            raise self.http_error(404)
        manifest = self.manifests[key]
        content = json.dumps(manifest, separators=(",", ":")).encode()
        return manifest, registry.compute_digest(content), manifest.get(
            "mediaType", ""
        )

    def pull_blob(self, image_ref, digest):
        if digest in self.blob_delays:
            time.sleep(self.blob_delays[digest])
        if digest in self.unavailable_blobs:
            raise self.http_error(500)
        if digest not in self.blobs:
            raise self.http_error(404)
        return self.blobs[digest]

    def push_blob(self, content: bytes) -> str:
        digest = registry.compute_digest(content)
        self.blobs[digest] = content
        return digest

    def push_manifest(
        self, image_ref: registry.ImageReference, manifest: dict
    ) -> registry.ImageReference:
        """Store a manifest under its digest, and its tag if `image_ref` has
        one. Returns the digest reference."""
        content = json.dumps(manifest, separators=(",", ":")).encode()
        digest_ref = image_ref.with_digest(registry.compute_digest(content))
        self.manifests[str(digest_ref)] = manifest
        if image_ref.tag:
            self.manifests[str(image_ref)] = manifest
        return digest_ref

    def push_image(
        self, reference: str, config: bytes | None = None
    ) -> registry.ImageReference:
        image_ref = registry.ImageReference.parse(reference)
        if config is None:
            config = json.dumps({"image": reference}).encode()
        manifest = {
            "schemaVersion": 2,
            "mediaType": registry.OCI_MANIFEST_MEDIA_TYPE,
            "config": {
                "mediaType": "application/vnd.oci.image.config.v1+json",
                "digest": self.push_blob(config),
                "size": len(config),
            },
            "layers": [],
        }
        return self.push_manifest(image_ref, manifest)

    def push_index(
        self,
        reference: str,
        children: list[tuple[dict | None, registry.ImageReference]],
    ) -> registry.ImageReference:
        manifests = []
        for platform, child in children:
            descriptor = {
                "mediaType": registry.OCI_MANIFEST_MEDIA_TYPE,
                "digest": child.digest,
                "size": 100,
            }
            if platform is not None:
                descriptor["platform"] = platform
            manifests.append(descriptor)
        manifest = {
            "schemaVersion": 2,
            "mediaType": registry.OCI_INDEX_MEDIA_TYPE,
            "manifests": manifests,
        }
        return self.push_manifest(
            registry.ImageReference.parse(reference), manifest
        )

    def _push_artifact(self, image_ref, suffix, layers):
        tag = attachment.digest_to_tag(image_ref.digest, suffix)
        manifest = {
            "schemaVersion": 2,
            "mediaType": registry.OCI_MANIFEST_MEDIA_TYPE,
            "config": {
                "mediaType": "application/vnd.oci.image.config.v1+json",
                "digest": self.push_blob(b"{}"),
                "size": 2,
            },
            "layers": layers,
        }
        return self.push_manifest(image_ref.with_tag(tag), manifest)

    def push_signatures(
        self, image_ref: registry.ImageReference, signatures: list[dict]
    ) -> list[str]:
        """Attach signatures, each a dict with `payload`, `signature` and
        optional `cert`, `chain` and `bundle` entries."""
        layers = []
        for sig in signatures:
            annotations = {attachment.SIGNATURE_ANNOTATION: sig["signature"]}
            if sig.get("cert"):
                annotations[attachment.CERTIFICATE_ANNOTATION] = sig["cert"]
            if sig.get("chain"):
                annotations[attachment.CHAIN_ANNOTATION] = sig["chain"]
            if sig.get("bundle"):
                annotations[attachment.BUNDLE_ANNOTATION] = json.dumps(
                    sig["bundle"]
                )
            layers.append(
                {
                    "mediaType": (
                        "application/vnd.dev.cosign.simplesigning.v1+json"
                    ),
                    "digest": self.push_blob(sig["payload"]),
                    "size": len(sig["payload"]),
                    "annotations": annotations,
                }
            )
        self._push_artifact(image_ref, attachment.SIGNATURE_SUFFIX, layers)
        return [layer["digest"] for layer in layers]

    def push_attestations(
        self, image_ref: registry.ImageReference, envelopes: list[bytes]
    ) -> list[str]:
        layers = [
            {
                "mediaType": "application/vnd.dsse.envelope.v1+json",
                "digest": self.push_blob(envelope),
                "size": len(envelope),
            }
            for envelope in envelopes
        ]
        self._push_artifact(image_ref, attachment.ATTESTATION_SUFFIX, layers)
        return [layer["digest"] for layer in layers]

    def push_attachment(
        self,
        image_ref: registry.ImageReference,
        name: str,
        content: bytes,
        media_type: str,
    ) -> str:
        layer = {
            "mediaType": media_type,
            "digest": self.push_blob(content),
            "size": len(content),
        }
        self._push_artifact(image_ref, name, [layer])
        return layer["digest"]


@pytest.fixture
def client() -> MockOrasClient:
    return MockOrasClient()


def _make_certificate(common_name: str, issuer_key=None, issuer_name=None):
    key = ec.generate_private_key(ec.SECP256R1())
    subject = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])
    now = datetime.datetime.now(datetime.timezone.utc)
    cert = (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(issuer_name or subject)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now)
        .not_valid_after(now + datetime.timedelta(days=1))
        .sign(issuer_key or key, hashes.SHA256())
    )
    return cert, key


@pytest.fixture(scope="session")
def certificates() -> dict[str, str]:
    """A root and a leaf certificate signed by it, PEM-encoded."""
    root, root_key = _make_certificate("test-root")
    leaf, _ = _make_certificate(
        "test-leaf", issuer_key=root_key, issuer_name=root.subject
    )

    def to_pem(cert):
        return cert.public_bytes(serialization.Encoding.PEM).decode()

    return {"root": to_pem(root), "leaf": to_pem(leaf)}


@pytest.fixture
def rekor_bundle() -> dict:
    return {
        "SignedEntryTimestamp": "MEUCIQDx9u1lJp8BQHsO+Q6n0nRAzvPjv5Xo6+0g",
        "Payload": {
            "body": "eyJhcGlWZXJzaW9uIjoiMC4wLjEifQ==",
            "integratedTime": 1650000000,
            "logIndex": 1234567,
            "logID": (
                "c0d23d6ad406973f9559f3ba2d1ca01f"
                "84147d8ffc5b8445c224f98b9591801d"
            ),
        },
    }
