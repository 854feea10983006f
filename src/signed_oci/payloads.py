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

"""Value objects returned by the fetch functions.

All of these are built fresh for every fetch and never mutated afterwards.
The JSON forms of `RekorBundle`, `AttestationPayload` and
`LocalSignedPayload` match the files and blobs produced by other Sigstore
tooling, so they must round-trip without changing key names.
"""

from __future__ import annotations

import base64
import binascii
from dataclasses import dataclass
from dataclasses import field
import json
import sys
from typing import Any

from cryptography import x509
from cryptography.hazmat.primitives import serialization


if sys.version_info >= (3, 11):
    from typing import Self
else:
    from typing_extensions import Self


@dataclass(frozen=True)
class RekorPayload:
    """The transparency log entry embedded in a Rekor bundle."""

    body: Any
    integrated_time: int
    log_index: int
    log_id: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "body": self.body,
            "integratedTime": self.integrated_time,
            "logIndex": self.log_index,
            "logID": self.log_id,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Self:
        return cls(
            body=data.get("body"),
            integrated_time=int(data.get("integratedTime", 0)),
            log_index=int(data.get("logIndex", 0)),
            log_id=data.get("logID", ""),
        )


@dataclass(frozen=True)
class RekorBundle:
    """Offline proof of inclusion in the Rekor transparency log.

    Attributes:
        signed_entry_timestamp: The raw signed entry timestamp. Serialized as
          standard base64.
        payload: The log entry the timestamp was issued for.
    """

    signed_entry_timestamp: bytes
    payload: RekorPayload

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-serializable dictionary."""
        return {
            "SignedEntryTimestamp": base64.b64encode(
                self.signed_entry_timestamp
            ).decode(),
            "Payload": self.payload.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Self:
        """Build a bundle from its decoded JSON form.

        Raises:
            ValueError: The document does not have the shape of a bundle.
        """
        if not isinstance(data, dict):
            raise ValueError(f"Rekor bundle must be an object, got {data!r}")
        payload = data.get("Payload", {})
        if not isinstance(payload, dict):
            raise ValueError("Rekor bundle payload must be an object")
        try:
            timestamp = base64.b64decode(
                data.get("SignedEntryTimestamp", ""), validate=True
            )
        except binascii.Error as err:
            raise ValueError(f"Invalid SignedEntryTimestamp: {err}") from err
        return cls(
            signed_entry_timestamp=timestamp,
            payload=RekorPayload.from_dict(payload),
        )


@dataclass(frozen=True)
class SignedPayload:
    """One signature attached to an image.

    Attributes:
        payload: The signed payload bytes (usually a simple-signing JSON).
        base64_signature: The signature over `payload`, base64 encoded.
        cert: The signing certificate, if the signature carries one.
        chain: The certificate chain of `cert`, leaf-most first.
        bundle: The Rekor bundle, if the signature was logged.
    """

    payload: bytes
    base64_signature: str
    cert: x509.Certificate | None = None
    chain: list[x509.Certificate] = field(default_factory=list)
    bundle: RekorBundle | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-serializable dictionary."""
        result: dict[str, Any] = {
            "base64Signature": self.base64_signature,
            "payload": base64.b64encode(self.payload).decode(),
        }
        if self.cert is not None:
            result["cert"] = _cert_to_pem(self.cert)
        if self.chain:
            result["chain"] = [_cert_to_pem(c) for c in self.chain]
        if self.bundle is not None:
            result["rekorBundle"] = self.bundle.to_dict()
        return result


@dataclass(frozen=True)
class AttestationSignature:
    keyid: str
    sig: str


@dataclass(frozen=True)
class AttestationPayload:
    """A DSSE envelope carrying an in-toto attestation.

    Attributes:
        payload_type: The DSSE payload type.
        payload: The base64 encoded statement.
        signatures: The envelope signatures, in envelope order.
    """

    payload_type: str
    payload: str
    signatures: list[AttestationSignature] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-serializable dictionary."""
        return {
            "payloadType": self.payload_type,
            "payload": self.payload,
            "signatures": [
                {"keyid": s.keyid, "sig": s.sig} for s in self.signatures
            ],
        }

    @classmethod
    def from_json(cls, content: bytes) -> Self:
        """Decode an envelope from its JSON bytes.

        Missing fields decode as empty values and unknown fields are ignored.

        Raises:
            ValueError: The bytes are not a JSON object of the right shape.
        """
        data = json.loads(content)
        if not isinstance(data, dict):
            raise ValueError(
                f"attestation must be a JSON object, got {type(data).__name__}"
            )
        signatures = data.get("signatures") or []
        if not isinstance(signatures, list) or not all(
            isinstance(s, dict) for s in signatures
        ):
            raise ValueError("attestation signatures must be a list of objects")
        return cls(
            payload_type=_string_field(data, "payloadType", "attestation"),
            payload=_string_field(data, "payload", "attestation"),
            signatures=[
                AttestationSignature(
                    keyid=_string_field(s, "keyid", "attestation signature"),
                    sig=_string_field(s, "sig", "attestation signature"),
                )
                for s in signatures
            ],
        )


@dataclass(frozen=True)
class AttachmentPayload:
    """The raw bytes and declared media type of a named attachment."""

    payload: bytes
    media_type: str


@dataclass(frozen=True)
class LocalSignedPayload:
    """A signed payload exported to disk.

    Attributes:
        base64_signature: The signature, base64 encoded.
        cert: The PEM-encoded signing certificate, or empty.
        bundle: The Rekor bundle, if any.
    """

    base64_signature: str
    cert: str = ""
    bundle: RekorBundle | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-serializable dictionary."""
        result: dict[str, Any] = {"base64Signature": self.base64_signature}
        if self.cert:
            result["cert"] = self.cert
        if self.bundle is not None:
            result["rekorBundle"] = self.bundle.to_dict()
        return result

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @classmethod
    def from_json(cls, content: bytes | str) -> Self:
        """Decode a local signed payload.

        Raises:
            ValueError: The content is not a JSON object of the right shape.
        """
        data = json.loads(content)
        if not isinstance(data, dict):
            raise ValueError(
                "signed payload must be a JSON object, "
                f"got {type(data).__name__}"
            )
        bundle = data.get("rekorBundle")
        if bundle is not None:
            bundle = RekorBundle.from_dict(bundle)
        return cls(
            base64_signature=_string_field(
                data, "base64Signature", "signed payload"
            ),
            cert=_string_field(data, "cert", "signed payload"),
            bundle=bundle,
        )


def _string_field(data: dict[str, Any], key: str, what: str) -> str:
    """Get an optional string field, empty when missing or null."""
    value = data.get(key)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ValueError(
            f"{what} field {key!r} must be a string, "
            f"got {type(value).__name__}"
        )
    return value


def _cert_to_pem(cert: x509.Certificate) -> str:
    return cert.public_bytes(serialization.Encoding.PEM).decode()
