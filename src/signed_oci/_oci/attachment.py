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

"""Handles for the artifacts attached to an image through tags.

Artifacts of the image with digest `sha256:abc...` are stored as the layers of
the manifest tagged `sha256-abc....<suffix>`:

- `.sig`: one layer per signature, the signature itself in layer annotations
- `.att`: one layer per attestation, each a DSSE envelope
- `.<name>`: a single-layer manifest for a named attachment (e.g. `.sbom`)

Handles are lazy: nothing is pulled until a method is called, and every
method can fail independently.
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING

from cryptography import x509
import requests

from signed_oci import payloads
from signed_oci._oci import registry as oci_registry


if TYPE_CHECKING:
    from signed_oci._oci.registry import ImageReference
    from signed_oci._oci.registry import OrasClient


logger = logging.getLogger(__name__)

SIGNATURE_SUFFIX = "sig"
ATTESTATION_SUFFIX = "att"

SIGNATURE_ANNOTATION = "dev.cosignproject.cosign/signature"
CERTIFICATE_ANNOTATION = "dev.sigstore.cosign/certificate"
CHAIN_ANNOTATION = "dev.sigstore.cosign/chain"
BUNDLE_ANNOTATION = "dev.sigstore.cosign/bundle"


def digest_to_tag(digest: str, suffix: str) -> str:
    """Get the tag holding the artifacts with `suffix` of an image digest."""
    return f"{digest.replace(':', '-')}.{suffix}"


def is_not_found(err: requests.HTTPError) -> bool:
    return err.response is not None and err.response.status_code == 404


class _Layer:
    """One layer of an artifact manifest."""

    def __init__(
        self,
        client: OrasClient,
        image_ref: ImageReference,
        descriptor: oci_registry.Descriptor,
    ):
        self._client = client
        self._image_ref = image_ref
        self._descriptor = descriptor

    @property
    def digest(self) -> str:
        return self._descriptor.digest

    @property
    def media_type(self) -> str:
        return self._descriptor.media_type

    def _annotation(self, key: str) -> str:
        return (self._descriptor.annotations or {}).get(key, "")

    def payload(self) -> bytes:
        return self._client.pull_blob(self._image_ref, self._descriptor.digest)


class Signature(_Layer):
    """A signature layer. Everything but the payload lives in annotations."""

    def base64_signature(self) -> str:
        sig = self._annotation(SIGNATURE_ANNOTATION)
        if not sig:
            raise ValueError(
                f"signature layer {self.digest} has no {SIGNATURE_ANNOTATION}"
            )
        return sig

    def cert(self) -> x509.Certificate | None:
        pem = self._annotation(CERTIFICATE_ANNOTATION)
        if not pem:
            return None
        return x509.load_pem_x509_certificate(pem.encode())

    def chain(self) -> list[x509.Certificate]:
        pem = self._annotation(CHAIN_ANNOTATION)
        if not pem:
            return []
        return x509.load_pem_x509_certificates(pem.encode())

    def bundle(self) -> payloads.RekorBundle | None:
        raw = self._annotation(BUNDLE_ANNOTATION)
        if not raw:
            return None
        return payloads.RekorBundle.from_dict(json.loads(raw))


class Attestation(_Layer):
    """An attestation layer, whose payload is a DSSE envelope."""


class File:
    """A named attachment: a manifest with a single file layer."""

    def __init__(
        self, client: OrasClient, image_ref: ImageReference, manifest: dict
    ):
        self._client = client
        self._image_ref = image_ref
        self._layers = manifest.get("layers") or []

    def _first_layer(self) -> dict:
        if not self._layers:
            raise ValueError(f"attachment {self._image_ref} has no layers")
        return self._layers[0]

    def payload(self) -> bytes:
        digest = self._first_layer().get("digest")
        if not digest:
            raise ValueError(
                f"attachment {self._image_ref} layer has no digest"
            )
        return self._client.pull_blob(self._image_ref, digest)

    def file_media_type(self) -> str:
        media_type = self._first_layer().get("mediaType")
        if not media_type:
            raise ValueError(
                f"attachment {self._image_ref} layer has no media type"
            )
        return media_type


class Collection:
    """The layers of the artifact manifest stored under one tag."""

    def __init__(
        self,
        client: OrasClient,
        image_ref: ImageReference,
        layer_type: type[_Layer],
    ):
        self._client = client
        self._image_ref = image_ref
        self._layer_type = layer_type

    @property
    def image_ref(self) -> ImageReference:
        return self._image_ref

    def get(self) -> list[_Layer]:
        """Fetch the artifact manifest and return one handle per layer.

        A missing tag means nothing is attached and yields an empty list.
        """
        try:
            manifest, _, _ = self._client.get_manifest(self._image_ref)
        except requests.HTTPError as err:
            if is_not_found(err):
                logger.debug(f"No artifacts at {self._image_ref}")
                return []
            raise

        layers = [
            oci_registry.Descriptor.from_dict(layer)
            for layer in manifest.get("layers") or []
        ]
        logger.debug(f"Found {len(layers)} layers at {self._image_ref}")
        return [
            self._layer_type(self._client, self._image_ref, layer)
            for layer in layers
        ]
