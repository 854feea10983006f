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

"""Signed entities: an image or index together with its attached artifacts.

`open_entity` fetches the manifest a reference points to and returns a handle
bound to the digest of that manifest. Index manifests produce a
`SignedImageIndex`, which can also list its per-platform children; all other
manifests produce a `SignedImage`. Use `as_index()` to find out which one you
have.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging

import requests

from signed_oci import errors
from signed_oci._oci import attachment as oci_attachment
from signed_oci._oci import registry as oci_registry


logger = logging.getLogger(__name__)


@dataclass
class RegistryOptions:
    """How to talk to the registry.

    Attributes:
        insecure: Use plain HTTP instead of HTTPS.
        tls_verify: Verify the TLS certificate of the registry.
        target_repository: Repository (on the same registry) to look up
          signatures, attestations and attachments in, instead of the
          repository of the image.
        max_workers: Upper bound on concurrent registry requests when fetching
          a collection. Defaults to the number of CPUs.
        client: The registry client. Built from `insecure` and `tls_verify`
          when not given.
    """

    insecure: bool = False
    tls_verify: bool = True
    target_repository: str | None = None
    max_workers: int | None = None
    client: oci_registry.OrasClient | None = None

    def __post_init__(self):
        if self.max_workers is not None and self.max_workers < 1:
            raise ValueError(
                f"max_workers must be at least 1, got {self.max_workers}"
            )
        if self.client is None:
            self.client = oci_registry.OrasClient(
                insecure=self.insecure, tls_verify=self.tls_verify
            )


class SignedEntity:
    """A resolved image or index and the artifacts attached to it."""

    def __init__(
        self,
        client: oci_registry.OrasClient,
        image_ref: oci_registry.ImageReference,
        manifest: dict,
        *,
        target_repository: str | None = None,
    ):
        self._client = client
        self._image_ref = image_ref
        self._manifest = manifest
        self._target_repository = target_repository

    @property
    def image_ref(self) -> oci_registry.ImageReference:
        """The digest-qualified reference of this entity."""
        return self._image_ref

    @property
    def digest(self) -> str:
        return self._image_ref.digest

    def _artifact_ref(self, suffix: str) -> oci_registry.ImageReference:
        ref = self._image_ref
        if self._target_repository:
            ref = ref.with_repository(self._target_repository)
        return ref.with_tag(oci_attachment.digest_to_tag(self.digest, suffix))

    def signatures(self) -> oci_attachment.Collection:
        return oci_attachment.Collection(
            self._client,
            self._artifact_ref(oci_attachment.SIGNATURE_SUFFIX),
            oci_attachment.Signature,
        )

    def attestations(self) -> oci_attachment.Collection:
        return oci_attachment.Collection(
            self._client,
            self._artifact_ref(oci_attachment.ATTESTATION_SUFFIX),
            oci_attachment.Attestation,
        )

    def attachment(self, name: str) -> oci_attachment.File:
        """Get the attachment called `name`.

        Raises:
            AttachmentNotFoundError: Nothing called `name` is attached.
            RegistryError: The attachment manifest could not be fetched.
        """
        ref = self._artifact_ref(name)
        try:
            manifest, _, _ = self._client.get_manifest(ref)
        except requests.HTTPError as err:
            if oci_attachment.is_not_found(err):
                raise errors.AttachmentNotFoundError(
                    name, self._image_ref
                ) from err
            raise errors.RegistryError(
                f"fetching {name} for {self._image_ref}: {err}"
            ) from err
        except (requests.RequestException, ValueError) as err:
            raise errors.RegistryError(
                f"fetching {name} for {self._image_ref}: {err}"
            ) from err
        return oci_attachment.File(self._client, ref, manifest)

    def as_index(self) -> SignedImageIndex | None:
        """Return this entity as an index, or None for a single image."""
        return None


class SignedImage(SignedEntity):
    """A single image."""


class SignedImageIndex(SignedEntity):
    """A multi-platform image index."""

    def index_manifest(self) -> oci_registry.IndexManifest:
        return oci_registry.IndexManifest.from_dict(self._manifest)

    def as_index(self) -> SignedImageIndex:
        return self


def open_entity(
    image_ref: oci_registry.ImageReference, options: RegistryOptions
) -> SignedEntity:
    """Resolve a reference to a signed entity.

    Tags are resolved to a digest by fetching the manifest they point to.

    Raises:
        RegistryError: The manifest could not be fetched.
    """
    try:
        manifest, digest, media_type = options.client.get_manifest(image_ref)
    except (requests.RequestException, ValueError) as err:
        raise errors.RegistryError(
            f"fetching manifest for {image_ref}: {err}"
        ) from err

    if media_type in oci_registry.INDEX_MEDIA_TYPES:
        entity_type = SignedImageIndex
    else:
        entity_type = SignedImage
    logger.debug(f"Resolved {image_ref} to {entity_type.__name__} {digest}")

    return entity_type(
        options.client,
        image_ref.with_digest(digest),
        manifest,
        target_repository=options.target_repository,
    )
