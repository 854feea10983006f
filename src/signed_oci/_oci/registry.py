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

"""Read-only OCI registry client using oras-py for authentication."""

from __future__ import annotations

from dataclasses import dataclass
from dataclasses import field
from dataclasses import replace
import hashlib
import json
import re
import threading
from typing import Any

import oras.provider

from signed_oci import errors


# OCI Distribution Spec media types
OCI_MANIFEST_MEDIA_TYPE = "application/vnd.oci.image.manifest.v1+json"
OCI_INDEX_MEDIA_TYPE = "application/vnd.oci.image.index.v1+json"
DOCKER_MANIFEST_MEDIA_TYPE = (
    "application/vnd.docker.distribution.manifest.v2+json"
)
DOCKER_MANIFEST_LIST_MEDIA_TYPE = (
    "application/vnd.docker.distribution.manifest.list.v2+json"
)

MANIFEST_MEDIA_TYPES = (
    OCI_MANIFEST_MEDIA_TYPE,
    OCI_INDEX_MEDIA_TYPE,
    DOCKER_MANIFEST_MEDIA_TYPE,
    DOCKER_MANIFEST_LIST_MEDIA_TYPE,
)
INDEX_MEDIA_TYPES = frozenset(
    [OCI_INDEX_MEDIA_TYPE, DOCKER_MANIFEST_LIST_MEDIA_TYPE]
)

DEFAULT_REGISTRY = "docker.io"
DEFAULT_TAG = "latest"

_DOMAIN_COMPONENT = r"[a-zA-Z0-9](?:[a-zA-Z0-9-]*[a-zA-Z0-9])?"
_DOMAIN_RE = re.compile(
    rf"^{_DOMAIN_COMPONENT}(?:\.{_DOMAIN_COMPONENT})*(?::[0-9]+)?$"
)
_PATH_COMPONENT_RE = re.compile(r"^[a-z0-9]+(?:(?:[._]|__|-+)[a-z0-9]+)*$")
_TAG_RE = re.compile(r"^[\w][\w.-]{0,127}$", re.ASCII)
_DIGEST_RE = re.compile(r"^(?:sha256:[a-f0-9]{64}|sha512:[a-f0-9]{128})$")


def compute_digest(content: bytes, algorithm: str = "sha256") -> str:
    """Calculate the `algorithm:hex` digest of some content."""
    return f"{algorithm}:{hashlib.new(algorithm, content).hexdigest()}"


@dataclass(frozen=True)
class ImageReference:
    """Parsed OCI image reference.

    Format: [registry/]repository[:tag][@digest]. Immutable once parsed; use
    `with_digest` or `with_tag` to point at other content in the same
    repository.
    """

    registry: str
    repository: str
    tag: str | None
    digest: str | None

    @classmethod
    def parse(cls, reference: str) -> ImageReference:
        """Parse an image reference string.

        References without a registry host default to Docker Hub, and
        references without a tag or digest default to the `latest` tag.

        Raises:
            InvalidReferenceError: The reference is malformed.
        """
        text = reference.strip()
        if not text:
            raise errors.InvalidReferenceError("Image reference is empty")

        digest = None
        if "@" in text:
            text, digest = text.split("@", 1)
            if not _DIGEST_RE.match(digest):
                raise errors.InvalidReferenceError(
                    f"Invalid digest format: {digest}"
                )

        tag = None
        if ":" in text.rsplit("/", 1)[-1]:
            text, tag = text.rsplit(":", 1)
            if not _TAG_RE.match(tag):
                raise errors.InvalidReferenceError(f"Invalid tag: {tag!r}")
        elif not digest:
            tag = DEFAULT_TAG

        parts = text.split("/", 1)
        if len(parts) == 2 and (
            "." in parts[0] or ":" in parts[0] or parts[0] == "localhost"
        ):
            registry, repository = parts
        else:
            registry, repository = DEFAULT_REGISTRY, text

        if registry == "index.docker.io":
            registry = DEFAULT_REGISTRY
        if registry == DEFAULT_REGISTRY and "/" not in repository:
            repository = f"library/{repository}"

        if not _DOMAIN_RE.match(registry):
            raise errors.InvalidReferenceError(
                f"Invalid registry {registry!r} in '{reference}'"
            )
        if not all(_PATH_COMPONENT_RE.match(c) for c in repository.split("/")):
            raise errors.InvalidReferenceError(
                f"Invalid repository {repository!r} in '{reference}'"
            )

        return cls(registry, repository, tag, digest)

    def __str__(self) -> str:
        result = f"{self.registry}/{self.repository}"
        if self.digest:
            result += f"@{self.digest}"
        elif self.tag:
            result += f":{self.tag}"
        return result

    @property
    def reference(self) -> str:
        if self.digest:
            return self.digest
        return self.tag or DEFAULT_TAG

    def with_digest(self, digest: str) -> ImageReference:
        return replace(self, tag=None, digest=digest)

    def with_tag(self, tag: str) -> ImageReference:
        return replace(self, tag=tag, digest=None)

    def with_repository(self, repository: str) -> ImageReference:
        return replace(self, repository=repository)


@dataclass(frozen=True)
class Platform:
    """The platform an image in an index was built for.

    Two platforms match only if every field is equal. Feature lists are
    compared without regard to order.
    """

    os: str
    architecture: str
    variant: str = ""
    os_version: str = ""
    os_features: tuple[str, ...] = ()
    features: tuple[str, ...] = ()

    @classmethod
    def parse(cls, platform: str) -> Platform:
        """Parse a platform string of the form os/arch[/variant][:osversion].

        Raises:
            InvalidPlatformError: The platform string is malformed.
        """
        text = platform.strip()
        os_version = ""
        if ":" in text:
            text, os_version = text.split(":", 1)
        parts = text.split("/")
        if len(parts) > 3:
            raise errors.InvalidPlatformError(
                f"too many slashes in platform spec: {platform}"
            )
        if len(parts) < 2 or not all(parts):
            raise errors.InvalidPlatformError(
                f"platform must be os/arch[/variant][:osversion]: {platform}"
            )
        variant = parts[2] if len(parts) == 3 else ""
        return cls(parts[0], parts[1], variant, os_version)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Platform:
        return cls(
            os=data.get("os", ""),
            architecture=data.get("architecture", ""),
            variant=data.get("variant", ""),
            os_version=data.get("os.version", ""),
            os_features=tuple(data.get("os.features") or ()),
            features=tuple(data.get("features") or ()),
        )

    def matches(self, other: Platform | None) -> bool:
        if other is None:
            return False
        return (
            self.os == other.os
            and self.architecture == other.architecture
            and self.variant == other.variant
            and self.os_version == other.os_version
            and sorted(self.os_features) == sorted(other.os_features)
            and sorted(self.features) == sorted(other.features)
        )

    def __str__(self) -> str:
        result = f"{self.os}/{self.architecture}"
        if self.variant:
            result += f"/{self.variant}"
        if self.os_version:
            result += f":{self.os_version}"
        return result


@dataclass
class Descriptor:
    """OCI content descriptor.

    See: https://github.com/opencontainers/image-spec/blob/main/descriptor.md

    Attributes:
        media_type: The media type of the referenced content.
        digest: The digest of the referenced content.
        size: The size in bytes of the referenced content.
        annotations: Optional arbitrary metadata.
        platform: Optional platform, set on the children of an index.
    """

    media_type: str
    digest: str
    size: int
    annotations: dict[str, str] | None = None
    platform: Platform | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Descriptor:
        platform = data.get("platform")
        return cls(
            media_type=data.get("mediaType", ""),
            digest=data.get("digest", ""),
            size=int(data.get("size", 0)),
            annotations=data.get("annotations"),
            platform=Platform.from_dict(platform) if platform else None,
        )


@dataclass
class IndexManifest:
    """OCI image index (or Docker manifest list).

    See: https://github.com/opencontainers/image-spec/blob/main/image-index.md

    The order of `manifests` is the order the registry returned them in.
    """

    media_type: str
    manifests: list[Descriptor] = field(default_factory=list)
    schema_version: int = 2

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> IndexManifest:
        return cls(
            media_type=data.get("mediaType", OCI_INDEX_MEDIA_TYPE),
            manifests=[
                Descriptor.from_dict(m) for m in data.get("manifests") or []
            ],
            schema_version=int(data.get("schemaVersion", 2)),
        )


class OrasClient:
    """Read-only OCI registry client using oras-py for authentication.

    A single client is shared by all the threads of a fetch, so the cache of
    authenticated registries is guarded by a lock.
    """

    def __init__(self, *, insecure: bool = False, tls_verify: bool = True):
        self._insecure = insecure
        self._tls_verify = tls_verify
        self._registry_cache: dict[str, oras.provider.Registry] = {}
        self._lock = threading.Lock()

    def _auth_registry(
        self, image_ref: ImageReference
    ) -> oras.provider.Registry:
        """Get an authenticated oras Registry instance.

        Caches authenticated registries by hostname to avoid repeated
        authentication overhead when performing multiple operations.
        """
        hostname = image_ref.registry
        with self._lock:
            if hostname in self._registry_cache:
                return self._registry_cache[hostname]

            reg = oras.provider.Registry(
                hostname=hostname,
                insecure=self._insecure,
                tls_verify=self._tls_verify,
            )
            reg.auth.load_configs(reg.get_container(str(image_ref)))
            self._registry_cache[hostname] = reg
            return reg

    def _base_url(self, image_ref: ImageReference) -> str:
        """Get the base URL for a registry."""
        registry = image_ref.registry
        if registry in ("docker.io", "index.docker.io"):
            registry = "registry-1.docker.io"
        return f"{'http' if self._insecure else 'https'}://{registry}"

    def get_manifest(
        self, image_ref: ImageReference
    ) -> tuple[dict[str, Any], str, str]:
        """Get a manifest or index from the registry.

        Returns:
            The decoded manifest, the digest of the exact bytes served by the
            registry, and the media type of the manifest.

        Raises:
            requests.HTTPError: The registry answered with an error status.
            ValueError: The manifest is not JSON, or its digest does not match
              the digest of `image_ref`.
        """
        base = self._base_url(image_ref)
        path = f"{image_ref.repository}/manifests/{image_ref.reference}"
        url = f"{base}/v2/{path}"
        response = self._auth_registry(image_ref).do_request(
            url, "GET", headers={"Accept": ", ".join(MANIFEST_MEDIA_TYPES)}
        )
        response.raise_for_status()

        content = response.content
        if image_ref.digest:
            algorithm = image_ref.digest.split(":", 1)[0]
            digest = compute_digest(content, algorithm)
            if digest != image_ref.digest:
                raise ValueError(
                    f"Manifest digest mismatch for {image_ref}: got {digest}"
                )
        else:
            digest = compute_digest(content)

        manifest = json.loads(content)
        if not isinstance(manifest, dict):
            raise ValueError(f"Manifest for {image_ref} is not a JSON object")
        media_type = manifest.get("mediaType") or response.headers.get(
            "Content-Type", ""
        )
        return manifest, digest, media_type

    def pull_blob(self, image_ref: ImageReference, digest: str) -> bytes:
        """Pull a blob from the registry and check it against its digest."""
        reg = self._auth_registry(image_ref)
        response = reg.get_blob(str(image_ref), digest)
        response.raise_for_status()
        content = response.content
        actual = compute_digest(content, digest.split(":", 1)[0])
        if actual != digest:
            raise ValueError(
                f"Blob digest mismatch: want {digest}, got {actual}"
            )
        return content
