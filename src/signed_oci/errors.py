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

"""Errors raised while fetching signed artifacts.

Callers can tell "nothing attached" (`EmptyCollectionError`,
`AttachmentNotFoundError`) apart from registry failures (`RegistryError`,
`MemberFetchError`) and from malformed local input (`LocalPayloadReadError`,
`LocalPayloadDecodeError`).
"""

from __future__ import annotations


class FetchError(Exception):
    """Base class for all errors raised by `signed_oci`."""


class InvalidReferenceError(FetchError, ValueError):
    """An image reference string could not be parsed."""


class InvalidPlatformError(FetchError, ValueError):
    """A platform string could not be parsed."""


class RegistryError(FetchError):
    """A manifest could not be fetched or resolved from the registry."""


class NotAnIndexError(FetchError):
    """The reference resolved to a single image, not an image index."""


class PlatformNotFoundError(FetchError):
    """No child of an image index matches the requested platform."""

    def __init__(self, platform, reference):
        super().__init__(
            f"no child with platform {platform} in index {reference}"
        )
        self.platform = platform
        self.reference = reference


class EmptyCollectionError(FetchError):
    """A reference has no signatures or attestations attached."""

    def __init__(self, kind: str, reference):
        super().__init__(f"no {kind} associated with {reference}")
        self.kind = kind
        self.reference = reference


class MemberFetchError(FetchError):
    """Fetching one member of a signature or attestation collection failed.

    The original error is available as `__cause__`.
    """

    def __init__(self, index: int, error: BaseException):
        super().__init__(f"fetching member {index}: {error}")
        self.index = index


class AttachmentNotFoundError(FetchError):
    """No attachment with the given name exists for the reference."""

    def __init__(self, name: str, reference):
        super().__init__(f"no {name} attached to {reference}")
        self.name = name
        self.reference = reference


class PayloadError(FetchError):
    """The bytes of an artifact could not be read."""


class MediaTypeError(FetchError):
    """The media type of an attachment could not be read."""


class LocalPayloadReadError(FetchError, OSError):
    """A local signed payload file could not be read."""


class LocalPayloadDecodeError(FetchError, ValueError):
    """A local signed payload file is not valid JSON of the expected shape."""


class FetchCancelledError(FetchError):
    """The fetch was cancelled or ran past its deadline."""
