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

"""High level API for fetching the artifacts attached to OCI images.

Signatures, attestations and named attachments (such as SBOMs) are pulled
into memory without being verified:

```python
signatures = signed_oci.fetch_signatures_for_reference(
    "ghcr.io/org/app:v1.2"
)
for sig in signatures:
    print(sig.base64_signature, sig.cert)
```

Attachments of one platform of a multi-platform image are fetched through the
index:

```python
sbom = signed_oci.fetch_attachment_from_index(
    "ghcr.io/org/app:v1.2", "linux/arm64", signed_oci.SBOM
)
print(sbom.media_type)
```

Registry access is configured with `RegistryOptions`. Registry
authentication uses existing Docker/Podman credentials from
`~/.docker/config.json` or `${XDG_RUNTIME_DIR}/containers/auth.json`.

Every function either returns complete results or raises an error from
`signed_oci.errors`; an image with nothing attached is an error, never an
empty result.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
import concurrent.futures
import logging
import os
import pathlib
import threading
import time
from typing import Any, TypeVar

import requests

from signed_oci import errors
from signed_oci import payloads
from signed_oci._oci import attachment as oci_attachment
from signed_oci._oci import registry as oci_registry
from signed_oci._oci import remote as oci_remote


logger = logging.getLogger(__name__)

SIGNATURE = "signature"
SBOM = "sbom"
ATTESTATION = "attestation"

# How often a waiting caller checks for cancellation.
_POLL_INTERVAL = 0.1

_T = TypeVar("_T")


def _parse_reference(
    image_ref: str | oci_registry.ImageReference,
) -> oci_registry.ImageReference:
    if isinstance(image_ref, oci_registry.ImageReference):
        return image_ref
    return oci_registry.ImageReference.parse(image_ref)


def _check_cancelled(cancel: threading.Event | None) -> None:
    if cancel is not None and cancel.is_set():
        raise errors.FetchCancelledError("fetch cancelled")


def _fetch_all(
    members: Sequence[Any],
    fetch_one: Callable[[Any], _T],
    *,
    max_workers: int,
    cancel: threading.Event | None = None,
    timeout: float | None = None,
) -> list[_T]:
    """Run `fetch_one` over all members in parallel, keeping member order.

    Each task owns slot `i` of the result list, so results come back in
    member order whatever order the tasks finish in. The first failure is
    raised as a `MemberFetchError` and no results are returned. Tasks that
    have not started yet are cancelled; running tasks finish in the
    background and their results are dropped.
    """
    results: list[Any] = [None] * len(members)

    def run(i: int, member: Any) -> None:
        _check_cancelled(cancel)
        results[i] = fetch_one(member)

    deadline = None if timeout is None else time.monotonic() + timeout
    executor = concurrent.futures.ThreadPoolExecutor(max_workers=max_workers)
    try:
        futures = {
            executor.submit(run, i, member): i
            for i, member in enumerate(members)
        }
        pending = set(futures)
        while pending:
            wait_for = _POLL_INTERVAL
            if deadline is not None:
                wait_for = min(wait_for, max(deadline - time.monotonic(), 0))
            done, pending = concurrent.futures.wait(
                pending,
                timeout=wait_for,
                return_when=concurrent.futures.FIRST_EXCEPTION,
            )

            failed = sorted(
                (futures[f], f.exception())
                for f in done
                if f.exception() is not None
            )
            if failed:
                index, error = failed[0]
                if isinstance(error, errors.FetchCancelledError):
                    raise error
                raise errors.MemberFetchError(index, error) from error

            _check_cancelled(cancel)
            expired = deadline is not None and time.monotonic() >= deadline
            if pending and expired:
                raise errors.FetchCancelledError(
                    f"fetch did not finish within {timeout}s"
                )
    finally:
        executor.shutdown(wait=False, cancel_futures=True)

    return results


def _collection_members(
    collection: oci_attachment.Collection,
    kind: str,
    image_ref: oci_registry.ImageReference,
) -> list[Any]:
    try:
        members = collection.get()
    except (requests.RequestException, ValueError) as err:
        raise errors.RegistryError(f"fetching {kind}: {err}") from err
    if not members:
        raise errors.EmptyCollectionError(kind, image_ref)
    return members


def _max_workers(options: oci_remote.RegistryOptions) -> int:
    return options.max_workers or os.cpu_count() or 1


def fetch_signatures_for_reference(
    image_ref: str | oci_registry.ImageReference,
    options: oci_remote.RegistryOptions | None = None,
    *,
    cancel: threading.Event | None = None,
    timeout: float | None = None,
) -> list[payloads.SignedPayload]:
    """Fetch every signature attached to an image.

    Args:
        image_ref: The image, as a string or a parsed reference.
        options: Registry options. Defaults to `RegistryOptions()`.
        cancel: Set this event from another thread to abort the fetch.
        timeout: Seconds to wait for all signatures before giving up.

    Returns:
        One `SignedPayload` per signature, in the order the registry lists
        them.

    Raises:
        InvalidReferenceError: `image_ref` is malformed.
        RegistryError: The image or its signatures could not be fetched.
        EmptyCollectionError: The image has no signatures.
        MemberFetchError: Reading one of the signatures failed.
        FetchCancelledError: `cancel` was set or `timeout` expired.
    """
    ref = _parse_reference(image_ref)
    options = options or oci_remote.RegistryOptions()

    entity = oci_remote.open_entity(ref, options)
    sigs = _collection_members(entity.signatures(), "signatures", ref)

    def fetch_one(sig: oci_attachment.Signature) -> payloads.SignedPayload:
        _check_cancelled(cancel)
        payload = sig.payload()
        _check_cancelled(cancel)
        return payloads.SignedPayload(
            payload=payload,
            base64_signature=sig.base64_signature(),
            cert=sig.cert(),
            chain=sig.chain(),
            bundle=sig.bundle(),
        )

    return _fetch_all(
        sigs,
        fetch_one,
        max_workers=_max_workers(options),
        cancel=cancel,
        timeout=timeout,
    )


def fetch_attestations_for_reference(
    image_ref: str | oci_registry.ImageReference,
    options: oci_remote.RegistryOptions | None = None,
    *,
    cancel: threading.Event | None = None,
    timeout: float | None = None,
) -> list[payloads.AttestationPayload]:
    """Fetch every attestation attached to an image.

    Each attestation is decoded as a DSSE envelope. If pulling or decoding
    any one of them fails, none are returned.

    Raises:
        InvalidReferenceError: `image_ref` is malformed.
        RegistryError: The image or its attestations could not be fetched.
        EmptyCollectionError: The image has no attestations.
        MemberFetchError: Pulling or decoding one attestation failed.
        FetchCancelledError: `cancel` was set or `timeout` expired.
    """
    ref = _parse_reference(image_ref)
    options = options or oci_remote.RegistryOptions()

    entity = oci_remote.open_entity(ref, options)
    atts = _collection_members(entity.attestations(), "attestations", ref)

    def fetch_one(
        att: oci_attachment.Attestation,
    ) -> payloads.AttestationPayload:
        _check_cancelled(cancel)
        return payloads.AttestationPayload.from_json(att.payload())

    return _fetch_all(
        atts,
        fetch_one,
        max_workers=_max_workers(options),
        cancel=cancel,
        timeout=timeout,
    )


def attachment_payload(
    file: oci_attachment.File,
) -> payloads.AttachmentPayload:
    """Read the bytes and the media type of an attachment.

    Raises:
        PayloadError: The bytes could not be read.
        MediaTypeError: The media type could not be read.
    """
    try:
        payload = file.payload()
    except (requests.RequestException, ValueError) as err:
        raise errors.PayloadError(f"reading attachment: {err}") from err

    try:
        media_type = file.file_media_type()
    except (requests.RequestException, ValueError) as err:
        raise errors.MediaTypeError(
            f"reading attachment media type: {err}"
        ) from err

    return payloads.AttachmentPayload(payload=payload, media_type=media_type)


def select_platform_child(
    entity: oci_remote.SignedEntity,
    platform: oci_registry.Platform,
    image_ref: oci_registry.ImageReference,
) -> oci_registry.ImageReference:
    """Find the child of an index built for `platform`.

    Children are scanned in index order and the first exact match wins.

    Returns:
        The digest-qualified reference of the matching child.

    Raises:
        NotAnIndexError: `entity` is a single image.
        PlatformNotFoundError: No child matches `platform`.
    """
    index = entity.as_index()
    if index is None:
        raise errors.NotAnIndexError(f"{image_ref} is not an index")

    for descriptor in index.index_manifest().manifests:
        if platform.matches(descriptor.platform):
            logger.debug(f"Platform {platform} is {descriptor.digest}")
            return image_ref.with_digest(descriptor.digest)

    raise errors.PlatformNotFoundError(platform, image_ref)


def fetch_attachment_for_reference(
    image_ref: str | oci_registry.ImageReference,
    name: str,
    options: oci_remote.RegistryOptions | None = None,
    *,
    cancel: threading.Event | None = None,
) -> payloads.AttachmentPayload:
    """Fetch the attachment called `name` (e.g. `SBOM`) of an image.

    Raises:
        InvalidReferenceError: `image_ref` is malformed.
        RegistryError: The image or the attachment could not be fetched.
        AttachmentNotFoundError: Nothing called `name` is attached.
        PayloadError: The attachment bytes could not be read.
        MediaTypeError: The attachment media type could not be read.
        FetchCancelledError: `cancel` was set.
    """
    ref = _parse_reference(image_ref)
    options = options or oci_remote.RegistryOptions()

    _check_cancelled(cancel)
    entity = oci_remote.open_entity(ref, options)
    _check_cancelled(cancel)
    file = entity.attachment(name)
    _check_cancelled(cancel)
    return attachment_payload(file)


def fetch_attachment_from_index(
    image_ref: str | oci_registry.ImageReference,
    platform: str | oci_registry.Platform,
    name: str,
    options: oci_remote.RegistryOptions | None = None,
    *,
    cancel: threading.Event | None = None,
) -> payloads.AttachmentPayload:
    """Fetch the attachment called `name` of one platform of an index.

    The attachment is looked up on the child image built for `platform`, not
    on the index itself.

    Raises:
        InvalidReferenceError: `image_ref` is malformed.
        InvalidPlatformError: `platform` is malformed.
        RegistryError: The index, the child or the attachment could not be
          fetched.
        NotAnIndexError: `image_ref` is a single image.
        PlatformNotFoundError: No child of the index matches `platform`.
        AttachmentNotFoundError: Nothing called `name` is attached to the
          child.
        PayloadError: The attachment bytes could not be read.
        MediaTypeError: The attachment media type could not be read.
        FetchCancelledError: `cancel` was set.
    """
    ref = _parse_reference(image_ref)
    if not isinstance(platform, oci_registry.Platform):
        platform = oci_registry.Platform.parse(platform)
    options = options or oci_remote.RegistryOptions()

    _check_cancelled(cancel)
    index = oci_remote.open_entity(ref, options)
    child_ref = select_platform_child(index, platform, ref)

    _check_cancelled(cancel)
    child = oci_remote.open_entity(child_ref, options)
    _check_cancelled(cancel)
    file = child.attachment(name)
    _check_cancelled(cancel)
    return attachment_payload(file)


def fetch_attachment(
    image_ref: str | oci_registry.ImageReference,
    name: str,
    platform: str | oci_registry.Platform | None = "",
    options: oci_remote.RegistryOptions | None = None,
    *,
    cancel: threading.Event | None = None,
) -> payloads.AttachmentPayload:
    """Fetch the attachment called `name`, optionally for one platform.

    An empty or `None` platform means no platform filter: the attachment of
    `image_ref` itself is fetched. Otherwise `image_ref` must be an index and
    the attachment of its child for `platform` is fetched.

    Raises:
        The errors of `fetch_attachment_for_reference` without a platform,
        and those of `fetch_attachment_from_index` with one.
    """
    if not platform:
        return fetch_attachment_for_reference(
            image_ref, name, options, cancel=cancel
        )
    return fetch_attachment_from_index(
        image_ref, platform, name, options, cancel=cancel
    )


def fetch_local_signed_payload_from_path(
    path: str | os.PathLike,
) -> payloads.LocalSignedPayload:
    """Load a signed payload previously exported to a local file.

    Raises:
        LocalPayloadReadError: The file could not be read.
        LocalPayloadDecodeError: The file is not a valid signed payload.
    """
    path = pathlib.Path(path)
    try:
        contents = path.read_bytes()
    except OSError as err:
        raise errors.LocalPayloadReadError(f"reading {path}: {err}") from err

    try:
        return payloads.LocalSignedPayload.from_json(contents)
    except (ValueError, TypeError) as err:
        raise errors.LocalPayloadDecodeError(
            f"decoding {path}: {err}"
        ) from err
