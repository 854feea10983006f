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


"""Fetch signatures, attestations and SBOMs attached to OCI images."""

from signed_oci import errors
from signed_oci import fetching
from signed_oci import payloads
from signed_oci._oci.registry import ImageReference
from signed_oci._oci.registry import Platform
from signed_oci._oci.remote import RegistryOptions
from signed_oci.fetching import ATTESTATION
from signed_oci.fetching import SBOM
from signed_oci.fetching import SIGNATURE
from signed_oci.fetching import fetch_attachment
from signed_oci.fetching import fetch_attachment_for_reference
from signed_oci.fetching import fetch_attachment_from_index
from signed_oci.fetching import fetch_attestations_for_reference
from signed_oci.fetching import fetch_local_signed_payload_from_path
from signed_oci.fetching import fetch_signatures_for_reference


__version__ = "0.1.0"

__all__ = [
    "ATTESTATION",
    "SBOM",
    "SIGNATURE",
    "ImageReference",
    "Platform",
    "RegistryOptions",
    "errors",
    "fetch_attachment",
    "fetch_attachment_for_reference",
    "fetch_attachment_from_index",
    "fetch_attestations_for_reference",
    "fetch_local_signed_payload_from_path",
    "fetch_signatures_for_reference",
    "fetching",
    "payloads",
]
