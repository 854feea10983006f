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

"""The main entry-point for the signed_oci package."""

import contextlib
import json
import logging
import pathlib
import sys

import click

import signed_oci
from signed_oci import errors


class NoOpTracer:
    def start_as_current_span(self, name):
        @contextlib.contextmanager
        def noop_context():
            class NoOpSpan:
                def set_attribute(self, key, value):
                    pass

            yield NoOpSpan()

        return noop_context()


# Global tracer, replaced within the main() function when OpenTelemetry exists
tracer = NoOpTracer()


# Decorator for the image reference argument.
_image_argument = click.argument("image", type=str, metavar="IMAGE")

# Decorator for the platform option of attachment downloads.
_platform_option = click.option(
    "--platform",
    type=str,
    default="",
    metavar="PLATFORM",
    help=(
        "Download from a specific platform in a multi-arch image. "
        "The format is os/arch[/variant][:osversion]."
    ),
)

# Decorator for the insecure registry option.
_insecure_option = click.option(
    "--allow-insecure-registry",
    is_flag=True,
    default=False,
    help="Talk to the registry over plain HTTP.",
)

# Decorator for the TLS verification option.
_tls_verify_option = click.option(
    "--tls-verify/--no-tls-verify",
    default=True,
    show_default=True,
    help="Verify the TLS certificate of the registry.",
)

# Decorator for the option redirecting artifact lookups to another repository.
_target_repository_option = click.option(
    "--target-repository",
    type=str,
    default=None,
    metavar="REPOSITORY",
    help=(
        "Repository on the same registry holding the signatures, "
        "attestations and attachments, if not the image repository."
    ),
)

# Decorator for the maximum number of concurrent registry requests.
_max_workers_option = click.option(
    "--max-workers",
    type=click.IntRange(min=1),
    default=None,
    metavar="N",
    help="Maximum concurrent registry requests. Defaults to the CPU count.",
)

# Decorator for the overall timeout of collection downloads.
_timeout_option = click.option(
    "--timeout",
    type=click.FloatRange(min=0, min_open=True),
    default=None,
    metavar="SECONDS",
    help="Give up if the download takes longer than this.",
)


def _registry_options(
    allow_insecure_registry: bool,
    tls_verify: bool,
    target_repository: str | None,
    max_workers: int | None = None,
) -> signed_oci.RegistryOptions:
    return signed_oci.RegistryOptions(
        insecure=allow_insecure_registry,
        tls_verify=tls_verify,
        target_repository=target_repository,
        max_workers=max_workers,
    )


@click.group(
    context_settings=dict(
        help_option_names=["-h", "--help"],
        token_normalize_func=lambda x: x.replace("_", "-"),
    ),
)
@click.version_option(signed_oci.__version__, "--version")
@click.option(
    "--log-level",
    type=click.Choice(
        ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"], case_sensitive=False
    ),
    default="WARNING",
    show_default=True,
    metavar="LEVEL",
    envvar="SIGNED_OCI_LOG_LEVEL",
    help="Set the logging level. This can also be set via the "
    "SIGNED_OCI_LOG_LEVEL env var.",
)
def main(log_level: str) -> None:
    """Download signatures, attestations and SBOMs attached to OCI images.

    Nothing is verified: the artifacts are printed as stored in the registry.
    Use each subcommand's `--help` option for details.
    """
    global tracer

    logging.basicConfig(
        format="%(message)s", level=getattr(logging, log_level.upper())
    )

    try:
        from opentelemetry import trace  # type: ignore[import-error]
        from opentelemetry.instrumentation import (
            auto_instrumentation,  # type: ignore[import-error]
        )

        # Registry calls go through requests, which gets instrumented here.
        auto_instrumentation.initialize()
        tracer = trace.get_tracer(__name__)
    except ImportError:
        logging.debug("OpenTelemetry not installed. Tracing is disabled.")
        tracer = NoOpTracer()
    except Exception as e:
        logging.error(
            f"Failed to initialize OpenTelemetry auto instrumentation: {e}"
        )
        sys.exit(1)


@main.group(name="download")
def _download() -> None:
    """Download artifacts attached to an image.

    IMAGE is an image reference, such as ghcr.io/org/app:v1 or
    ghcr.io/org/app@sha256:DIGEST. Registry authentication uses existing
    Docker/Podman credentials.
    """


@_download.command(name="signature")
@_image_argument
@_insecure_option
@_tls_verify_option
@_target_repository_option
@_max_workers_option
@_timeout_option
def _download_signature(
    image: str,
    allow_insecure_registry: bool,
    tls_verify: bool,
    target_repository: str | None,
    max_workers: int | None,
    timeout: float | None,
) -> None:
    """Download the signatures of an image.

    Prints one JSON object per signature, in registry order.
    """
    with tracer.start_as_current_span("DownloadSignature") as span:
        span.set_attribute("signed_oci.image", image)
        try:
            signatures = signed_oci.fetch_signatures_for_reference(
                image,
                _registry_options(
                    allow_insecure_registry,
                    tls_verify,
                    target_repository,
                    max_workers,
                ),
                timeout=timeout,
            )
        except errors.FetchError as err:
            click.echo(f"Download failed: {err}", err=True)
            sys.exit(1)

        span.set_attribute("signed_oci.count", len(signatures))
        for sig in signatures:
            click.echo(json.dumps(sig.to_dict()))


@_download.command(name="attestation")
@_image_argument
@_insecure_option
@_tls_verify_option
@_target_repository_option
@_max_workers_option
@_timeout_option
def _download_attestation(
    image: str,
    allow_insecure_registry: bool,
    tls_verify: bool,
    target_repository: str | None,
    max_workers: int | None,
    timeout: float | None,
) -> None:
    """Download the attestations of an image.

    Prints one DSSE envelope per line, in registry order.
    """
    with tracer.start_as_current_span("DownloadAttestation") as span:
        span.set_attribute("signed_oci.image", image)
        try:
            attestations = signed_oci.fetch_attestations_for_reference(
                image,
                _registry_options(
                    allow_insecure_registry,
                    tls_verify,
                    target_repository,
                    max_workers,
                ),
                timeout=timeout,
            )
        except errors.FetchError as err:
            click.echo(f"Download failed: {err}", err=True)
            sys.exit(1)

        span.set_attribute("signed_oci.count", len(attestations))
        for att in attestations:
            click.echo(json.dumps(att.to_dict()))


@_download.command(name="sbom")
@_image_argument
@_platform_option
@_insecure_option
@_tls_verify_option
@_target_repository_option
def _download_sbom(
    image: str,
    platform: str,
    allow_insecure_registry: bool,
    tls_verify: bool,
    target_repository: str | None,
) -> None:
    """Download the SBOM attached to an image.

    With --platform, IMAGE must be a multi-platform index and the SBOM of the
    child image for that platform is downloaded.
    """
    with tracer.start_as_current_span("DownloadSBOM") as span:
        span.set_attribute("signed_oci.image", image)
        span.set_attribute("signed_oci.platform", platform)
        try:
            sbom = signed_oci.fetch_attachment(
                image,
                signed_oci.SBOM,
                platform,
                _registry_options(
                    allow_insecure_registry, tls_verify, target_repository
                ),
            )
        except errors.FetchError as err:
            click.echo(f"Download failed: {err}", err=True)
            sys.exit(1)

        click.echo(f"Found SBOM of media type: {sbom.media_type}", err=True)
        click.echo(sbom.payload.decode(errors="replace"))


@_download.command(name="attachment")
@_image_argument
@click.option(
    "--name",
    type=str,
    required=True,
    metavar="NAME",
    help="Name of the attachment, e.g. sbom.",
)
@_platform_option
@_insecure_option
@_tls_verify_option
@_target_repository_option
@click.option(
    "--output",
    type=pathlib.Path,
    default=None,
    metavar="PATH",
    help="Write the attachment to PATH instead of standard output.",
)
def _download_named_attachment(
    image: str,
    name: str,
    platform: str,
    allow_insecure_registry: bool,
    tls_verify: bool,
    target_repository: str | None,
    output: pathlib.Path | None,
) -> None:
    """Download any named attachment of an image."""
    with tracer.start_as_current_span("DownloadAttachment") as span:
        span.set_attribute("signed_oci.image", image)
        span.set_attribute("signed_oci.attachment", name)
        span.set_attribute("signed_oci.platform", platform)
        try:
            attachment = signed_oci.fetch_attachment(
                image,
                name,
                platform,
                _registry_options(
                    allow_insecure_registry, tls_verify, target_repository
                ),
            )
        except errors.FetchError as err:
            click.echo(f"Download failed: {err}", err=True)
            sys.exit(1)

        click.echo(
            f"Found {name} of media type: {attachment.media_type}", err=True
        )
        if output is None:
            click.echo(attachment.payload, nl=False)
        else:
            try:
                output.write_bytes(attachment.payload)
            except OSError as err:
                click.echo(f"Writing attachment failed: {err}", err=True)
                sys.exit(1)
            click.echo(f"Attachment written to: {output}", err=True)


@main.command(name="inspect-local")
@click.argument("path", type=pathlib.Path, metavar="PATH")
def _inspect_local(path: pathlib.Path) -> None:
    """Print a signed payload exported to a local file.

    The file is a JSON object with `base64Signature` and optional `cert` and
    `rekorBundle` fields. No registry is contacted.
    """
    try:
        local = signed_oci.fetch_local_signed_payload_from_path(path)
    except errors.FetchError as err:
        click.echo(f"Loading failed: {err}", err=True)
        sys.exit(1)

    click.echo(json.dumps(local.to_dict(), indent=2))
