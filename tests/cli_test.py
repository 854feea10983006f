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

import base64
import json
from unittest import mock

from click.testing import CliRunner
import pytest

import signed_oci
from signed_oci import _cli
from signed_oci import payloads
from signed_oci._oci import registry


IMAGE = "quay.io/user/app:v1"


@pytest.fixture
def runner(client):
    """A CLI runner whose registry options talk to the in-memory registry."""
    with mock.patch.object(
        registry, "OrasClient", return_value=client
    ) as client_class:
        runner = CliRunner()
        runner.client_class = client_class
        yield runner


@pytest.fixture
def multi_arch(client):
    amd64 = client.push_image("quay.io/user/app:amd64")
    arm64 = client.push_image("quay.io/user/app:arm64")
    client.push_attachment(amd64, "sbom", b"amd64 sbom", "text/spdx")
    client.push_attachment(
        arm64, "sbom", b"arm64 sbom", "application/vnd.cyclonedx+json"
    )
    client.push_index(
        IMAGE,
        [
            ({"os": "linux", "architecture": "amd64"}, amd64),
            ({"os": "linux", "architecture": "arm64"}, arm64),
        ],
    )


class TestMain:
    def test_version(self):
        result = CliRunner().invoke(_cli.main, ["--version"])

        assert result.exit_code == 0
        assert signed_oci.__version__ in result.output

    def test_help(self):
        result = CliRunner().invoke(_cli.main, ["--help"])

        assert result.exit_code == 0
        assert "download" in result.output
        assert "inspect-local" in result.output


class TestDownloadSignature:
    def test_prints_one_line_per_signature(self, runner, client):
        image_ref = client.push_image(IMAGE)
        client.push_signatures(
            image_ref,
            [
                {"payload": b"first", "signature": "MQ=="},
                {"payload": b"second", "signature": "Mg=="},
            ],
        )

        result = runner.invoke(_cli.main, ["download", "signature", IMAGE])

        assert result.exit_code == 0
        lines = [json.loads(line) for line in result.output.splitlines()]
        assert [line["base64Signature"] for line in lines] == ["MQ==", "Mg=="]
        assert base64.b64decode(lines[1]["payload"]) == b"second"

    def test_registry_flags(self, runner, client):
        image_ref = client.push_image(IMAGE)
        client.push_signatures(image_ref, [{"payload": b"p", "signature": "s"}])

        result = runner.invoke(
            _cli.main,
            [
                "download",
                "signature",
                IMAGE,
                "--allow-insecure-registry",
                "--no-tls-verify",
                "--max-workers",
                "2",
            ],
        )

        assert result.exit_code == 0
        runner.client_class.assert_called_once_with(
            insecure=True, tls_verify=False
        )

    def test_no_signatures(self, runner, client):
        client.push_image(IMAGE)

        result = runner.invoke(_cli.main, ["download", "signature", IMAGE])

        assert result.exit_code == 1
        assert "Download failed: no signatures associated with" in (
            result.output
        )


class TestDownloadAttestation:
    def test_prints_envelopes(self, runner, client):
        image_ref = client.push_image(IMAGE)
        envelope = {
            "payloadType": "application/vnd.in-toto+json",
            "payload": "e30=",
            "signatures": [{"keyid": "", "sig": "c2ln"}],
        }
        client.push_attestations(image_ref, [json.dumps(envelope).encode()])

        result = runner.invoke(_cli.main, ["download", "attestation", IMAGE])

        assert result.exit_code == 0
        assert json.loads(result.output) == envelope


class TestDownloadSbom:
    def test_single_image(self, runner, client):
        image_ref = client.push_image(IMAGE)
        client.push_attachment(
            image_ref, "sbom", b'{"spdxVersion": "SPDX-2.3"}', "text/spdx+json"
        )

        result = runner.invoke(_cli.main, ["download", "sbom", IMAGE])

        assert result.exit_code == 0
        assert "Found SBOM of media type: text/spdx+json" in result.output
        assert '{"spdxVersion": "SPDX-2.3"}' in result.output

    def test_platform(self, runner, multi_arch):
        result = runner.invoke(
            _cli.main,
            ["download", "sbom", IMAGE, "--platform", "linux/arm64"],
        )

        assert result.exit_code == 0
        assert (
            "Found SBOM of media type: application/vnd.cyclonedx+json"
            in result.output
        )
        assert "arm64 sbom" in result.output
        assert "amd64 sbom" not in result.output

    def test_unknown_platform(self, runner, multi_arch):
        result = runner.invoke(
            _cli.main,
            ["download", "sbom", IMAGE, "--platform", "linux/s390x"],
        )

        assert result.exit_code == 1
        assert "Download failed: no child with platform linux/s390x" in (
            result.output
        )

    def test_platform_on_single_image(self, runner, client):
        client.push_image(IMAGE)

        result = runner.invoke(
            _cli.main,
            ["download", "sbom", IMAGE, "--platform", "linux/amd64"],
        )

        assert result.exit_code == 1
        assert "is not an index" in result.output

    def test_missing_sbom(self, runner, client):
        client.push_image(IMAGE)

        result = runner.invoke(_cli.main, ["download", "sbom", IMAGE])

        assert result.exit_code == 1
        assert "Download failed: no sbom attached to" in result.output

    def test_invalid_reference(self, runner):
        result = runner.invoke(
            _cli.main, ["download", "sbom", "quay.io/User/App"]
        )

        assert result.exit_code == 1
        assert "Download failed" in result.output


class TestDownloadAttachment:
    def test_writes_output_file(self, runner, client, tmp_path):
        image_ref = client.push_image(IMAGE)
        client.push_attachment(image_ref, "vex", b"vex document", "text/vex")
        output = tmp_path / "vex.json"

        result = runner.invoke(
            _cli.main,
            [
                "download",
                "attachment",
                IMAGE,
                "--name",
                "vex",
                "--output",
                str(output),
            ],
        )

        assert result.exit_code == 0
        assert output.read_bytes() == b"vex document"
        assert "Found vex of media type: text/vex" in result.output

    def test_unwritable_output(self, runner, client, tmp_path):
        image_ref = client.push_image(IMAGE)
        client.push_attachment(image_ref, "vex", b"vex document", "text/vex")

        result = runner.invoke(
            _cli.main,
            [
                "download",
                "attachment",
                IMAGE,
                "--name",
                "vex",
                "--output",
                str(tmp_path),
            ],
        )

        assert result.exit_code == 1
        assert "Writing attachment failed" in result.output

    def test_requires_name(self, runner):
        result = runner.invoke(_cli.main, ["download", "attachment", IMAGE])

        assert result.exit_code == 2


class TestInspectLocal:
    def test_prints_payload(self, tmp_path, rekor_bundle):
        local = payloads.LocalSignedPayload(
            base64_signature="c2ln",
            bundle=payloads.RekorBundle.from_dict(rekor_bundle),
        )
        path = tmp_path / "payload.json"
        path.write_text(local.to_json())

        result = CliRunner().invoke(_cli.main, ["inspect-local", str(path)])

        assert result.exit_code == 0
        assert json.loads(result.output) == local.to_dict()

    def test_missing_file(self, tmp_path):
        result = CliRunner().invoke(
            _cli.main, ["inspect-local", str(tmp_path / "missing.json")]
        )

        assert result.exit_code == 1
        assert "Loading failed" in result.output
