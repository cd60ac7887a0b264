"""Tests for the boto3 backed Glacier transport."""
import io

import boto3
import pytest
from botocore.awsrequest import AWSResponse
from botocore.exceptions import EndpointConnectionError, HTTPClientError
from botocore.stub import ANY, Stubber

from glacier_upload.core.config import UploaderConfig
from glacier_upload.core.exceptions import (
    FatalTransportError,
    TransientTransportError,
    UploadCancelled,
    UploadNotFoundError,
)
from glacier_upload.core.partition import MIB
from glacier_upload.core.transport import (
    GlacierTransport,
    ProgressReader,
    parse_range,
    resume_point_from_parts,
)
from glacier_upload.core.treehash import compute_tree_hash

BODY = b"0123456789"
CHECKSUM = compute_tree_hash(BODY)


@pytest.fixture
def glacier_client():
    """Glacier client with dummy credentials; never reaches the network when stubbed."""
    return boto3.client(
        "glacier",
        region_name="us-east-1",
        aws_access_key_id="testing",
        aws_secret_access_key="testing",
    )


@pytest.fixture
def stubbed(glacier_client):
    """A (transport, stubber) pair sharing one stubbed client."""
    transport = GlacierTransport(UploaderConfig(region="us-east-1"), client=glacier_client)
    with Stubber(glacier_client) as stubber:
        yield transport, stubber
        stubber.assert_no_pending_responses()


def part_params(**overrides):
    params = {
        "accountId": "-",
        "vaultName": "vault",
        "uploadId": "up-1",
        "checksum": CHECKSUM,
        "range": "bytes 0-9/*",
        "body": ANY,
    }
    params.update(overrides)
    return params


class TestGlacierTransport:
    """Test suite for GlacierTransport against a stubbed client."""

    def test_initiate_upload(self, stubbed):
        """Test initiating sends the part size and description."""
        transport, stubber = stubbed
        stubber.add_response(
            "initiate_multipart_upload",
            {"uploadId": "up-1", "location": "/-/vaults/vault/multipart-uploads/up-1"},
            {
                "accountId": "-",
                "vaultName": "vault",
                "partSize": str(4 * MIB),
                "archiveDescription": "backup.tar",
            },
        )

        assert transport.initiate_upload("vault", 4 * MIB, "backup.tar") == "up-1"

    def test_upload_part(self, stubbed):
        """Test a part is sent with its range and checksum."""
        transport, stubber = stubbed
        stubber.add_response("upload_multipart_part", {"checksum": CHECKSUM}, part_params())

        result = transport.upload_part("vault", "up-1", 0, len(BODY), BODY, CHECKSUM)

        assert result == CHECKSUM

    def test_checksum_mismatch_is_transient(self, stubbed):
        """Test a remote checksum that differs from ours can be retried."""
        transport, stubber = stubbed
        stubber.add_response(
            "upload_multipart_part", {"checksum": compute_tree_hash(b"other")}, part_params()
        )

        with pytest.raises(TransientTransportError) as exc_info:
            transport.upload_part("vault", "up-1", 0, len(BODY), BODY, CHECKSUM)

        assert exc_info.value.code == "ChecksumMismatch"

    @pytest.mark.parametrize(
        "code,status",
        [
            ("ThrottlingException", 400),
            ("RequestTimeoutException", 408),
            ("ServiceUnavailableException", 500),
        ],
    )
    def test_transient_errors(self, stubbed, code, status):
        """Test throttling, timeouts and 5xx are transient."""
        transport, stubber = stubbed
        stubber.add_client_error(
            "upload_multipart_part",
            service_error_code=code,
            http_status_code=status,
            expected_params=part_params(),
        )

        with pytest.raises(TransientTransportError) as exc_info:
            transport.upload_part("vault", "up-1", 0, len(BODY), BODY, CHECKSUM)

        assert exc_info.value.code == code

    def test_fatal_error(self, stubbed):
        """Test a rejected request is fatal."""
        transport, stubber = stubbed
        stubber.add_client_error(
            "upload_multipart_part",
            service_error_code="InvalidParameterValueException",
            http_status_code=400,
            expected_params=part_params(),
        )

        with pytest.raises(FatalTransportError) as exc_info:
            transport.upload_part("vault", "up-1", 0, len(BODY), BODY, CHECKSUM)

        assert not isinstance(exc_info.value, TransientTransportError)
        assert exc_info.value.status_code == 400

    def test_missing_upload(self, stubbed):
        """Test a missing upload raises UploadNotFoundError."""
        transport, stubber = stubbed
        stubber.add_client_error(
            "upload_multipart_part",
            service_error_code="ResourceNotFoundException",
            http_status_code=404,
            expected_params=part_params(),
        )

        with pytest.raises(UploadNotFoundError) as exc_info:
            transport.upload_part("vault", "up-1", 0, len(BODY), BODY, CHECKSUM)

        assert exc_info.value.upload_id == "up-1"

    def test_missing_vault_on_initiate(self, stubbed):
        """Test a missing vault is fatal."""
        transport, stubber = stubbed
        stubber.add_client_error(
            "initiate_multipart_upload",
            service_error_code="ResourceNotFoundException",
            http_status_code=404,
        )

        with pytest.raises(FatalTransportError) as exc_info:
            transport.initiate_upload("vault", MIB)

        assert not isinstance(exc_info.value, UploadNotFoundError)

    def test_complete_upload(self, stubbed):
        """Test completing sends the size and archive hash."""
        transport, stubber = stubbed
        stubber.add_response(
            "complete_multipart_upload",
            {"archiveId": "arch-1", "location": "/-/vaults/vault/archives/arch-1", "checksum": CHECKSUM},
            {
                "accountId": "-",
                "vaultName": "vault",
                "uploadId": "up-1",
                "archiveSize": "10",
                "checksum": CHECKSUM,
            },
        )

        archive_id, location = transport.complete_upload("vault", "up-1", 10, CHECKSUM)

        assert archive_id == "arch-1"
        assert location == "/-/vaults/vault/archives/arch-1"

    def test_abort_upload(self, stubbed):
        """Test aborting an existing upload."""
        transport, stubber = stubbed
        stubber.add_response(
            "abort_multipart_upload",
            {},
            {"accountId": "-", "vaultName": "vault", "uploadId": "up-1"},
        )

        transport.abort_upload("vault", "up-1")

    def test_abort_missing_upload_is_ignored(self, stubbed):
        """Test aborting a missing upload is not an error by default."""
        transport, stubber = stubbed
        stubber.add_client_error(
            "abort_multipart_upload",
            service_error_code="ResourceNotFoundException",
            http_status_code=404,
        )

        transport.abort_upload("vault", "up-1")

    def test_abort_missing_upload_strict(self, stubbed):
        """Test fail_if_missing reports a missing upload."""
        transport, stubber = stubbed
        stubber.add_client_error(
            "abort_multipart_upload",
            service_error_code="ResourceNotFoundException",
            http_status_code=404,
        )

        with pytest.raises(UploadNotFoundError):
            transport.abort_upload("vault", "up-1", fail_if_missing=True)

    def test_list_uploads(self, stubbed):
        """Test in-progress uploads are listed."""
        transport, stubber = stubbed
        stubber.add_response(
            "list_multipart_uploads",
            {
                "UploadsList": [
                    {
                        "MultipartUploadId": "up-1",
                        "ArchiveDescription": "backup.tar",
                        "PartSizeInBytes": 4 * MIB,
                        "CreationDate": "2024-01-01T00:00:00.000Z",
                    }
                ]
            },
        )

        uploads = transport.list_uploads("vault")

        assert uploads == [
            {
                "upload_id": "up-1",
                "description": "backup.tar",
                "part_size": 4 * MIB,
                "created": "2024-01-01T00:00:00.000Z",
            }
        ]

    def test_list_parts(self, stubbed):
        """Test accepted parts and the part size are returned."""
        transport, stubber = stubbed
        stubber.add_response(
            "list_parts",
            {
                "PartSizeInBytes": MIB,
                "Parts": [{"RangeInBytes": f"0-{MIB - 1}", "SHA256TreeHash": CHECKSUM}],
            },
        )

        part_size, parts = transport.list_parts("vault", "up-1")

        assert part_size == MIB
        assert parts[0]["RangeInBytes"] == f"0-{MIB - 1}"


class TestErrorClassification:
    """Test suite for error classification helpers."""

    def test_connection_errors_are_transient(self):
        """Test dropped connections are transient."""
        assert GlacierTransport.is_transient_error(EndpointConnectionError(endpoint_url="x"))

    def test_other_errors_are_not_transient(self):
        """Test unknown exceptions are not classified as transient."""
        assert not GlacierTransport.is_transient_error(ValueError("x"))

    def test_cancellation_is_found_inside_wrapped_error(self):
        """Test cancellation raised during an HTTP send is recovered."""
        cancelled = UploadCancelled(3)
        wrapped = HTTPClientError(error=cancelled)

        assert GlacierTransport.cancellation_cause(wrapped) is cancelled

    def test_wrapped_cancellation_is_reraised(self, glacier_client):
        """Test the transport re-raises a wrapped cancellation as is."""

        class SendingClient:
            def upload_multipart_part(self, **kwargs):
                raise HTTPClientError(error=UploadCancelled(1))

        transport = GlacierTransport(client=glacier_client)
        transport.part_glacier = SendingClient()

        with pytest.raises(UploadCancelled):
            transport.upload_part("vault", "up-1", 0, len(BODY), BODY, CHECKSUM)

    def test_connection_error_while_sending_is_transient(self, glacier_client):
        """Test a dropped connection surfaces as a transient error."""

        class DroppingClient:
            def upload_multipart_part(self, **kwargs):
                raise EndpointConnectionError(endpoint_url="https://glacier.example")

        transport = GlacierTransport(client=glacier_client)
        transport.part_glacier = DroppingClient()

        with pytest.raises(TransientTransportError):
            transport.upload_part("vault", "up-1", 0, len(BODY), BODY, CHECKSUM)


class FakeWire:
    """Stands in for the HTTP layer: reads the request body in blocks, answers 204."""

    def __init__(self, checksum: str, block: int = 64 * 1024):
        self.checksum = checksum
        self.block = block
        self.sent = 0

    def __call__(self, request, **kwargs):
        while True:
            chunk = request.body.read(self.block)
            if not chunk:
                break
            self.sent += len(chunk)
        return AWSResponse(
            request.url, 204, {"x-amz-sha256-tree-hash": self.checksum}, EmptyRaw()
        )


class EmptyRaw:
    def stream(self, **kwargs):
        return iter([])


class TestSendProgress:
    """Test suite for progress reporting through a real glacier client."""

    @pytest.fixture
    def body(self):
        return bytes(i % 251 for i in range(3 * MIB))

    @pytest.fixture
    def wired(self, glacier_client, body):
        """A transport whose client signs requests and sends them to a FakeWire."""
        transport = GlacierTransport(client=glacier_client)
        wire = FakeWire(compute_tree_hash(body))
        glacier_client.meta.events.register("before-send.glacier.UploadMultipartPart", wire)
        return transport, wire

    def test_nothing_reported_before_signing(self, glacier_client, wired, body):
        """Test hashing the payload for the signature is not reported as sent."""
        transport, wire = wired
        reported = []
        at_sign = []
        glacier_client.meta.events.register(
            "before-sign.glacier.UploadMultipartPart",
            lambda **kwargs: at_sign.append(list(reported)),
        )

        result = transport.upload_part(
            "vault", "up-1", 0, len(body), body, compute_tree_hash(body), reported.append
        )

        assert result == compute_tree_hash(body)
        assert at_sign == [[]]
        assert wire.sent == len(body)
        assert len(reported) == len(body) // wire.block
        assert reported == sorted(reported)
        assert reported[-1] == len(body)

    def test_cancel_while_sending(self, wired, body):
        """Test a cancellation from the progress callback stops the body mid-send."""
        transport, wire = wired

        def on_progress(sent):
            if sent >= MIB:
                raise UploadCancelled(1)

        with pytest.raises(UploadCancelled):
            transport.upload_part(
                "vault", "up-1", 0, len(body), body, compute_tree_hash(body), on_progress
            )

        assert wire.sent < len(body)


class TestHelpers:
    """Test suite for module helpers."""

    def test_progress_reader_reports_high_water_mark(self):
        """Test rereads after a seek do not report progress twice."""
        reported = []
        reader = ProgressReader(b"abcdefgh", reported.append)
        reader.arm()

        assert reader.read(4) == b"abcd"
        reader.seek(0)
        assert reader.read() == b"abcdefgh"
        reader.seek(0, io.SEEK_END)

        assert reported == [4, 8]
        assert len(reader) == 8
        assert reader.tell() == 8

    def test_progress_reader_silent_until_armed(self):
        """Test reads before the request is sent are not reported."""
        reported = []
        reader = ProgressReader(b"abcdefgh", reported.append)

        reader.read()
        reader.seek(0)
        assert reported == []

        reader.arm()
        reader.read(3)
        assert reported == [3]

    def test_parse_range(self):
        """Test inclusive ranges are parsed into start and length."""
        assert parse_range("1048576-2097151") == (MIB, MIB)

    def test_resume_point_from_parts(self):
        """Test the first gap in the accepted parts is the resume point."""
        parts = [
            {"RangeInBytes": f"0-{MIB - 1}"},
            {"RangeInBytes": f"{2 * MIB}-{3 * MIB - 1}"},
        ]

        assert resume_point_from_parts(parts, MIB) == 2
        assert resume_point_from_parts([], MIB) == 1
