# Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
# SPDX-License-Identifier: Apache-2.0

import copy
import logging
import re
from io import BytesIO

import pytest
from freezegun import freeze_time
from sigv4_signer import (
    URI,
    ChecksumConstructionError,
    Credentials,
    Field,
    Fields,
    SigningRequest,
    SigV4Signer,
    SigV4SigningProperties,
)
from sigv4_signer.canonical import parse_request
from sigv4_signer.signers import compute_payload_hash, rebuild_request

SIGV4_RE = re.compile(
    r"AWS4-HMAC-SHA256 "
    r"Credential=(?P<access_key>\w+)/(?P<date>\d{8})/"
    r"(?P<signing_region>[a-z0-9-]+)/(?P<service>[a-z0-9]+)/aws4_request, "
    r"SignedHeaders=(?P<signed_headers>[a-z0-9;-]+), "
    r"Signature=(?P<signature>[0-9a-f]{64})$"
)
SECRET_KEY = "EXAMPLE1234SECRET"


@pytest.fixture(scope="module")
def credentials() -> Credentials:
    return Credentials(
        access_key="AKID123456",
        secret_key=SECRET_KEY,
        region="us-west-2",
        service="ec2",
    )


@pytest.fixture(scope="module")
def signing_properties() -> SigV4SigningProperties:
    return SigV4SigningProperties(date="20240501T000000Z")


def make_request(
    body: object = None,
    fields: Fields | None = None,
    query: str | None = None,
) -> SigningRequest:
    return SigningRequest(
        destination=URI(scheme="https", host="127.0.0.1", port=8000, query=query),
        method="POST",
        body=BytesIO(b"123456") if body is None else body,  # type: ignore
        fields=fields if fields is not None else Fields(),
    )


def signature_of(request: SigningRequest) -> str:
    match = SIGV4_RE.match(request.fields["Authorization"].as_string())
    assert match is not None
    return match.group("signature")


class NonSeekableStream:
    def __init__(self, data: bytes) -> None:
        self._buffer = BytesIO(data)

    def read(self, size: int = -1, /) -> bytes:
        return self._buffer.read(size)


class PipeStream(BytesIO):
    """A stream that implements seek but reports itself as not seekable."""

    def seekable(self) -> bool:
        return False


class FailingStream(BytesIO):
    def read(self, size: int | None = -1, /) -> bytes:
        raise OSError("disk on fire")


class TestSigV4Signer:
    SIGV4_SYNC_SIGNER = SigV4Signer()

    def test_sign(self, credentials: Credentials) -> None:
        request = make_request()
        signed_request = self.SIGV4_SYNC_SIGNER.sign(
            request=request, credentials=credentials
        )
        assert isinstance(signed_request, SigningRequest)
        assert signed_request is not request
        assert "authorization" in signed_request.fields
        match = SIGV4_RE.match(signed_request.fields["authorization"].as_string())
        assert match is not None
        assert match.group("access_key") == "AKID123456"
        assert match.group("signing_region") == "us-west-2"
        assert match.group("service") == "ec2"
        assert match.group("signed_headers") == "host;x-amz-date"
        amz_date = signed_request.fields["x-amz-date"].as_string()
        assert re.fullmatch(r"\d{8}T\d{6}Z", amz_date)
        assert match.group("date") == amz_date[:8]

    @freeze_time("2024-05-01 13:14:15")
    def test_sign_uses_current_utc_time(self, credentials: Credentials) -> None:
        signed_request = self.SIGV4_SYNC_SIGNER.sign(
            request=make_request(), credentials=credentials
        )
        assert signed_request.fields["X-Amz-Date"].as_string() == "20240501T131415Z"
        assert "/20240501/us-west-2/" in signed_request.fields[
            "Authorization"
        ].as_string()

    def test_sign_doesnt_modify_original_request(
        self, credentials: Credentials
    ) -> None:
        request = make_request(fields=Fields.from_pairs([("X-Custom", "1")]))
        original_request = copy.deepcopy(request)
        signed_request = self.SIGV4_SYNC_SIGNER.sign(
            request=request, credentials=credentials
        )
        assert request.fields == original_request.fields
        assert signed_request.fields != request.fields
        assert signed_request.destination is request.destination
        assert signed_request.body is request.body

    def test_sign_doesnt_modify_signing_properties(
        self, credentials: Credentials
    ) -> None:
        properties = SigV4SigningProperties(normalize_path=False)
        self.SIGV4_SYNC_SIGNER.sign(
            request=make_request(),
            credentials=credentials,
            signing_properties=properties,
        )
        assert properties == {"normalize_path": False}

    def test_output_keeps_request_shape(
        self, credentials: Credentials, signing_properties: SigV4SigningProperties
    ) -> None:
        request = SigningRequest(
            destination=URI(host="example.com", path="/p", query="b=1&a=2"),
            method="PUT",
            fields=Fields.from_pairs([("X-Custom", "1"), ("Content-Type", "text")]),
            body=BytesIO(b"data"),
            protocol_version="2",
        )
        signed_request = self.SIGV4_SYNC_SIGNER.sign(
            request=request,
            credentials=credentials,
            signing_properties=signing_properties,
        )
        assert signed_request.method == "PUT"
        assert signed_request.protocol_version == "2"
        assert signed_request.destination.query == "b=1&a=2"
        assert [field.name for field in signed_request.fields] == [
            "X-Custom",
            "Content-Type",
            "X-Amz-Date",
            "Authorization",
        ]

    def test_sign_is_deterministic(
        self, credentials: Credentials, signing_properties: SigV4SigningProperties
    ) -> None:
        signatures = {
            self.SIGV4_SYNC_SIGNER.sign(
                request=make_request(),
                credentials=credentials,
                signing_properties=signing_properties,
            )
            .fields["Authorization"]
            .as_string()
            for _ in range(3)
        }
        assert len(signatures) == 1

    @pytest.mark.parametrize("body", [b"123457", b"12345", b"1234567", b""])
    def test_body_change_changes_signature(
        self,
        credentials: Credentials,
        signing_properties: SigV4SigningProperties,
        body: bytes,
    ) -> None:
        baseline = self.SIGV4_SYNC_SIGNER.sign(
            request=make_request(),
            credentials=credentials,
            signing_properties=signing_properties,
        )
        changed = self.SIGV4_SYNC_SIGNER.sign(
            request=make_request(body=BytesIO(body)),
            credentials=credentials,
            signing_properties=signing_properties,
        )
        assert signature_of(baseline) != signature_of(changed)

    def test_body_position_restored(
        self, credentials: Credentials, signing_properties: SigV4SigningProperties
    ) -> None:
        body = BytesIO(b"123456")
        body.seek(3)
        partially_read = self.SIGV4_SYNC_SIGNER.sign(
            request=make_request(body=body),
            credentials=credentials,
            signing_properties=signing_properties,
        )
        assert body.tell() == 3
        from_start = self.SIGV4_SYNC_SIGNER.sign(
            request=make_request(),
            credentials=credentials,
            signing_properties=signing_properties,
        )
        assert signature_of(partially_read) == signature_of(from_start)

    def test_content_sha256_header_used_verbatim(
        self, credentials: Credentials, signing_properties: SigV4SigningProperties
    ) -> None:
        wrong_hash = "not-actually-a-sha256-hash"
        fields = Fields([Field(name="X-Amz-Content-Sha256", values=[wrong_hash])])
        request = make_request(body=NonSeekableStream(b"ignored"), fields=fields)
        canonical_request = self.SIGV4_SYNC_SIGNER.canonical_request(
            request=request, signing_properties=signing_properties
        )
        assert canonical_request.endswith(f"\n{wrong_hash}")
        assert f"x-amz-content-sha256:{wrong_hash}" in canonical_request

        signed_request = self.SIGV4_SYNC_SIGNER.sign(
            request=request,
            credentials=credentials,
            signing_properties=signing_properties,
        )
        other_body = make_request(body=BytesIO(b"other"), fields=copy.deepcopy(fields))
        signed_other = self.SIGV4_SYNC_SIGNER.sign(
            request=other_body,
            credentials=credentials,
            signing_properties=signing_properties,
        )
        assert signature_of(signed_request) == signature_of(signed_other)
        assert "x-amz-content-sha256" in signed_request.fields[
            "Authorization"
        ].as_string()

    @pytest.mark.parametrize(
        "body", [NonSeekableStream(b"123456"), PipeStream(b"123456"), object()]
    )
    def test_unseekable_body_raises(
        self, credentials: Credentials, body: object
    ) -> None:
        request = make_request(body=body)
        original_fields = copy.deepcopy(request.fields)
        with pytest.raises(ChecksumConstructionError) as exc_info:
            self.SIGV4_SYNC_SIGNER.sign(request=request, credentials=credentials)
        assert exc_info.value.algorithm == "sha256"
        assert "sha256" in str(exc_info.value)
        assert request.fields == original_fields
        assert "Authorization" not in request.fields

    def test_closed_body_raises(self, credentials: Credentials) -> None:
        body = BytesIO(b"123456")
        body.close()
        with pytest.raises(ChecksumConstructionError) as exc_info:
            self.SIGV4_SYNC_SIGNER.sign(
                request=make_request(body=body), credentials=credentials
            )
        assert isinstance(exc_info.value.__cause__, ValueError)

    def test_read_failure_raises(self, credentials: Credentials) -> None:
        body = FailingStream(b"123456")
        body.seek(2)
        with pytest.raises(ChecksumConstructionError) as exc_info:
            self.SIGV4_SYNC_SIGNER.sign(
                request=make_request(body=body),
                credentials=credentials,
            )
        assert isinstance(exc_info.value.__cause__, OSError)
        assert "disk on fire" in str(exc_info.value)
        assert body.tell() == 2

    def test_resign_strips_previous_signature(
        self, credentials: Credentials
    ) -> None:
        fields = Fields.from_pairs([("Date", "Wed, 01 May 2024 00:00:00 GMT")])
        first = self.SIGV4_SYNC_SIGNER.sign(
            request=make_request(fields=fields),
            credentials=credentials,
            signing_properties={"date": "20240501T000000Z"},
        )
        old_authorization = first.fields["Authorization"].as_string()
        assert "Date" not in first.fields

        second_properties = SigV4SigningProperties(date="20240502T000000Z")
        canonical_request = self.SIGV4_SYNC_SIGNER.canonical_request(
            request=first, signing_properties=second_properties
        )
        assert old_authorization not in canonical_request
        assert "20240501T000000Z" not in canonical_request

        second = self.SIGV4_SYNC_SIGNER.sign(
            request=first,
            credentials=credentials,
            signing_properties=second_properties,
        )
        assert second.fields["Authorization"].values != [old_authorization]
        assert len(second.fields["Authorization"].values) == 1
        assert second.fields["X-Amz-Date"].values == ["20240502T000000Z"]
        match = SIGV4_RE.match(second.fields["Authorization"].as_string())
        assert match is not None
        assert match.group("signed_headers") == "host;x-amz-date"

    def test_generate_authorization_field(self) -> None:
        field = self.SIGV4_SYNC_SIGNER.generate_authorization_field(
            credential="AKID/20240501/us-west-2/ec2/aws4_request",
            signed_headers="host;x-amz-date",
            signature="a" * 64,
        )
        assert field.name == "Authorization"
        assert field.as_string() == (
            "AWS4-HMAC-SHA256 Credential=AKID/20240501/us-west-2/ec2/aws4_request, "
            f"SignedHeaders=host;x-amz-date, Signature={'a' * 64}"
        )

    def test_secret_never_logged(
        self,
        credentials: Credentials,
        signing_properties: SigV4SigningProperties,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        caplog.set_level(logging.DEBUG, logger="sigv4_signer")
        self.SIGV4_SYNC_SIGNER.sign(
            request=make_request(),
            credentials=credentials,
            signing_properties=signing_properties,
        )
        assert "Canonical request" in caplog.text
        assert "String to sign" in caplog.text
        assert SECRET_KEY not in caplog.text


def test_compute_payload_hash_without_body() -> None:
    request = make_request()
    request.body = None
    assert compute_payload_hash(parse_request(request)) == (
        "e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855"
    )


def test_compute_payload_hash_of_body() -> None:
    # sha256(b"123456")
    assert compute_payload_hash(parse_request(make_request())) == (
        "8d969eef6ecad3c29a3a629280e686cf0c3f5d5a86aff3ca12020c923adc6c92"
    )


class TestRebuildRequest:
    def test_unchanged_query_keeps_destination(self) -> None:
        request = make_request(query="b=2&a=1")
        parsed = parse_request(request)
        rebuilt = rebuild_request(
            parsed=parsed, authorization=Field(name="Authorization", values=["x"])
        )
        assert rebuilt.destination is request.destination
        assert rebuilt.fields["Authorization"].values == ["x"]
        assert "Authorization" not in parsed.headers

    def test_mutated_query_rebuilds_destination(self) -> None:
        request = make_request(query="a=1")
        parsed = parse_request(request)
        parsed.query["new"] = ["v w"]
        rebuilt = rebuild_request(
            parsed=parsed, authorization=Field(name="Authorization", values=["x"])
        )
        assert rebuilt.destination.query == "a=1&new=v%20w"
        assert rebuilt.destination.host == request.destination.host
        assert rebuilt.destination.port == request.destination.port
        assert request.destination.query == "a=1"

    def test_mutated_query_keeps_undecodable_escapes(self) -> None:
        request = make_request(query="a=%FF")
        parsed = parse_request(request)
        parsed.query["b"] = ["1"]
        rebuilt = rebuild_request(
            parsed=parsed, authorization=Field(name="Authorization", values=["x"])
        )
        assert rebuilt.destination.query == "a=%FF&b=1"
