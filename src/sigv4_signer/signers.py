# Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
# SPDX-License-Identifier: Apache-2.0
import datetime
import hmac
import logging
from copy import deepcopy
from hashlib import sha256
from typing import Final, TypedDict
from urllib.parse import quote, urlencode

from ._credentials import Credentials
from ._http import URI, Field, SigningRequest
from .canonical import (
    QUERY_DECODE_ERRORS,
    CanonicalContext,
    ParsedRequest,
    canonicalize,
    parse_query,
    parse_request,
)
from .exceptions import ChecksumConstructionError
from .interfaces.io import SeekableByteStream

logger: Final = logging.getLogger(__name__)

SIGV4_TIMESTAMP_FORMAT: str = "%Y%m%dT%H%M%SZ"
SIGNING_ALGORITHM: str = "AWS4-HMAC-SHA256"
SCOPE_TERMINATOR: str = "aws4_request"
CONTENT_SHA256_HEADER: str = "X-Amz-Content-Sha256"
EMPTY_SHA256_HASH = "e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855"
PAYLOAD_READ_SIZE: int = 64 * 1024


class SigV4SigningProperties(TypedDict, total=False):
    date: str
    """Signing instant as ``YYYYMMDDTHHMMSSZ``. Defaults to the current UTC time."""

    normalize_path: bool
    """Remove ``.`` and ``..`` path segments before signing. Defaults to False."""


class SigV4Signer:
    """Request signer for applying the AWS Signature Version 4 algorithm.

    The signer holds no state, so a single instance can be shared across threads.
    """

    def sign(
        self,
        *,
        request: SigningRequest,
        credentials: Credentials,
        signing_properties: SigV4SigningProperties | None = None,
    ) -> SigningRequest:
        """Generate and apply a SigV4 Signature to a copy of the supplied request.

        The returned request carries fresh ``X-Amz-Date`` and ``Authorization``
        headers. The supplied request is left untouched, including when signing
        fails.

        :param request: The request to sign prior to sending it to the service.
        :param credentials: The key pair, region and service to sign with.
        :param signing_properties: Optional overrides such as a fixed signing date.
        :raises ChecksumConstructionError: The payload hash could not be computed.
        """
        properties = self._normalize_signing_properties(
            signing_properties=signing_properties
        )
        date = properties["date"]
        logger.debug(
            "Signing %s request to %s", request.method, request.destination.host
        )

        parsed = self._prepare_request(request=request, date=date)
        context = self._canonical_context(parsed=parsed, signing_properties=properties)
        string_to_sign = self.string_to_sign(
            canonical_request=context.canonical_request,
            credentials=credentials,
            date=date,
        )
        signature = compute_signature(
            signing_key=derive_signing_key(credentials=credentials, date=date),
            string_to_sign=string_to_sign,
        )

        scope = credential_scope(
            date=date, region=credentials.region, service=credentials.service
        )
        authorization = self.generate_authorization_field(
            credential=f"{credentials.access_key}/{scope}",
            signed_headers=context.signed_headers,
            signature=signature,
        )
        return rebuild_request(parsed=parsed, authorization=authorization)

    def canonical_request(
        self,
        *,
        request: SigningRequest,
        signing_properties: SigV4SigningProperties | None = None,
    ) -> str:
        """Build the canonical request :py:meth:`sign` would generate.

        This is useful to quickly compare inputs to find signature mismatches and
        unintended variances.
        """
        properties = self._normalize_signing_properties(
            signing_properties=signing_properties
        )
        parsed = self._prepare_request(request=request, date=properties["date"])
        context = self._canonical_context(parsed=parsed, signing_properties=properties)
        return context.canonical_request

    def string_to_sign(
        self, *, canonical_request: str, credentials: Credentials, date: str
    ) -> str:
        """Concatenate the algorithm, signing time, credential scope, and a hash of
        the canonical request.

        The SigV4 specification defines the string to sign as:
            Algorithm \\n
            RequestDateTime \\n
            CredentialScope  \\n
            HashedCanonicalRequest
        """
        scope = credential_scope(
            date=date, region=credentials.region, service=credentials.service
        )
        string_to_sign = (
            f"{SIGNING_ALGORITHM}\n"
            f"{date}\n"
            f"{scope}\n"
            f"{sha256(canonical_request.encode()).hexdigest()}"
        )
        logger.debug("String to sign:\n%s", string_to_sign)
        return string_to_sign

    def generate_authorization_field(
        self, *, credential: str, signed_headers: str, signature: str
    ) -> Field:
        """Generate the `Authorization` field.

        :param credential:
            Credential scope string for generating the Authorization header.
            Defined as:
                <access_key>/<date>/<region>/<service>/aws4_request
        :param signed_headers:
            The ``;`` separated names of the headers used in signing.
        :param signature:
            Hex encoded signature of the string to sign.
        """
        auth_str = (
            f"{SIGNING_ALGORITHM} Credential={credential}, "
            f"SignedHeaders={signed_headers}, Signature={signature}"
        )
        return Field(name="Authorization", values=[auth_str])

    def _normalize_signing_properties(
        self, *, signing_properties: SigV4SigningProperties | None
    ) -> SigV4SigningProperties:
        # Copy to avoid mutating the caller's properties
        new_signing_properties = SigV4SigningProperties(**(signing_properties or {}))
        if "date" not in new_signing_properties:
            date_obj = datetime.datetime.now(datetime.UTC)
            new_signing_properties["date"] = date_obj.strftime(SIGV4_TIMESTAMP_FORMAT)
        return new_signing_properties

    def _prepare_request(self, *, request: SigningRequest, date: str) -> ParsedRequest:
        parsed = parse_request(request)
        parsed.headers.set_field(Field(name="X-Amz-Date", values=[date]))
        return parsed

    def _canonical_context(
        self, *, parsed: ParsedRequest, signing_properties: SigV4SigningProperties
    ) -> CanonicalContext:
        context = canonicalize(
            parsed,
            compute_payload_hash(parsed),
            normalize_path=signing_properties.get("normalize_path", False),
        )
        logger.debug("Canonical request:\n%s", context.canonical_request)
        return context


def compute_payload_hash(parsed: ParsedRequest) -> str:
    """Hex encoded SHA-256 of the request payload.

    A pre-computed ``X-Amz-Content-Sha256`` header is used verbatim, without being
    validated. Otherwise the body is hashed from its start and then returned to the
    position it was found at, ready for the transport to send.

    :raises ChecksumConstructionError: The body can't be rewound, or reading it
        failed.
    """
    if (content_sha256 := parsed.headers.get(CONTENT_SHA256_HEADER)) is not None:
        return ", ".join(content_sha256.values)

    body = parsed.body
    if body is None:
        return EMPTY_SHA256_HASH

    checksum = sha256()
    try:
        if not _is_seekable(body):
            raise ChecksumConstructionError("sha256", "request body is not seekable")
        position = body.tell()
        try:
            body.seek(0)
            while chunk := body.read(PAYLOAD_READ_SIZE):
                checksum.update(chunk)
        finally:
            body.seek(position)
    except (OSError, ValueError) as e:
        raise ChecksumConstructionError("sha256", str(e)) from e
    return checksum.hexdigest()


def _is_seekable(body: object) -> bool:
    if not isinstance(body, SeekableByteStream):
        return False
    # io streams implement seek() even when the underlying file can't seek
    seekable = getattr(body, "seekable", None)
    return seekable is None or bool(seekable())


def credential_scope(*, date: str, region: str, service: str) -> str:
    # Scope format: <YYYYMMDD>/<Region>/<Service>/aws4_request
    return f"{date[0:8]}/{region}/{service}/{SCOPE_TERMINATOR}"


def derive_signing_key(*, credentials: Credentials, date: str) -> bytes:
    """Derive the key that is scoped to a single day, region and service.

    :param credentials: Supplies the secret key, region and service.
    :param date: Either the long or the short signing date; only the
        ``YYYYMMDD`` prefix is used.
    """
    # DateKey              = HMAC-SHA256("AWS4"+"<SecretAccessKey>", "<YYYYMMDD>")
    # DateRegionKey        = HMAC-SHA256(<DateKey>, "<region>")
    # DateRegionServiceKey = HMAC-SHA256(<DateRegionKey>, "<service>")
    # SigningKey           = HMAC-SHA256(<DateRegionServiceKey>, "aws4_request")
    k_date = _hmac(f"AWS4{credentials.secret_key}".encode(), date[0:8])
    k_region = _hmac(k_date, credentials.region)
    k_service = _hmac(k_region, credentials.service)
    return _hmac(k_service, SCOPE_TERMINATOR)


def compute_signature(*, signing_key: bytes, string_to_sign: str) -> str:
    return _hmac(signing_key, string_to_sign).hex()


def _hmac(key: bytes, value: str) -> bytes:
    return hmac.new(key=key, msg=value.encode(), digestmod=sha256).digest()


def rebuild_request(*, parsed: ParsedRequest, authorization: Field) -> SigningRequest:
    """Assemble the signed request from its parsed parts.

    The URI is only rebuilt if the parsed query parameters no longer match the
    original query string; otherwise the caller's URI is reused as-is.
    """
    fields = deepcopy(parsed.headers)
    fields.set_field(authorization)

    destination = parsed.uri
    if parsed.query != parse_query(parsed.uri.query):
        uri_params = parsed.uri.to_dict()
        uri_params["query"] = urlencode(
            parsed.query, doseq=True, errors=QUERY_DECODE_ERRORS, quote_via=quote
        )
        destination = URI(**uri_params)

    return SigningRequest(
        destination=destination,
        method=parsed.method,
        fields=fields,
        body=parsed.body,
        protocol_version=parsed.protocol_version,
    )
