# Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
# SPDX-License-Identifier: Apache-2.0
"""Conversion of a request into the canonical form that SigV4 signs.

Every function here is pure: the same parsed request and payload hash always yield
the same canonical request, which is what allows a server to recompute and verify
the signature.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from copy import deepcopy
from dataclasses import dataclass
from urllib.parse import parse_qsl, quote

from ._http import URI, Fields, SigningRequest
from .interfaces.io import ByteStream

# Headers that proxies or HTTP client layers are free to add, drop, or rewrite in
# transit. Signing them would cause spurious signature mismatches.
HEADERS_EXCLUDED_FROM_SIGNING: frozenset[str] = frozenset(
    (
        "cache-control",
        "content-type",
        "content-length",
        "expect",
        "max-forwards",
        "pragma",
        "range",
        "te",
        "if-match",
        "if-none-match",
        "if-modified-since",
        "if-unmodified-since",
        "if-range",
        "accept",
        "authorization",
        "proxy-authorization",
        "from",
        "referer",
        "user-agent",
    )
)

# Headers left over from an earlier signing attempt.
STALE_SIGNING_HEADERS: tuple[str, ...] = ("X-Amz-Date", "Date", "Authorization")

SIGNATURE_QUERY_PARAMETER: str = "X-Amz-Signature"
DEFAULT_PORTS: dict[str, int] = {"http": 80, "https": 443}

# Percent-escapes that are not valid UTF-8 round-trip as their original bytes.
QUERY_DECODE_ERRORS: str = "surrogateescape"


@dataclass(kw_only=True)
class ParsedRequest:
    """The parts of a request that take part in signing.

    ``headers`` is a private copy, so the signer can add and remove entries without
    touching the caller's request.
    """

    method: str
    path: str
    query: dict[str, list[str]]
    uri: URI
    headers: Fields
    body: ByteStream | None
    protocol_version: str


@dataclass(kw_only=True, frozen=True)
class CanonicalContext:
    canonical_request: str
    signed_headers: str


def parse_request(request: SigningRequest) -> ParsedRequest:
    """Split a request into its signing components.

    Any ``X-Amz-Date``, ``Date`` and ``Authorization`` headers are dropped so that a
    retried or re-signed request doesn't carry stale values into the new signature.
    """
    headers = deepcopy(request.fields)
    for name in STALE_SIGNING_HEADERS:
        headers.discard(name)
    return ParsedRequest(
        method=request.method,
        path=request.destination.path or "",
        query=parse_query(request.destination.query),
        uri=request.destination,
        headers=headers,
        body=request.body,
        protocol_version=request.protocol_version,
    )


def parse_query(query: str | None) -> dict[str, list[str]]:
    """Decode a query string into an ordered mapping of key to values.

    ``+`` decodes to a space, and a key without ``=`` gets an empty value.
    """
    params: dict[str, list[str]] = {}
    for key, value in parse_qsl(
        query or "", keep_blank_values=True, errors=QUERY_DECODE_ERRORS
    ):
        params.setdefault(key, []).append(value)
    return params


def canonicalize(
    parsed: ParsedRequest, payload_hash: str, *, normalize_path: bool = False
) -> CanonicalContext:
    """Build the canonical request and the signed headers list.

    The SigV4 specification defines the canonical request to be:
        <HTTPMethod>\\n
        <CanonicalURI>\\n
        <CanonicalQueryString>\\n
        <CanonicalHeaders>\\n
        \\n
        <SignedHeaders>\\n
        <HashedPayload>

    :param parsed: The request as returned by :py:func:`parse_request`.
    :param payload_hash: Hex SHA-256 of the body, or the value of a pre-supplied
        ``X-Amz-Content-Sha256`` header.
    :param normalize_path: Remove ``.`` and ``..`` segments from the path before
        encoding it.
    """
    signing_headers = normalize_signing_headers(headers=parsed.headers, uri=parsed.uri)
    signed_headers = ";".join(signing_headers)
    canonical_headers = "\n".join(
        f"{name}:{value}" for name, value in signing_headers.items()
    )
    canonical_request = (
        f"{parsed.method.upper()}\n"
        f"{canonical_path(parsed.path, normalize=normalize_path)}\n"
        f"{canonical_query(parsed.query)}\n"
        f"{canonical_headers}\n"
        "\n"
        f"{signed_headers}\n"
        f"{payload_hash}"
    )
    return CanonicalContext(
        canonical_request=canonical_request, signed_headers=signed_headers
    )


def canonical_path(path: str, *, normalize: bool = False) -> str:
    """Percent-encode a path, leaving its ``/`` separators intact.

    The result always starts with a single ``/``. An already-encoded ``%2F`` inside a
    segment is encoded again to ``%252F``.
    """
    if normalize:
        path = remove_dot_segments(path)
    return "/" + quote(path.lstrip("/"), safe="/")


def canonical_query(query: Mapping[str, Sequence[str]]) -> str:
    """Serialize query parameters in canonical order.

    ``X-Amz-Signature`` is never part of what gets signed. Keys and values are
    encoded first, and the pairs are sorted on their encoded forms so repeated keys
    come out with their values in order.
    """
    pairs = sorted(
        (uri_encode(key), uri_encode(value))
        for key, values in query.items()
        if key != SIGNATURE_QUERY_PARAMETER
        for value in values
    )
    return "&".join(f"{key}={value}" for key, value in pairs)


def normalize_signing_headers(*, headers: Fields, uri: URI) -> dict[str, str]:
    """Map each signable lower-cased header name to its canonical value.

    Names are returned in sorted order. If the request has no ``Host`` header, the
    URI authority is signed in its place, since the transport will send it.
    """
    aggregate: dict[str, list[str]] = {}
    for field in headers:
        name = field.name.lower()
        if name not in HEADERS_EXCLUDED_FROM_SIGNING:
            aggregate.setdefault(name, []).extend(field.values)
    if "host" not in aggregate:
        aggregate["host"] = [host_header_value(uri)]

    return {
        name: ",".join(_collapse_whitespace(value) for value in sorted(values))
        for name, values in sorted(aggregate.items())
    }


def host_header_value(uri: URI) -> str:
    if uri.port is None or DEFAULT_PORTS.get(uri.scheme) == uri.port:
        return uri.host
    return f"{uri.host}:{uri.port}"


def uri_encode(value: str) -> str:
    """Percent-encode everything but the RFC 3986 unreserved characters."""
    return quote(value, safe="", errors=QUERY_DECODE_ERRORS)


def remove_dot_segments(path: str) -> str:
    """Removes dot segments from a path per :rfc:`3986#section-5.2.4`.

    :param path: The path to modify.
    :returns: The path with dot segments removed.
    """
    output: list[str] = []
    for segment in path.split("/"):
        if segment == ".":
            continue
        elif segment != "..":
            output.append(segment)
        elif output:
            output.pop()
    if path.startswith("/") and (not output or output[0]):
        output.insert(0, "")
    if output and path.endswith(("/.", "/..")):
        output.append("")
    return "/".join(output)


def _collapse_whitespace(value: str) -> str:
    return " ".join(value.split())
