# Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations

from collections import Counter, OrderedDict
from collections.abc import Iterable, Iterator
from copy import deepcopy
from dataclasses import dataclass
from functools import cached_property
from typing import TypedDict
from urllib.parse import urlunparse

import sigv4_signer.interfaces.http as interfaces_http

from .interfaces.io import ByteStream


class Field(interfaces_http.Field):
    """A single HTTP header with one or more values.

    All field names are case insensitive and case-variance must be treated as
    equivalent. The name is preserved as given so that it is transmitted unchanged.
    """

    def __init__(self, *, name: str, values: Iterable[str] | None = None):
        self.name = name
        self.values: list[str] = list(values) if values is not None else []

    def add(self, value: str) -> None:
        """Append a value to a field."""
        self.values.append(value)

    def as_string(self, delimiter: str = ",") -> str:
        """Get delimited string of all values.

        A ``Field`` with no values serializes to the empty string.
        """
        return delimiter.join(self.values)

    def __eq__(self, other: object) -> bool:
        """Name and values must match, including value order."""
        if not isinstance(other, Field):
            return False
        return self.name == other.name and self.values == other.values

    def __repr__(self) -> str:
        return f"Field(name={self.name!r}, values={self.values!r})"


class Fields(interfaces_http.Fields):
    def __init__(self, initial: Iterable[interfaces_http.Field] | None = None):
        """Collection of header entries mapped by case-insensitive name.

        :param initial: Initial list of ``Field`` objects. Normalized names must be
            unique; use :py:meth:`Field.add` to carry more than one value.
        """
        init_fields = list(initial) if initial is not None else []
        init_names = [self._normalize_field_name(fld.name) for fld in init_fields]
        duplicates = [name for name, num in Counter(init_names).items() if num > 1]
        if duplicates:
            raise ValueError(
                "Field names of the initial list of fields must be unique. The "
                "following normalized field names appear more than once: "
                f"{', '.join(duplicates)}."
            )
        self.entries: OrderedDict[str, interfaces_http.Field] = OrderedDict(
            zip(init_names, init_fields)
        )

    @classmethod
    def from_pairs(cls, pairs: Iterable[tuple[str, str]]) -> Fields:
        """Build a collection from ``(name, value)`` pairs.

        Repeated names, in any casing, are aggregated into one multi-valued field
        that keeps the casing of the first occurrence.
        """
        fields = cls()
        for name, value in pairs:
            if name in fields:
                fields[name].add(value)
            else:
                fields.set_field(Field(name=name, values=[value]))
        return fields

    def set_field(self, field: interfaces_http.Field) -> None:
        """Alias for __setitem__ to utilize the field.name for the entry key."""
        self.__setitem__(field.name, field)

    def __setitem__(self, name: str, field: interfaces_http.Field) -> None:
        """Set or override entry for a Field name."""
        normalized_name = self._normalize_field_name(name)
        if normalized_name != self._normalize_field_name(field.name):
            raise ValueError(
                f"Supplied key {name} does not match Field.name "
                f"provided: {field.name}"
            )
        self.entries[normalized_name] = field

    def get(
        self, key: str, default: interfaces_http.Field | None = None
    ) -> interfaces_http.Field | None:
        return self[key] if key in self else default

    def __getitem__(self, name: str) -> interfaces_http.Field:
        return self.entries[self._normalize_field_name(name)]

    def __delitem__(self, name: str) -> None:
        del self.entries[self._normalize_field_name(name)]

    def discard(self, name: str) -> None:
        """Delete entry from collection if present."""
        self.entries.pop(self._normalize_field_name(name), None)

    def _normalize_field_name(self, name: str) -> str:
        return name.lower()

    def __eq__(self, other: object) -> bool:
        """Entries must match in values and order."""
        if not isinstance(other, Fields):
            return False
        return self.entries == other.entries

    def __iter__(self) -> Iterator[interfaces_http.Field]:
        yield from self.entries.values()

    def __len__(self) -> int:
        return len(self.entries)

    def __repr__(self) -> str:
        return f"Fields({self.entries})"

    def __contains__(self, key: str) -> bool:
        return self._normalize_field_name(key) in self.entries


@dataclass(kw_only=True, frozen=True)
class URI(interfaces_http.URI):
    """Target location for a :py:class:`SigningRequest`."""

    scheme: str = "https"
    """For example ``http`` or ``https``."""

    username: str | None = None
    """Username part of the userinfo URI component."""

    password: str | None = None
    """Password part of the userinfo URI component."""

    host: str
    """The hostname, for example ``example.amazonaws.com``."""

    port: int | None = None
    """An explicit port number."""

    path: str | None = None
    """Path component of the URI."""

    query: str | None = None
    """Query component of the URI as string."""

    fragment: str | None = None
    """Part of the URI specification, but may not be transmitted by a client."""

    @property
    def netloc(self) -> str:
        """Construct netloc string in format ``{username}:{password}@{host}:{port}``

        ``username``, ``password``, and ``port`` are only included if set. ``password``
        is ignored, unless ``username`` is also set.
        """
        return self._netloc

    # cached_property allows assignment, so it sits behind a read-only property.
    @cached_property
    def _netloc(self) -> str:
        if self.username is not None:
            password = "" if self.password is None else f":{self.password}"
            userinfo = f"{self.username}{password}@"
        else:
            userinfo = ""
        port = "" if self.port is None else f":{self.port}"
        return f"{userinfo}{self.host}{port}"

    def build(self) -> str:
        """Construct URI string representation.

        Returns a string of the form
        ``{scheme}://{username}:{password}@{host}:{port}{path}?{query}#{fragment}``
        """
        components = (
            self.scheme,
            self.netloc,
            self.path or "",
            "",  # params
            self.query,
            self.fragment,
        )
        return urlunparse(components)

    def to_dict(self) -> URIParameters:
        return {
            "scheme": self.scheme,
            "host": self.host,
            "port": self.port,
            "path": self.path,
            "query": self.query,
            "username": self.username,
            "password": self.password,
            "fragment": self.fragment,
        }


class URIParameters(TypedDict):
    """Keyword arguments accepted by :py:class:`URI`, as returned by ``to_dict``."""

    scheme: str
    username: str | None
    password: str | None
    host: str
    port: int | None
    path: str | None
    query: str | None
    fragment: str | None


class SigningRequest(interfaces_http.Request):
    def __init__(
        self,
        *,
        destination: URI,
        method: str,
        fields: Fields,
        body: ByteStream | None = None,
        protocol_version: str = "1.1",
    ):
        self.destination = destination
        self.method = method
        self.fields = fields
        self.body = body
        self.protocol_version = protocol_version

    def __deepcopy__(
        self, memo: dict[int, SigningRequest] | None = None
    ) -> SigningRequest:
        if memo is None:
            memo = {}

        if id(self) in memo:
            return memo[id(self)]

        # the destination is immutable and the body is shared with the transport,
        # so only the fields are copied
        new_instance = self.__class__(
            destination=self.destination,
            method=self.method,
            fields=deepcopy(self.fields, memo),
            body=self.body,
            protocol_version=self.protocol_version,
        )
        memo[id(self)] = new_instance
        return new_instance

    def __repr__(self) -> str:
        return (
            f"SigningRequest(method={self.method!r}, "
            f"destination={self.destination.build()!r}, fields={self.fields!r})"
        )
