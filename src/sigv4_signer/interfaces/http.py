# Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations

from collections import OrderedDict
from collections.abc import Iterator
from typing import Protocol, runtime_checkable

from .io import ByteStream


class Field(Protocol):
    """A single named HTTP header carrying one or more values.

    Field names are case insensitive. The name is preserved as supplied so it can be
    transmitted unchanged, but lookups must treat case variants as equivalent.
    """

    name: str
    values: list[str]

    def add(self, value: str) -> None:
        """Append a value to a field."""
        ...

    def as_string(self, delimiter: str = ",") -> str:
        """Serialize the ``Field``'s values into a single line string."""
        ...


class Fields(Protocol):
    """Multi-valued, case-insensitive collection of HTTP headers."""

    # Entries are keyed off the lower-cased name of a provided Field
    entries: OrderedDict[str, Field]

    def set_field(self, field: Field) -> None:
        """Alias for __setitem__ to utilize the field.name for the entry key."""
        ...

    def __setitem__(self, name: str, field: Field) -> None: ...

    def __getitem__(self, name: str) -> Field: ...

    def __delitem__(self, name: str) -> None: ...

    def __contains__(self, name: str) -> bool: ...

    def __iter__(self) -> Iterator[Field]: ...

    def __len__(self) -> int: ...


@runtime_checkable
class URI(Protocol):
    """Target location of a :py:class:`Request`."""

    scheme: str
    """For example ``http`` or ``https``."""

    host: str
    """The hostname, for example ``example.amazonaws.com``."""

    port: int | None
    """An explicit port number."""

    path: str | None
    """Path component of the URI."""

    query: str | None
    """Query component of the URI as string."""

    @property
    def netloc(self) -> str:
        """Construct netloc string in format ``{username}:{password}@{host}:{port}``"""
        ...

    def build(self) -> str:
        """Construct the URI string representation."""
        ...


class Request(Protocol):
    """An HTTP request that can be handed to a signer."""

    destination: URI
    method: str
    fields: Fields
    body: ByteStream | None
    protocol_version: str
