# Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
# SPDX-License-Identifier: Apache-2.0

from typing import Protocol, runtime_checkable


@runtime_checkable
class ByteStream(Protocol):
    """A file-like object with a read method that returns bytes."""

    def read(self, size: int = -1, /) -> bytes: ...


@runtime_checkable
class Seekable(Protocol):
    """A file-like object with seek and tell implemented."""

    def seek(self, offset: int, whence: int = 0, /) -> int: ...

    def tell(self) -> int: ...


@runtime_checkable
class SeekableByteStream(ByteStream, Seekable, Protocol):
    """A readable stream that can be rewound after it has been consumed.

    Request bodies must satisfy this protocol to have their payload hashed, since
    the transport re-reads the same stream once signing is done.
    """
