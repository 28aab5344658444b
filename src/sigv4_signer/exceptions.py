# Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
# SPDX-License-Identifier: Apache-2.0


class BaseSigningException(Exception):
    """Top-level exception to capture signing-related errors."""


class ChecksumConstructionError(BaseSigningException):
    """The payload checksum of a request could not be computed.

    Raised when the body can't be rewound after hashing, or when reading it fails.
    The underlying error, if any, is available as ``__cause__``.
    """

    def __init__(self, algorithm: str, reason: str | None = None):
        self.algorithm = algorithm
        message = f"Could not create a {algorithm} checksum of the request payload"
        if reason is not None:
            message = f"{message}: {reason}"
        super().__init__(message)
