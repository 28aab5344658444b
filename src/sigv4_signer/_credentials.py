# Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
# SPDX-License-Identifier: Apache-2.0

from dataclasses import dataclass, field


@dataclass(kw_only=True, frozen=True)
class Credentials:
    """The key pair and signing scope used to sign a request."""

    access_key: str
    """A unique identifier for the signing user or role."""

    secret_key: str = field(repr=False)
    """The secret used to derive the signing key.

    Excluded from ``repr`` so that it never ends up in logs or tracebacks.
    """

    region: str
    """The region the request is scoped to, for example ``us-east-1``."""

    service: str
    """The signing name of the target service."""
