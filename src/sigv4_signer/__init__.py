# Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
# SPDX-License-Identifier: Apache-2.0
"""SigV4 Signer computes AWS Signature Version 4 authorization for outbound HTTP
requests, independent of the client used to send them."""

from __future__ import annotations

from ._credentials import Credentials
from ._http import URI, Field, Fields, SigningRequest
from .canonical import CanonicalContext, ParsedRequest
from .exceptions import BaseSigningException, ChecksumConstructionError
from .signers import SigV4Signer, SigV4SigningProperties

__license__ = "Apache-2.0"
__version__ = "0.1.0"

__all__ = (
    "URI",
    "BaseSigningException",
    "CanonicalContext",
    "ChecksumConstructionError",
    "Credentials",
    "Field",
    "Fields",
    "ParsedRequest",
    "SigV4Signer",
    "SigV4SigningProperties",
    "SigningRequest",
)
