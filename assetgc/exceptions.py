# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Asset GC Exceptions - Custom exceptions for the assetgc package.
"""


class AssetGCError(Exception):
    """Base exception for all asset garbage collection errors."""

    def __init__(self, message: str, details: dict | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class ConfigurationError(AssetGCError):
    """Raised when configuration is invalid."""

    pass


class BootstrapNotFoundError(AssetGCError):
    """Raised when the bootstrap stack or one of its resources is missing."""

    pass


class StackRefreshError(AssetGCError):
    """Raised when deployed stack templates cannot be fetched."""

    pass


class RefreshTimeoutError(AssetGCError):
    """Raised when the active asset cache cannot be made fresh in time."""

    pass


class DeletionAbortedError(AssetGCError):
    """Raised when the user declines a deletion prompt."""

    pass


class AssetStateError(AssetGCError):
    """Raised when an asset is queried before its tags were fetched."""

    pass


class S3OperationError(AssetGCError):
    """Raised when S3 operations fail."""

    pass


class ECROperationError(AssetGCError):
    """Raised when ECR operations fail."""

    pass
