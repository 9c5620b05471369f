# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Asset Stores - Garbage collection passes for the bootstrap bucket and repository.
"""

from assetgc.stores.ecr import collect_images
from assetgc.stores.s3 import collect_objects

__all__ = [
    "collect_images",
    "collect_objects",
]
