# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Asset GC Progress - Per-pass progress reporting through structlog.
"""

from dataclasses import dataclass, field
from typing import Iterable

import structlog

logger = structlog.get_logger()

_MIB = 1024 * 1024


@dataclass
class ProgressReporter:
    """
    Counts scanned, tagged and deleted assets for one store pass.

    Reporting is purely observational. While paused (e.g. during a
    confirmation prompt) counts are still updated but nothing is logged.
    """

    store: str
    total_assets: int = 0
    scanned: int = 0
    tagged: int = 0
    tagged_bytes: int = 0
    deleted: int = 0
    deleted_bytes: int = 0
    running: bool = field(default=False, init=False)

    def start(self) -> None:
        self.running = True

    def pause(self) -> None:
        self.running = False

    def resume(self) -> None:
        self.running = True

    def stop(self) -> None:
        self.running = False
        self._log("gc_progress_final", force=True)

    def report_scanned(self, count: int) -> None:
        self.scanned += count
        self._log("gc_progress")

    def report_tagged(self, assets: Iterable) -> None:
        for asset in assets:
            self.tagged += 1
            self.tagged_bytes += asset.size
        self._log("gc_progress")

    def report_deleted(self, assets: Iterable) -> None:
        for asset in assets:
            self.deleted += 1
            self.deleted_bytes += asset.size
        self._log("gc_progress")

    @property
    def percent_done(self) -> float:
        if not self.total_assets:
            return 100.0
        return round(min(self.scanned / self.total_assets, 1.0) * 100, 2)

    def _log(self, event: str, force: bool = False) -> None:
        if not (self.running or force):
            return
        logger.info(
            event,
            store=self.store,
            scanned=self.scanned,
            total=self.total_assets,
            percent=self.percent_done,
            tagged=self.tagged,
            tagged_mb=round(self.tagged_bytes / _MIB, 2),
            deleted=self.deleted,
            deleted_mb=round(self.deleted_bytes / _MIB, 2),
        )
