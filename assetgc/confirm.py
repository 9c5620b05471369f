# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Asset GC Confirmation - Ask before deleting a batch.
"""

import asyncio
from typing import TYPE_CHECKING, Awaitable, Callable, Sequence

import click

from assetgc.config import GCConfig
from assetgc.exceptions import DeletionAbortedError
from assetgc.progress import ProgressReporter

if TYPE_CHECKING:
    from assetgc.core import GCState

PromptFunc = Callable[[str], Awaitable[str]]

ACCEPTED_RESPONSES = ("yes", "y", "delete-all")


async def prompt_user(message: str) -> str:
    """Read one answer from stdin without blocking the event loop."""
    return await asyncio.to_thread(click.prompt, message, default="", show_default=False)


def build_confirmation_message(config: GCConfig, count: int) -> str:
    return "\n".join(
        [
            f"Found {count} assets to delete based off of the following criteria:",
            f"- assets have been isolated for > {config.rollback_buffer_days} days",
            f"- assets were created > {config.created_buffer_days} days ago",
            "",
            "Delete this batch (yes/no/delete-all)?",
        ]
    )


async def confirmation_prompt(
    config: GCConfig,
    state: "GCState",
    reporter: ProgressReporter,
    deletables: Sequence,
) -> None:
    """
    Confirm deletion of a batch.

    'delete-all' skips all later prompts of the same run.

    Raises:
        DeletionAbortedError: For any answer other than yes/y/delete-all
    """
    if state["confirm"]:
        reporter.pause()
        response = await state["prompt"](build_confirmation_message(config, len(deletables)))
        answer = (response or "").strip().lower()

        if answer not in ACCEPTED_RESPONSES:
            raise DeletionAbortedError(
                "Deletion aborted by user",
                details={"store": reporter.store, "batch_size": len(deletables)},
            )
        if answer == "delete-all":
            state["confirm"] = False

    reporter.resume()
