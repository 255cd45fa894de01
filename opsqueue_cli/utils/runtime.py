"""Helpers for running queue operations from synchronous Typer commands"""

import asyncio
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from typing import TypeVar

import typer

from opsqueue.config.logging import bind_trigger_context, setup_logging
from opsqueue.config.settings import Settings
from opsqueue.infra.database import Database
from opsqueue.v1.core.exceptions import OpsQueueException

from .formatting import print_error

T = TypeVar("T")


def load_settings() -> Settings:
    """Fresh settings from the environment for this invocation."""
    return Settings()


@asynccontextmanager
async def database_scope(settings: Settings) -> AsyncIterator[Database]:
    database = Database(settings)
    try:
        yield database
    finally:
        await database.close()


def run_command(
    operation: str, action: Callable[[Settings, Database], Awaitable[T]]
) -> T:
    """
    Run ``action`` against a fresh database and exit non-zero on queue errors.

    Each CLI invocation wakes, does its bounded work, and exits.
    """
    settings = load_settings()
    setup_logging()
    bind_trigger_context("cli", operation=operation)

    async def _run() -> T:
        async with database_scope(settings) as database:
            return await action(settings, database)

    try:
        return asyncio.run(_run())
    except OpsQueueException as e:
        print_error(f"{operation} failed: {e.message}")
        raise typer.Exit(1) from None
