"""Delete finished pipeline runs that started more than N days ago."""

from __future__ import annotations

import asyncio
from datetime import timedelta

import typer

from recipe_automation.config import get_settings
from recipe_automation.database import close_database
from recipe_automation.services.run_history import RunHistoryService
from recipe_automation.utils.timestamps import utc_now

app = typer.Typer(add_completion=False)


async def delete_old_runs(days: int) -> None:
    settings = get_settings()
    started_at = utc_now()
    cutoff = started_at - timedelta(days=days)

    history = RunHistoryService(max_page_size=settings.HISTORY_MAX_PAGE_SIZE)
    try:
        deleted_count = await history.delete_runs_before(cutoff)
    finally:
        await close_database()

    duration_ms = round((utc_now() - started_at).total_seconds() * 1000, 2)
    typer.echo(
        "Run cleanup completed "
        f"(database={settings.DATABASE_URL!s}, cutoff={cutoff.isoformat()}, "
        f"deleted={deleted_count}, duration_ms={duration_ms})"
    )


@app.command()
def main(
    days: int = typer.Option(
        30,
        "--days",
        min=1,
        help="Keep runs that started within this many days.",
    ),
) -> None:
    """Delete terminal runs older than the retention window; RUNNING runs stay."""

    asyncio.run(delete_old_runs(days))


if __name__ == "__main__":
    app()
