"""CLI entry point for billdrop."""

import dataclasses
import logging
from pathlib import Path

import click
from dotenv import load_dotenv

from billdrop.config import ScanConfig
from billdrop.storage.db import SubscriptionDatabase

logger = logging.getLogger(__name__)


@dataclasses.dataclass
class AppContext:
    """Shared state handed to every command via ``ctx.obj``."""

    config: ScanConfig
    db: SubscriptionDatabase

    @property
    def user_id(self) -> str:
        return self.config.user_email or "local"

    def close(self) -> None:
        self.db.close()


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Log progress at INFO level.")
@click.option(
    "--db",
    "db_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="SQLite file (default: $BILLDROP_DB_PATH or data/billdrop.db).",
)
@click.pass_context
def cli(ctx: click.Context, verbose: bool, db_path: Path | None) -> None:
    """billdrop — find subscription charges in your mailbox."""
    load_dotenv()
    logging.basicConfig(
        level=logging.INFO if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
    )
    config = ScanConfig.from_env()
    if db_path is not None:
        config.db_path = db_path
    ctx.obj = AppContext(config=config, db=SubscriptionDatabase(config.db_path))
    ctx.call_on_close(ctx.obj.close)


# Import and register commands after cli is defined to avoid circular imports.
from billdrop.cli.commands import (  # noqa: E402
    candidates,
    confirm,
    dismiss,
    extract,
    list_subscriptions,
    scan,
    track,
)

cli.add_command(scan)
cli.add_command(candidates)
cli.add_command(extract)
cli.add_command(list_subscriptions)
cli.add_command(confirm)
cli.add_command(dismiss)
cli.add_command(track)
