"""CLI entry point for gw2-progress-tracker."""
import argparse
import asyncio
import logging
import signal
import sys
from pathlib import Path

from .config import TrackerConfig, load_config
from .errors import TrackerError
from .main import TrackerApp


def setup_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="GW2 Progress Tracker — multi-account achievement tracking")
    parser.add_argument("--config", type=str, help="Path to config.yaml")
    parser.add_argument("--log-level", type=str, default="INFO", choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    parser.add_argument("--validate-config", action="store_true", help="Validate config and exit")

    sub = parser.add_subparsers(dest="command")

    users = sub.add_parser("users", help="Manage tracked accounts")
    users_sub = users.add_subparsers(dest="users_command", required=True)
    add = users_sub.add_parser("add", help="Add an account by API key")
    add.add_argument("name")
    add.add_argument("api_key")
    remove = users_sub.add_parser("remove", help="Remove an account and all of its data")
    remove.add_argument("user_id")
    rename = users_sub.add_parser("rename", help="Rename an account")
    rename.add_argument("user_id")
    rename.add_argument("name")
    users_sub.add_parser("list", help="List tracked accounts")

    sub.add_parser("refresh", help="Re-fetch achievement, mastery and map catalogs")
    sub.add_parser("sync", help="Sync progress for every account")

    wp = sub.add_parser("waypoints", help="Search waypoints on a continent floor")
    wp.add_argument("query", nargs="?", default="")
    wp.add_argument("--continent", type=int, default=1)
    wp.add_argument("--floor", type=int, default=1)

    sub.add_parser("sweep-cache", help="Purge expired cache entries")
    sub.add_parser("run", help="Run periodic sync and cache sweep until interrupted")
    return parser.parse_args(argv)


def resolve_config(config_path: str | None, logger: logging.Logger) -> TrackerConfig:
    """Explicit path, else ./config.yaml or the user config dir, else defaults."""
    if config_path:
        return load_config(config_path)
    for candidate in [
        "./config.yaml",
        str(Path.home() / ".config" / "gw2-tracker" / "config.yaml"),
    ]:
        if Path(candidate).exists():
            logger.debug("Using config %s", candidate)
            return load_config(candidate)
    logger.debug("No config file found; using defaults")
    return TrackerConfig()


async def run_command(app: TrackerApp, args: argparse.Namespace) -> int:
    if args.command == "users":
        if args.users_command == "add":
            user = await app.user_store.add_user(args.name, args.api_key)
            print(f"Added {user.name} ({user.account_name}) as {user.id}")
        elif args.users_command == "remove":
            await app.remove_user(args.user_id)
            print(f"Removed {args.user_id}")
        elif args.users_command == "rename":
            await app.user_store.rename_user(args.user_id, args.name)
            print(f"Renamed {args.user_id} to {args.name}")
        else:
            for u in app.user_store.users:
                print(f"{u.id}  {u.name:<20} {u.account_name or '-':<24} last synced: {u.last_synced or 'never'}")
        return 0

    if args.command == "refresh":
        await app.refresh_catalogs(force_refresh=True)
        failed = False
        for store in (app.achievement_store, app.mastery_store, app.map_store):
            print(f"{store.service.domain}: {len(store.items)} entries ({store.state.value})")
            if store.error:
                print(f"  error: {store.error}")
                failed = True
        return 1 if failed else 0

    if args.command == "sync":
        for report in await app.sync_all():
            print(f"{report.domain}: {len(report.succeeded)} synced, {len(report.failed)} failed")
            for user_id, message in report.failed.items():
                print(f"  {user_id}: {message}")
        return 0

    if args.command == "waypoints":
        for wp in await app.maps.search_waypoints(args.query, args.continent, args.floor):
            print(f"{wp.id:>6}  {wp.name:<40} {wp.map_name}")
        return 0

    if args.command == "sweep-cache":
        removed = await app.cache.sweep_expired()
        print(f"Removed {removed} expired cache entries")
        return 0

    return 0


async def main_async(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    setup_logging(args.log_level)
    logger = logging.getLogger("gw2_tracker")

    try:
        config = resolve_config(args.config, logger)
    except Exception as e:
        logger.error("Config validation failed: %s", e)
        return 1

    if args.validate_config:
        logger.info("Config is valid.")
        return 0

    app = TrackerApp(config, logger)

    if args.command == "run":
        # Signal handling (Unix only; Windows uses KeyboardInterrupt)
        loop = asyncio.get_running_loop()
        if sys.platform != "win32":
            for sig in (signal.SIGTERM, signal.SIGINT):
                loop.add_signal_handler(sig, app.stop)
        try:
            await app.run()
        except KeyboardInterrupt:
            pass
        finally:
            await app.close()
        return 0

    try:
        async with app:
            return await run_command(app, args)
    except TrackerError as e:
        logger.error("%s", e)
        return 1


def main() -> None:
    """Sync entry point for pyproject.toml [project.scripts]."""
    sys.exit(asyncio.run(main_async()))


if __name__ == "__main__":
    main()
