"""Command line entry point for iptvdeck."""
from __future__ import annotations

import argparse
import asyncio
from pathlib import Path
from typing import Iterable, List, Optional

from . import __version__
from .api import ApiError, PanelClient
from .app import DeckApp
from .config import (
    CONFIG_PATH,
    PanelConfig,
    apply_environment,
    load_config,
    normalize_base_url,
    save_config,
)
from .logging_utils import configure_logging, get_logger
from .playlist import (
    PlaylistEntry,
    PlaylistError,
    format_grouped_listing,
    load_playlist,
    parse_playlist_text,
)

log = get_logger(__name__)


def parse_args(argv: Iterable[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="IPTV panel operator console")
    parser.add_argument(
        "--version", action="version", version=f"%(prog)s {__version__}"
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=CONFIG_PATH,
        help="Path to configuration file (default: %(default)s)",
    )
    parser.add_argument(
        "--base-url",
        default=None,
        help="Backend URL, overriding the configuration and IPTVDECK_BASE_URL",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        help="Override IPTVDECK_LOG_LEVEL for this invocation",
    )
    parser.add_argument(
        "--log-file",
        type=Path,
        default=None,
        help=(
            "Write logs to this file instead of the default or"
            " IPTVDECK_LOG_FILE"
        ),
    )
    parser.add_argument(
        "--export-dir",
        type=Path,
        default=None,
        help="Directory exported playlists are written to (default: current directory)",
    )
    parser.add_argument(
        "--show-playlist",
        metavar="USERNAME",
        default=None,
        help="Print the stored playlist of USERNAME grouped by category and exit.",
    )
    parser.add_argument(
        "--playlist-file",
        metavar="SOURCE",
        default=None,
        help=(
            "With --show-playlist, read the playlist from this path or URL"
            " instead of the backend"
        ),
    )
    parser.add_argument(
        "--save-config",
        action="store_true",
        help="Write the resolved configuration to --config and exit.",
    )
    return parser.parse_args(argv)


def _resolve_config(args: argparse.Namespace) -> PanelConfig:
    config = apply_environment(load_config(args.config))
    if args.base_url:
        config.base_url = normalize_base_url(args.base_url)
    return config


def _print_user_playlist(
    config: PanelConfig, username: str, source: Optional[str] = None
) -> int:
    """Write the grouped channel listing for *username* to stdout.

    When *source* is given the playlist is read from that file or URL instead
    of the stored copy on the backend.
    """

    if source is not None:
        try:
            entries = load_playlist(source, user_agent=config.user_agent)
        except PlaylistError as exc:
            print(f"Failed to read playlist: {exc}")
            return 1
        return _print_entries(username, entries)

    client = PanelClient(
        config.base_url, timeout=config.request_timeout, user_agent=config.user_agent
    )
    try:
        text = asyncio.run(client.fetch_user_playlist(username))
    except ApiError as exc:
        print(f"Failed to fetch playlist for {username}: {exc}")
        return 1
    if text is None:
        print(f"User '{username}' has no generated playlist yet.")
        return 1
    return _print_entries(username, parse_playlist_text(text))


def _print_entries(username: str, entries: List[PlaylistEntry]) -> int:
    if not entries:
        print("No channels found in the playlist.")
        return 0
    print(format_grouped_listing(username, entries))
    return 0


def main(argv: Iterable[str] | None = None) -> None:
    args = parse_args(argv)
    configure_logging(
        level=args.log_level,
        log_file=str(args.log_file) if args.log_file is not None else None,
    )
    log.info("CLI invoked with config=%s", args.config)
    config = _resolve_config(args)
    if args.save_config:
        save_config(config, args.config)
        print(f"Configuration saved to {args.config}")
        return
    if args.show_playlist:
        status = _print_user_playlist(config, args.show_playlist, args.playlist_file)
        if status:
            raise SystemExit(status)
        return

    app = DeckApp(config, export_dir=args.export_dir)
    log.info("Launching Textual application against %s", config.base_url)
    try:
        app.run()
    except KeyboardInterrupt:
        log.info("Keyboard interrupt received; exiting application")
        if app.is_running:
            app.exit()
        raise SystemExit(130) from None


if __name__ == "__main__":  # pragma: no cover
    main()
