"""
MyPA · Scheduler -- Entry Point.

Usage: mypa
       mypa --config /path/to/config.yaml
       mypa --once
       mypa --next-run "0 9 * * 1-5"
       mypa --version
       python -m mypa
"""

from __future__ import annotations

import argparse
import asyncio
from datetime import datetime
from pathlib import Path

from dotenv import load_dotenv

from mypa import __version__


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Kommandozeilen-Argumente parsen."""
    parser = argparse.ArgumentParser(
        prog="mypa",
        description="MyPA · Scheduler -- Cron-Jobs für persönliche Assistenten-Instanzen",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"MyPA v{__version__}",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Pfad zur config.yaml (Default: ~/.mypa/config.yaml)",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default=None,
        help="Log-Level überschreiben",
    )
    parser.add_argument(
        "--init-only",
        action="store_true",
        help="Nur Verzeichnisstruktur und Schema erstellen, nicht starten",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Genau einen Scan ausführen und beenden",
    )
    parser.add_argument(
        "--next-run",
        metavar="EXPR",
        default=None,
        help="Nächsten Ausführungszeitpunkt eines Cron-Ausdrucks ausgeben",
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> None:
    """Haupteintrittspunkt für den MyPA-Scheduler."""
    args = parse_args(argv)

    # 0. .env-Datei laden: zuerst Projekt-.env, dann User-.env (User überschreibt)
    load_dotenv(Path(".env"), override=False)
    load_dotenv(Path.home() / ".mypa" / ".env", override=True)

    # 1. Konfiguration laden
    from mypa.config import ensure_directory_structure, load_config

    config = load_config(args.config)

    if args.next_run is not None:
        from mypa.scheduler.cron import compute_next_run, is_valid_cron_expression

        if not is_valid_cron_expression(args.next_run):
            raise SystemExit(f"Ungültiger Cron-Ausdruck: {args.next_run!r}")
        next_run = compute_next_run(
            args.next_run,
            datetime.now(config.tzinfo),
            max_iterations=config.scheduler.max_search_minutes,
        )
        print(next_run.isoformat())
        return

    # 2. Verzeichnisstruktur sicherstellen
    created = ensure_directory_structure(config)

    # 3. Logging initialisieren
    from mypa.utils.logging import bind_context, clear_context, get_logger, setup_logging

    log_level = args.log_level or config.logging.level
    setup_logging(
        level=log_level,
        log_dir=config.logs_dir,
        json_logs=config.logging.json_logs,
        console=config.logging.console,
    )

    bind_context(instance_mode=config.instance_mode)
    log = get_logger("mypa")
    log.info(
        "mypa_starting",
        version=__version__,
        home=str(config.mypa_home),
        log_level=log_level,
    )
    for path in created:
        log.info("created_path", path=path)

    async def run() -> None:
        """Öffnet die Datenbank und betreibt den Scheduler bis zum Abbruch."""
        from mypa.db import create_backend
        from mypa.scheduler import ScheduledJobStore, SchedulerEngine

        backend = create_backend(config)
        store = ScheduledJobStore(backend)
        engine = SchedulerEngine.from_config(config, store)

        try:
            await store.ensure_schema()

            if args.init_only:
                log.info("init_complete", paths_created=len(created), db_path=str(config.db_path))
                return

            if args.once:
                updates = await engine.tick()
                log.info("single_tick_complete", jobs_run=len(updates))
                return

            if not await engine.start():
                if config.is_team_mode():
                    log.info("mypa_idle", reason="team instances do not run scheduled jobs")
                return

            log.info("mypa_ready", next_tick=str(engine.get_next_tick_time()))
            await asyncio.Event().wait()
        finally:
            # Laufender Scan muss vor backend.close() fertig sein
            await engine.stop(wait=True)
            await backend.close()
            log.info("mypa_stopped")

    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        log.info("mypa_shutdown_by_user")
    finally:
        clear_context()


if __name__ == "__main__":
    main()
