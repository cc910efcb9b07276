"""
MyPA · Configuration system.

Loads configuration from:
  1. Defaults (defined here)
  2. ~/.mypa/config.yaml (overrides defaults)
  3. Environment variables MYPA_* (overrides everything)

Automatically creates the ~/.mypa/ directory structure on first start.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Literal
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from mypa.core.errors import ConfigError

log = logging.getLogger(__name__)

# ============================================================================
# Konfigurationsmodelle
# ============================================================================


class SchedulerConfig(BaseModel):
    """Scheduler-Engine Einstellungen."""

    tick_interval_seconds: int = Field(default=60, ge=1, le=3600)
    """Abstand zwischen zwei Scan-Zyklen. Zusätzlich läuft beim Start
    sofort ein Zyklus (Catch-up nach Downtime)."""

    max_search_minutes: int = Field(default=7 * 24 * 60, ge=1, le=366 * 24 * 60)
    """Obergrenze der minütlichen Suche im Cron-Evaluator. Default: eine Woche."""

    misfire_grace_seconds: int = Field(default=30, ge=1, le=3600)
    """Wie spät ein Tick noch ausgeführt wird, bevor APScheduler ihn verwirft."""


class DatabaseConfig(BaseModel):
    """Datenbank-Konfiguration."""

    db_file: str = "mypa.db"  # Relativ zu mypa_home


class LoggingConfig(BaseModel):
    """Logging-Konfiguration."""

    level: str = "INFO"
    json_logs: bool = False
    console: bool = True


# ============================================================================
# Haupt-Konfiguration
# ============================================================================


class MyPAConfig(BaseModel):
    """Complete MyPA configuration.

    Loaded once at startup and then used throughout the entire system.
    """

    version: str = "0.4.0"

    # Betriebsmodus: nur persönliche Instanzen betreiben einen Scheduler
    instance_mode: Literal["personal", "team"] = Field(
        default="team",
        description="'personal' = Single-User-Instanz mit Scheduler, 'team' = Team-Hub ohne Scheduler",
    )

    timezone: str = Field(
        default="UTC",
        description="IANA-Zeitzone, in der Cron-Felder ausgewertet werden",
    )

    mypa_home: Path = Field(default_factory=lambda: Path.home() / ".mypa")

    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, value: str) -> str:
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            msg = f"Unbekannte Zeitzone: {value!r}"
            raise ValueError(msg) from exc
        return value

    # ---- Mode Gate ----

    def is_personal_mode(self) -> bool:
        """True wenn diese Instanz den Scheduler betreiben soll."""
        return self.instance_mode == "personal"

    def is_team_mode(self) -> bool:
        return self.instance_mode == "team"

    # ---- Pfade ----

    @property
    def tzinfo(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)

    @property
    def config_file(self) -> Path:
        return self.mypa_home / "config.yaml"

    @property
    def db_path(self) -> Path:
        return self.mypa_home / self.database.db_file

    @property
    def logs_dir(self) -> Path:
        return self.mypa_home / "logs"


# ============================================================================
# Config-Laden
# ============================================================================


def _merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Rekursives Überlagern: Sektionen werden gemischt, Blätter ersetzt."""
    merged = dict(base)
    for key, value in override.items():
        current = merged.get(key)
        merged[key] = _merge(current, value) if isinstance(current, dict) and isinstance(value, dict) else value
    return merged


def _read_yaml(path: Path) -> dict[str, Any]:
    """Liest config.yaml. Fehlt, leer oder kaputt = ``{}`` (mit Warnung)."""
    if not path.exists():
        return {}
    try:
        loaded = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        log.warning("Fehlerhafte config.yaml wird ignoriert (%s): %s", path, exc)
        return {}
    return loaded if isinstance(loaded, dict) else {}


def _env_overrides() -> dict[str, Any]:
    """Sammelt MYPA_* Umgebungsvariablen als verschachteltes Dict.

    Konvention: MYPA_SECTION_KEY → data["section"]["key"]
    Beispiel: MYPA_SCHEDULER_TICK_INTERVAL_SECONDS → data["scheduler"]["tick_interval_seconds"]

    Top-Level-Felder mit Unterstrich (MYPA_INSTANCE_MODE) werden zuerst
    geprüft, damit sie nicht als Sektion "instance" interpretiert werden.
    """
    prefix = "MYPA_"
    data: dict[str, Any] = {}
    sections = {
        name for name, field in MyPAConfig.model_fields.items()
        if isinstance(field.annotation, type) and issubclass(field.annotation, BaseModel)
    }
    top_level = set(MyPAConfig.model_fields) - sections

    for key, value in os.environ.items():
        if not key.startswith(prefix):
            continue
        name = key[len(prefix):].lower()
        if name in top_level:
            data[name] = value
            continue

        section, _, leaf_key = name.partition("_")
        if section not in sections or not leaf_key:
            log.debug("Unbekannte Umgebungsvariable ignoriert: %s", key)
            continue
        node = data.setdefault(section, {})
        if isinstance(node, dict):
            node[leaf_key] = value
    return data


def load_config(config_path: Path | None = None) -> MyPAConfig:
    """Lädt die Konfiguration.

    Reihenfolge (spätere überschreiben frühere):
      1. Defaults (in den Pydantic-Modellen)
      2. config.yaml (wenn vorhanden)
      3. MYPA_* Umgebungsvariablen

    Args:
        config_path: Expliziter Pfad zur config.yaml. Wenn None: ~/.mypa/config.yaml

    Returns:
        Vollständig validierte MyPAConfig.

    Raises:
        ConfigError: Wenn die zusammengeführten Werte ungültig sind.
    """
    if config_path is None:
        config_path = Path.home() / ".mypa" / "config.yaml"

    data = _merge(_read_yaml(config_path), _env_overrides())

    try:
        return MyPAConfig(**data)
    except ValidationError as exc:
        msg = f"Ungültige Konfiguration ({config_path}): {exc.error_count()} Fehler"
        raise ConfigError(msg, details={"errors": exc.errors(include_url=False)}) from exc


# ============================================================================
# Verzeichnisstruktur erstellen
# ============================================================================


_DEFAULT_CONFIG = """\
# MyPA · Hauptkonfiguration
# Generiert beim ersten Start. Anpassen nach Bedarf.

# personal = Scheduler aktiv, team = kein Scheduler
instance_mode: team
timezone: UTC

scheduler:
  tick_interval_seconds: 60
  max_search_minutes: 10080
  misfire_grace_seconds: 30

database:
  db_file: mypa.db

logging:
  level: INFO
  json_logs: false
  console: true
"""


def ensure_directory_structure(config: MyPAConfig) -> list[str]:
    """Erstellt die ~/.mypa/ Verzeichnisstruktur.

    Idempotent -- kann beliebig oft aufgerufen werden.
    Erstellt nur was fehlt, überschreibt nie vorhandene Dateien.

    Returns:
        Liste der neu erstellten Pfade (für Logging).
    """
    created: list[str] = []

    for d in (config.mypa_home, config.logs_dir, config.db_path.parent):
        if not d.exists():
            d.mkdir(parents=True, exist_ok=True)
            created.append(str(d))

    if not config.config_file.exists():
        config.config_file.write_text(_DEFAULT_CONFIG, encoding="utf-8")
        created.append(str(config.config_file))

    return created
