from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import structlog
from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from openinsight.exceptions import ConfigurationError
from openinsight.models.domain import DataSource, Preset

logger = structlog.get_logger()

CONFIG_VERSION = "1.0.0"
CONFIG_FILENAME = "config.json"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ConfigDocument(BaseModel):
    """On-disk layout of ``config.json``."""

    model_config = ConfigDict(populate_by_name=True)

    version: str = CONFIG_VERSION
    last_modified: datetime = Field(default_factory=_utcnow, alias="lastModified")
    data_sources: list[DataSource] = Field(default_factory=list, alias="dataSources")
    presets: dict[str, list[Preset]] = Field(default_factory=dict)


class ConfigStore:
    """JSON-file store for data sources and saved query presets.

    A missing or unreadable file reads as an empty document.
    """

    def __init__(self, config_dir: str | Path) -> None:
        self._path = Path(config_dir) / CONFIG_FILENAME

    @property
    def path(self) -> Path:
        return self._path

    def _load(self) -> ConfigDocument:
        if not self._path.exists():
            return ConfigDocument()
        try:
            return ConfigDocument.model_validate(json.loads(self._path.read_text("utf-8")))
        except (OSError, json.JSONDecodeError, PydanticValidationError) as e:
            logger.warning("config_unreadable", path=str(self._path), error=str(e))
            return ConfigDocument()

    def _save(self, doc: ConfigDocument) -> None:
        doc.last_modified = _utcnow()
        payload: dict[str, Any] = doc.model_dump(mode="json", by_alias=True)
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._path.write_text(json.dumps(payload, indent=2), "utf-8")
        except OSError as e:
            raise ConfigurationError(
                f"Failed to save configuration: {e}", {"path": str(self._path)}
            ) from e

    # Data sources

    def load_data_sources(self) -> list[DataSource]:
        return list(self._load().data_sources)

    def get_data_source(self, source_id: str) -> DataSource | None:
        return next((s for s in self._load().data_sources if s.id == source_id), None)

    def add_data_source(self, source: DataSource) -> DataSource:
        doc = self._load()
        if any(s.id == source.id or s.name == source.name for s in doc.data_sources):
            raise ConfigurationError(
                "A data source with this name already exists", {"name": source.name}
            )
        doc.data_sources.append(source)
        self._save(doc)
        logger.info("data_source_added", source_id=source.id, type=source.type.value)
        return source

    def remove_data_source(self, source_id: str) -> bool:
        doc = self._load()
        remaining = [s for s in doc.data_sources if s.id != source_id]
        if len(remaining) == len(doc.data_sources):
            return False
        doc.data_sources = remaining
        self._save(doc)
        return True

    # Presets

    def load_presets(self, source_id: str) -> list[Preset]:
        return list(self._load().presets.get(source_id, []))

    def save_preset(self, source_id: str, name: str, sql: str) -> Preset:
        doc = self._load()
        presets = doc.presets.setdefault(source_id, [])
        if any(p.name == name for p in presets):
            raise ConfigurationError("A preset with this name already exists", {"name": name})
        preset = Preset(name=name, sql=sql)
        presets.append(preset)
        self._save(doc)
        logger.info("preset_saved", source_id=source_id, preset_id=preset.id)
        return preset

    def remove_preset(self, source_id: str, preset_id: str) -> bool:
        doc = self._load()
        presets = doc.presets.get(source_id)
        if not presets:
            return False
        remaining = [p for p in presets if p.id != preset_id]
        if len(remaining) == len(presets):
            return False
        doc.presets[source_id] = remaining
        self._save(doc)
        return True
