from pathlib import Path
from typing import Annotated, Literal

from pydantic import AliasChoices, BaseModel, Field, field_validator, model_validator

from shared.constants import (
    BATCH_CONCURRENCY,
    DEFAULT_CACHE_MAX_TILES,
    DEFAULT_MAX_DIMENSION,
    TILE_READ_BACKOFF_S,
    TILE_READ_RETRIES,
    EdgeMode,
    Interpolation,
    default_interpolation,
)


class DirectorySource(BaseModel):
    """Каталог с файлами тайлов, отбираются по шаблону имени листа."""

    kind: Literal['directory'] = 'directory'
    path: Path
    recursive: bool = True


class ManifestSource(BaseModel):
    """Явный упорядоченный список путей к тайлам."""

    kind: Literal['manifest'] = 'manifest'
    paths: list[Path] = Field(default_factory=list)


CatalogSource = Annotated[
    DirectorySource | ManifestSource,
    Field(discriminator='kind'),
]


class CatalogSettings(BaseModel):
    model_config = {'extra': 'ignore'}

    source: CatalogSource
    # Потолок числа строк/столбцов в заголовке (защита от испорченных файлов)
    max_dimension: int = DEFAULT_MAX_DIMENSION

    @field_validator('max_dimension')
    @classmethod
    def validate_max_dimension(cls, v: int) -> int:
        if v <= 0:
            msg = 'max_dimension должен быть положительным'
            raise ValueError(msg)
        return v


class CacheSettings(BaseModel):
    """Capacity of the raster cache: tile count, byte budget, or both."""

    model_config = {'extra': 'ignore', 'populate_by_name': True}

    max_tiles: int | None = Field(
        default=None,
        validation_alias=AliasChoices('max_tiles', 'maxTiles'),
    )
    max_bytes: int | None = Field(
        default=None,
        validation_alias=AliasChoices('max_bytes', 'maxBytes'),
    )
    # Повторы чтения при временных ошибках ввода-вывода
    read_retries: int = TILE_READ_RETRIES
    read_backoff_s: float = TILE_READ_BACKOFF_S

    @field_validator('max_tiles', 'max_bytes')
    @classmethod
    def validate_capacity(cls, v: int | None) -> int | None:
        if v is not None and v <= 0:
            msg = 'Ёмкость кэша должна быть положительной'
            raise ValueError(msg)
        return v

    @field_validator('read_retries')
    @classmethod
    def validate_retries(cls, v: int) -> int:
        return max(0, int(v))

    @field_validator('read_backoff_s')
    @classmethod
    def validate_backoff(cls, v: float) -> float:
        return max(0.0, float(v))

    @model_validator(mode='after')
    def require_capacity(self) -> 'CacheSettings':
        if self.max_tiles is None and self.max_bytes is None:
            msg = 'Укажите max_tiles и/или max_bytes'
            raise ValueError(msg)
        return self


class QuerySettings(BaseModel):
    model_config = {'extra': 'ignore'}

    interpolation: Interpolation = default_interpolation()
    edge_mode: EdgeMode = EdgeMode.REDUCE
    # Сколько групп тайлов пакетного запроса обрабатывать одновременно
    batch_concurrency: int = BATCH_CONCURRENCY
    # Таймаут ожидания загрузки тайла (секунды), None означает без ограничения
    tile_timeout_s: float | None = None

    @field_validator('batch_concurrency')
    @classmethod
    def validate_concurrency(cls, v: int) -> int:
        return max(1, int(v))

    @field_validator('tile_timeout_s')
    @classmethod
    def validate_timeout(cls, v: float | None) -> float | None:
        if v is not None and v <= 0:
            msg = 'tile_timeout_s должен быть положительным'
            raise ValueError(msg)
        return v


class LoggingSettings(BaseModel):
    model_config = {'extra': 'ignore'}

    level: str = 'INFO'
    file: Path | None = None

    @field_validator('level')
    @classmethod
    def validate_level(cls, v: str) -> str:
        level = str(v).upper()
        if level not in ('DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'):
            msg = f'Неизвестный уровень логирования: {v}'
            raise ValueError(msg)
        return level


class EngineSettings(BaseModel):
    """
    Все настройки движка высот, собранные в одну модель.

    Секции TOML профиля: [catalog], [cache], [query], [logging].
    """

    model_config = {'extra': 'ignore'}

    catalog: CatalogSettings
    cache: CacheSettings = Field(
        default_factory=lambda: CacheSettings(max_tiles=DEFAULT_CACHE_MAX_TILES)
    )
    query: QuerySettings = Field(default_factory=QuerySettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
