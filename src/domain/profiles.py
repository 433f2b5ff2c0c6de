import logging
import os
from pathlib import Path

import tomlkit

from domain.models import DirectorySource, EngineSettings, ManifestSource
from shared.constants import PROFILES_DIR

logger = logging.getLogger(__name__)


def _user_profiles_dir() -> Path:
    """
    Determine profiles directory.

    1) If <project_root>/configs/profiles exists, use it (run-from-repo setups).
    2) Otherwise fall back to the per-user config directory:
       $XDG_CONFIG_HOME/dem0050/profiles or ~/.config/dem0050/profiles.
    """
    project_root = Path(__file__).resolve().parent.parent.parent
    local_profiles = project_root / PROFILES_DIR
    if local_profiles.exists():
        return local_profiles

    return (
        Path(os.getenv('XDG_CONFIG_HOME') or (Path.home() / '.config'))
        / 'dem0050'
        / 'profiles'
    )


def ensure_profiles_dir() -> Path:
    profiles_dir = _user_profiles_dir()
    profiles_dir.mkdir(parents=True, exist_ok=True)
    return profiles_dir


def list_profiles() -> list[str]:
    """Список имён профилей без расширения."""
    folder = ensure_profiles_dir()
    return sorted(p.stem for p in folder.glob('*.toml') if p.is_file())


def profile_path(name: str) -> Path:
    """Путь к файлу профиля по имени."""
    return ensure_profiles_dir() / f'{name}.toml'


def _resolve_relative(settings: EngineSettings, base: Path) -> EngineSettings:
    # Относительные пути в профиле считаются от каталога самого профиля
    source = settings.catalog.source
    if isinstance(source, DirectorySource) and not source.path.is_absolute():
        source = source.model_copy(update={'path': base / source.path})
    elif isinstance(source, ManifestSource):
        source = source.model_copy(
            update={'paths': [p if p.is_absolute() else base / p for p in source.paths]}
        )
    catalog = settings.catalog.model_copy(update={'source': source})
    return settings.model_copy(update={'catalog': catalog})


def load_profile(name_or_path: str | Path) -> EngineSettings:
    """
    Загрузка и валидация профиля TOML -> EngineSettings.

    Поддерживает как имя профиля (без .toml) из каталога profiles,
    так и абсолютный/относительный путь до TOML файла.
    """
    p = Path(name_or_path)
    path = p if p.suffix.lower() == '.toml' and p.exists() else profile_path(str(name_or_path))
    if not path.exists():
        msg = f'Профиль не найден: {path}'
        raise FileNotFoundError(msg)
    text = path.read_text(encoding='utf-8')
    data = tomlkit.parse(text).unwrap()
    settings = EngineSettings.model_validate(data)
    logger.info(
        'Profile %s loaded: source=%s interpolation=%s',
        path.stem,
        settings.catalog.source.kind,
        settings.query.interpolation.value,
    )
    return _resolve_relative(settings, path.parent)


def save_profile(name: str, settings: EngineSettings) -> Path:
    """Сохранение профиля в TOML (без атомарности и бэкапов)."""
    path = profile_path(name)
    # В TOML нет null: поля None не записываются
    data = settings.model_dump(mode='json', exclude_none=True)
    text = tomlkit.dumps(data)
    path.write_text(text, encoding='utf-8')
    return path


def delete_profile(name: str) -> None:
    """Удаление файла профиля, если он существует."""
    path = profile_path(name)
    if path.exists():
        path.unlink()
