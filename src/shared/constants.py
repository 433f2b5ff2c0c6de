from enum import Enum

# Сигнатура файла тайла DEM 0050
TILE_MAGIC = b'D050'

# Версии формата: 1 без контрольной суммы, 2 с CRC-32 полезной нагрузки
TILE_FORMAT_VERSION_PLAIN = 1
TILE_FORMAT_VERSION_CRC = 2
SUPPORTED_FORMAT_VERSIONS = (TILE_FORMAT_VERSION_PLAIN, TILE_FORMAT_VERSION_CRC)

# Коды порядка байт в заголовке
BYTE_ORDER_LITTLE = 0
BYTE_ORDER_BIG = 1

# Расширение файлов тайлов
TILE_FILE_SUFFIX = '.d50'

# Имя листа: [префикс_]EEE_NNN[_eee_nnn].d50
# EEE_NNN километры левого верхнего отсчёта, eee_nnn смещение в метрах внутри километра
SHEET_NAME_PATTERN = (
    r'^(?:[A-Za-z0-9]+_)?(?P<easting_km>\d{3,4})_(?P<northing_km>\d{3,4})'
    r'(?:_(?P<easting_off>\d{3})_(?P<northing_off>\d{3}))?\.d50$'
)

# Размер ячейки ключа листа (метры)
SHEET_KEY_UNIT_M = 1000

# Сколько байт читать для разбора заголовка (с запасом)
HEADER_PEEK_BYTES = 64

# Верхняя граница числа строк/столбцов, защита от испорченных заголовков
DEFAULT_MAX_DIMENSION = 20_000

# Значение «нет данных» по умолчанию для float32 тайлов
DEFAULT_NODATA_F32 = -9999.0
# Значение «нет данных» по умолчанию для целочисленных тайлов
DEFAULT_NODATA_INT = -32768

# Шаг сетки DEM 0050 (метры)
DEM0050_SPACING_M = 50.0

# --- Кэш растров
DEFAULT_CACHE_MAX_TILES = 64
# Потоки общего пула чтения и декодирования
CACHE_DECODE_WORKERS = 4
# Повторы чтения при временных сбоях ввода-вывода
TILE_READ_RETRIES = 3
# Базовая задержка между повторами (секунды), растёт экспоненциально
TILE_READ_BACKOFF_S = 0.05

# --- Запросы высот
# Параллелизм пакетных запросов (групп тайлов одновременно)
BATCH_CONCURRENCY = 8
# Эпсилон «прилипания» дробной позиции к узлу сетки
GRID_SNAP_EPSILON = 1e-9
# Допуск сравнения координат краёв соседних тайлов (метры)
EDGE_MATCH_TOLERANCE_M = 1e-6
# Допуск попадания точки xyz в узел сетки (доля шага)
XYZ_GRID_TOLERANCE = 1e-6
# Параметр ядра Кейса для бикубической интерполяции
BICUBIC_KEYS_A = -0.5

# --- EPSG коды
WGS84_CODE = 4326
D96_TM_CODE = 3794

# --- Примерные границы применимости D96/TM (территория Словении с запасом)
D96_VALID_LAT_MIN = 45.2
D96_VALID_LAT_MAX = 47.0
D96_VALID_LON_MIN = 13.2
D96_VALID_LON_MAX = 16.7

PROFILES_DIR = 'configs/profiles'

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


class Interpolation(str, Enum):
    NEAREST = 'nearest'
    BILINEAR = 'bilinear'
    BICUBIC = 'bicubic'


class EdgeMode(str, Enum):
    """Behaviour when an interpolation stencil needs a tile missing from the catalog."""

    REDUCE = 'reduce'  # Понизить порядок интерполяции
    STRICT = 'strict'  # Ошибка EdgeOfCoverage


class Direction(str, Enum):
    NORTH = 'north'
    SOUTH = 'south'
    EAST = 'east'
    WEST = 'west'

    @property
    def opposite(self) -> 'Direction':
        return _OPPOSITE[self]


_OPPOSITE = {
    Direction.NORTH: Direction.SOUTH,
    Direction.SOUTH: Direction.NORTH,
    Direction.EAST: Direction.WEST,
    Direction.WEST: Direction.EAST,
}


def default_interpolation() -> Interpolation:
    return Interpolation.BILINEAR
