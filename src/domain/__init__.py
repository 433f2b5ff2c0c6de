"""Domain layer - settings models, profiles and errors."""
from domain.models import EngineSettings
