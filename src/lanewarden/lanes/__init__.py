"""Lane profile models, loader and default output schemas."""

from .loader import LaneCatalog, LaneProfileLoadError, LaneProfileLoader
from .models import LaneProfile
from .schemas import default_schema_for_lane

__all__ = [
    "LaneCatalog",
    "LaneProfile",
    "LaneProfileLoadError",
    "LaneProfileLoader",
    "default_schema_for_lane",
]
