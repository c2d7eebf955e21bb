from fastapi import Depends

from .config import Settings, get_settings
from .errors import ServiceUnavailable


def check_maintenance(settings: Settings = Depends(get_settings)):
    if settings.maintenance_mode:
        raise ServiceUnavailable()
