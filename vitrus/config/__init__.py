from .settings import DEFAULT_CONFIG_LOCATIONS, VitrusSettings, get_settings

__all__ = ["DEFAULT_CONFIG_LOCATIONS", "VitrusSettings", "get_settings"]
