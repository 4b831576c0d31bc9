from . import devices, notifications

__all__ = ["devices", "notifications"]
