try:
    from importlib.metadata import version as _version

    __version__ = _version("spendscan")
except Exception:
    __version__ = "unknown"

__all__ = ["__version__"]
