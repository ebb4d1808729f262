"""Rebuild nginx from `nginx -V` output with additional modules, via a web API."""

__version__ = "0.1.0"