"""Campaign dispatch service package.

Having this file ensures the package is recognized during test discovery
and when installed in editable mode. High-level exports can live here if
they are ever needed.
"""

__all__: list[str] = []
