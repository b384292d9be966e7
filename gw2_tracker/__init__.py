"""gw2-progress-tracker — Multi-account Guild Wars 2 progress tracker."""
from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("gw2-progress-tracker")
except PackageNotFoundError:
    __version__ = "0.0.0"
