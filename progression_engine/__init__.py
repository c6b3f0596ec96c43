"""progression-engine — XP, streaks, achievements, gems, challenges and leaderboards."""
from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("progression-engine")
except PackageNotFoundError:
    __version__ = "0.0.0"
