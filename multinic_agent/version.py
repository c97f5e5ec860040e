"""Version information for the agent.

Read from the VERSION file shipped in the package, falling back to the
installed distribution metadata.
"""

from importlib import metadata
from pathlib import Path

DISTRIBUTION = "multinic-agent"


def get_version() -> str:
    """Get the agent version (e.g. "0.1.0"), or "0.0.0" if unknown."""
    version_file = Path(__file__).parent / "VERSION"
    if version_file.exists():
        try:
            version = version_file.read_text().strip()
            if version:
                return version.removeprefix("v")
        except OSError:
            pass

    try:
        return metadata.version(DISTRIBUTION)
    except metadata.PackageNotFoundError:
        return "0.0.0"


__version__ = get_version()
