"""Version checking utilities for detecting a stale installed package."""

from pathlib import Path


def check_version_consistency() -> tuple[bool, str]:
    """Check if the runtime version matches the version in pyproject.toml.

    Returns:
        Tuple of (is_consistent, message). A missing pyproject.toml (for
        example in a wheel install) is reported as consistent.
    """
    from . import __version__ as runtime_version

    import tomllib

    pyproject_path = Path(__file__).parent.parent.parent / "pyproject.toml"

    if not pyproject_path.exists():
        return True, f"Version {runtime_version} (installed package)"

    try:
        with open(pyproject_path, "rb") as f:
            data = tomllib.load(f)
            source_version = data.get("project", {}).get("version", "unknown")
    except (OSError, tomllib.TOMLDecodeError) as e:
        return False, f"Failed to read version from pyproject.toml: {e}"

    if runtime_version != source_version:
        return False, (
            f"Version mismatch detected! "
            f"Runtime: {runtime_version}, Source: {source_version}. "
            f"Reinstall with: pip install -e ."
        )

    return True, f"Version verified: {runtime_version}"
