"""
Config file lookup for the Chronicle gate.

Files live in ./config by default; CONFIG_DIR points at a private overlay
(e.g. a mounted secrets volume). A missing clients.yaml falls back to
clients.example.yaml so a fresh checkout starts with an empty directory.

Usage:
    from chronicle.core.paths import get_config_path

    clients_path = get_config_path("clients.yaml")
"""
import os
import logging
from pathlib import Path
from typing import Iterator, Optional

logger = logging.getLogger(__name__)

# chronicle/core/paths.py -> chronicle/core -> chronicle -> repo root
_DEFAULT_CONFIG_DIR = Path(__file__).parent.parent.parent / "config"

CONFIG_DIR = Path(os.getenv("CONFIG_DIR", str(_DEFAULT_CONFIG_DIR)))


def _example_name(filename: str) -> str:
    """clients.yaml -> clients.example.yaml"""
    path = Path(filename)
    return str(path.with_name(f"{path.stem}.example{path.suffix}"))


def _candidates(filename: str, config_dir: Path) -> Iterator[Path]:
    directories = [config_dir]
    if config_dir != _DEFAULT_CONFIG_DIR:
        directories.append(_DEFAULT_CONFIG_DIR)

    for directory in directories:
        yield directory / filename
        if Path(filename).suffix in (".yaml", ".yml"):
            yield directory / _example_name(filename)


def get_config_path(
    filename: str,
    required: bool = False,
    config_dir: Optional[Path] = None,
) -> Optional[Path]:
    """
    Resolve a config file, preferring the overlay directory.

    Resolution order: CONFIG_DIR/filename, CONFIG_DIR/<stem>.example.yaml,
    then the same two in the bundled config directory.

    Args:
        filename: Config filename (e.g., "clients.yaml")
        required: If True, raise FileNotFoundError when not found
        config_dir: Overlay directory; defaults to CONFIG_DIR

    Returns:
        Path to config file, or None if not found and not required
    """
    searched = []
    for path in _candidates(filename, Path(config_dir or CONFIG_DIR)):
        if path.exists():
            logger.debug(f"Config '{filename}' resolved to: {path}")
            return path
        searched.append(str(path))

    if required:
        raise FileNotFoundError(
            f"Required config file '{filename}' not found.\n"
            f"Searched: {searched}\n"
            f"Hint: Copy {_example_name(filename)} to {filename} and customize it."
        )

    logger.debug(f"Config '{filename}' not found (optional)")
    return None
