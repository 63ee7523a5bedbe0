from __future__ import annotations

from pathlib import Path
from typing import Iterable, Optional

from dotenv import load_dotenv


def load_env(
    filenames: Iterable[str] = (".env.local", ".env"),
    search_dirs: Optional[list[Path]] = None,
    override: bool = False,
) -> list[Path]:
    """
    Load env files from the working directory AND config/ directory.

    Returns list of env files actually loaded.
    """
    if search_dirs is None:
        cwd = Path.cwd()
        search_dirs = [
            cwd,
            cwd / "config",
        ]

    loaded: list[Path] = []
    for d in search_dirs:
        for name in filenames:
            p = d / name
            if p.exists() and p.is_file():
                load_dotenv(dotenv_path=p, override=override)
                loaded.append(p)

    return loaded
