from __future__ import annotations

import os
from pathlib import Path
from typing import Iterable, Optional

from dotenv import load_dotenv

ENV_PREFIX = "TUNNELCTL_"


def load_env(
    filenames: Iterable[str] = (".env.local", ".env"),
    search_dirs: Optional[list[Path]] = None,
    override: bool = False,
) -> list[Path]:
    """
    Load env files from the working directory and the project root.

    Already-set OS variables win unless override=True.
    Returns list of env files actually loaded.
    """
    if search_dirs is None:
        project_root = Path(__file__).resolve().parents[2]
        search_dirs = [Path.cwd(), project_root]

    loaded: list[Path] = []
    seen: set[Path] = set()
    for d in search_dirs:
        for name in filenames:
            p = (d / name).resolve()
            if p in seen:
                continue
            seen.add(p)
            if p.exists() and p.is_file():
                load_dotenv(dotenv_path=p, override=override)
                loaded.append(p)

    return loaded


def env_flag(name: str, default: bool = False) -> bool:
    v = os.getenv(ENV_PREFIX + name)
    if v is None:
        return default
    return v.strip().lower() in {"1", "true", "yes", "y", "on"}


def env_int(name: str, default: int) -> int:
    v = (os.getenv(ENV_PREFIX + name) or "").strip()
    if not v:
        return default
    try:
        return int(v)
    except ValueError:
        return default


def env_str(name: str, default: str = "") -> str:
    v = os.getenv(ENV_PREFIX + name)
    return default if v is None else v.strip()
