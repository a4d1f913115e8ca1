from __future__ import annotations

from pathlib import Path
import os

from dotenv import load_dotenv


def load_local_environment() -> None:
    """Load exchange credentials from a single canonical .env location.

    Canonical path: <project_root>/.env (derived from this package location),
    which OVERRIDES any already-set variables. If that file does not exist,
    we fall back to ~/.tradewatch/.env (also with override=True).
    The resolved path is exposed via TRADEWATCH_ENV_PATH for diagnostics.
    """
    project_root = Path(__file__).resolve().parents[2]
    root_env = project_root / ".env"

    loaded = False
    if root_env.exists():
        loaded = load_dotenv(dotenv_path=root_env, override=True)
        os.environ["TRADEWATCH_ENV_PATH"] = str(root_env)
    else:
        home_env = Path.home() / ".tradewatch" / ".env"
        if home_env.exists():
            loaded = load_dotenv(dotenv_path=home_env, override=True)
            os.environ["TRADEWATCH_ENV_PATH"] = str(home_env)

    # If nothing was loaded, still indicate the intended canonical path
    if not loaded:
        os.environ.setdefault("TRADEWATCH_ENV_PATH", str(root_env))
