"""Settings loaded from environment variables.

CLI flags take precedence over anything read here.
"""

import os
from typing import Mapping, Optional

from pydantic import BaseModel

ENV_PREFIX = "TASKFLOW"


def _k(suffix: str) -> str:
    return f"{ENV_PREFIX}_{suffix}"


class Settings(BaseModel):
    data_dir: str = ".taskflow"
    backend: str = "local"              # local | supabase
    import_policy: str = "replace"      # replace | append
    log_level: str = "WARNING"

    supabase_url: Optional[str] = None
    supabase_key: Optional[str] = None
    user_id: Optional[str] = None       # Current signed-in user, if any


def _env(env: Mapping[str, str], name: str, default: Optional[str] = None) -> Optional[str]:
    v = env.get(name)
    if v is None or v.strip() == "":
        return default
    return v.strip()


def load_settings(env: Optional[Mapping[str, str]] = None) -> Settings:
    env = os.environ if env is None else env
    defaults = Settings()
    return Settings(
        data_dir=_env(env, _k("DIR"), defaults.data_dir),
        backend=(_env(env, _k("BACKEND"), defaults.backend) or "").lower(),
        import_policy=(_env(env, _k("IMPORT_POLICY"), defaults.import_policy) or "").lower(),
        log_level=(_env(env, _k("LOG_LEVEL"), defaults.log_level) or "").upper(),
        supabase_url=_env(env, "SUPABASE_URL"),
        supabase_key=_env(env, "SUPABASE_KEY"),
        user_id=_env(env, _k("USER_ID")),
    )
