"""
配置加载器：将 YAML 配置文件解析为 Pydantic 模型。
"""

import os
import re
from pathlib import Path
from typing import Any, List, Optional

import yaml
from pydantic import BaseModel, Field


# ── 远程服务 ──────────────────────────────────────────

class RemoteConfig(BaseModel):
    base_url: str = "http://localhost:3000/api/templates"
    symbols_url: str = "http://localhost:3000/api/pmt/get-symbols"
    symbol_modules: List[str] = Field(default_factory=lambda: ["Forex", "US Stocks", "Commodities", "Indices"])
    timeout: float = 30.0
    # x-api-key header for the server-side widget cache clear
    cache_clear_key: Optional[str] = None


# ── 本地缓存 ──────────────────────────────────────────

class CacheConfig(BaseModel):
    path: str = "data/cache.json"
    in_memory: bool = False


# ── 业务规则 ──────────────────────────────────────────

class RulesConfig(BaseModel):
    min_name_length: int = 3
    favorite_limit: int = 8
    default_icon: str = "Star"
    fallback_icon: str = "Globe"  # replaces icons the backend cannot encode
    default_layout: str = "3-grid-left-large"
    symbol_cache_seconds: float = 300.0


# ── 顶层配置 ──────────────────────────────────────────

class AppConfig(BaseModel):
    remote: RemoteConfig = Field(default_factory=RemoteConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    rules: RulesConfig = Field(default_factory=RulesConfig)
    credentials_path: str = "data/credentials.json"


# ── Loading ───────────────────────────────────────────

_CONFIG_SEARCH_PATHS = [
    "config/config.yaml",
    "config.yaml",
]

_ENV_PATTERN = re.compile(r"\$\{(\w+)\}")


def find_config_file() -> Optional[Path]:
    """Find the config file under DESKBOARD_ROOT, or None."""
    base = Path(os.getenv("DESKBOARD_ROOT", "."))
    for p in _CONFIG_SEARCH_PATHS:
        path = base / p
        if path.exists():
            return path
    return None


def resolve_env(obj: Any) -> Any:
    """Recursively replace ${ENV_VAR} placeholders; unset variables become ''."""
    if isinstance(obj, str):
        return _ENV_PATTERN.sub(lambda m: os.getenv(m.group(1), ""), obj)
    elif isinstance(obj, dict):
        return {k: resolve_env(v) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [resolve_env(v) for v in obj]
    return obj


def load_config(path: Optional[str | Path] = None) -> AppConfig:
    """
    Load configuration from YAML, then apply environment overrides.
    A missing file yields the defaults.
    """
    if path is None:
        path = find_config_file()

    raw: dict = {}
    if path is not None and Path(path).exists():
        with open(path, "r", encoding="utf-8") as fp:
            raw = yaml.safe_load(fp) or {}

    raw = resolve_env(raw)

    base_url = os.getenv("DESKBOARD_BASE_URL")
    if base_url:
        raw.setdefault("remote", {})["base_url"] = base_url

    return AppConfig.model_validate(raw)
