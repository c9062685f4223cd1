from __future__ import annotations
import os
from dataclasses import dataclass
from typing import Optional, Tuple

import httpx

from .models import DEFAULT_MAX_RESULTS, DEFAULT_TIMEOUT_S, Region, SessionConfig

from logging import getLogger

logger = getLogger(__name__)

ALL_TOOL_GROUPS: Tuple[str, ...] = ("doc", "fetch", "search")


def _env_int(name: str, default: int) -> int:
    v = os.getenv(name)
    if v is None:
        return default
    try:
        return int(v)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    v = os.getenv(name)
    if v is None:
        return default
    try:
        return float(v)
    except ValueError:
        return default


def _env_bool(name: str, default: bool) -> bool:
    v = os.getenv(name)
    if v is None:
        return default
    return v.strip().lower() in {"1", "true", "yes", "on"}


def parse_tool_list(raw: Optional[str]) -> Tuple[str, ...]:
    if not raw:
        return ALL_TOOL_GROUPS
    names = tuple(n.strip() for n in raw.split(",") if n.strip())
    return names or ALL_TOOL_GROUPS


@dataclass(frozen=True)
class Settings:
    # 空なら HTTP_PROXY / HTTPS_PROXY / NO_PROXY（httpxのtrust_env）に任せる
    proxy_url: Optional[str] = None

    search_region: Region = Region.WORLD
    search_max_results: int = DEFAULT_MAX_RESULTS
    search_timeout_s: float = DEFAULT_TIMEOUT_S
    search_pacing_s: float = 3.0

    fetch_timeout_s: float = 30.0
    # Trueならlocalhost/private IPへのfetchも許可
    fetch_allow_private: bool = False

    # 指定するとdocツールはこの配下のファイルだけ読める
    doc_root: Optional[str] = None

    enabled_tools: Tuple[str, ...] = ALL_TOOL_GROUPS

    @property
    def session(self) -> SessionConfig:
        return SessionConfig(
            region=self.search_region,
            max_results=self.search_max_results,
            timeout_s=self.search_timeout_s,
        )


def _env_region(name: str, default: Region) -> Region:
    v = os.getenv(name)
    if not v:
        return default
    try:
        return Region(v.strip().lower())
    except ValueError:
        logger.warning(f"unknown region {v!r} in {name}, using {default.value}")
        return default


def load_settings() -> Settings:
    return Settings(
        proxy_url=os.getenv("MCP_PROXY_URL") or None,
        search_region=_env_region("SEARCH_REGION", Region.WORLD),
        search_max_results=_env_int("SEARCH_MAX_RESULTS", DEFAULT_MAX_RESULTS),
        search_timeout_s=_env_float("SEARCH_TIMEOUT_S", DEFAULT_TIMEOUT_S),
        search_pacing_s=_env_float("SEARCH_PACING_S", 3.0),
        fetch_timeout_s=_env_float("FETCH_TIMEOUT_S", 30.0),
        fetch_allow_private=_env_bool("FETCH_ALLOW_PRIVATE", False),
        doc_root=os.getenv("DOCUMENT_ROOT") or None,
        enabled_tools=parse_tool_list(os.getenv("ENABLED_TOOLS")),
    )


def build_http_client(settings: Settings) -> httpx.AsyncClient:
    """
    プロセス全体で共有するクライアント。
    MCP_PROXY_URL があればそれだけを使い、なければ環境変数のproxy設定に従う。
    """
    limits = httpx.Limits(max_connections=100, keepalive_expiry=90.0)
    if settings.proxy_url:
        return httpx.AsyncClient(proxy=settings.proxy_url, limits=limits)
    return httpx.AsyncClient(limits=limits, trust_env=True)
