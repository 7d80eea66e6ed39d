# =============================================================================
# costa_core/config.py
# Settings for the Costa back-office
# =============================================================================
"""
Settings loader.

Sources, first match wins per key:
    1. Streamlit secrets (when running under ``streamlit run``)
    2. .streamlit/secrets.toml read directly (scripts, tests)
    3. Environment variables (SUPABASE_URL, SUPABASE_KEY, COSTA_LOCAL_DB)

Expected secrets.toml format:
    [supabase]
    url = "https://your-project.supabase.co"
    key = "your-anon-key"

    [offline]
    local_db_path = "local_data/costa_offline.db"
    cache_max_age_hours = 4
    sync_interval_seconds = 300

    [tables]
    catalog = "itens_perdas_geral"
"""

from __future__ import annotations
import os
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, Mapping, Optional
import logging

import toml

from costa_core.errors import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_SECRETS_PATH = Path(".streamlit") / "secrets.toml"
DEFAULT_LOCAL_DB_PATH = Path("local_data") / "costa_offline.db"


@dataclass(frozen=True)
class RemoteTables:
    """Backend collection and function names used by the offline layer."""
    catalog: str = "itens_perdas_geral"
    entry_batches: str = "lancamentos_perdas_geral"
    entry_items: str = "perdas_geral"
    pulp_counts: str = "conferencias_polpas"
    produce_receipts: str = "recebimentos_legumes"
    beverage_counts: str = "conferencias_coca"
    barcode_lookup_function: str = "barcode-lookup"
    # Secondary collections mirrored for offline listing: name -> order column
    reference_collections: Dict[str, str] = field(default_factory=lambda: {
        "produtos": "nome_produto",
        "polpas": "nome_polpa",
        "legumes": "nome_legume",
        "produtos_coca": "nome_produto",
        "itens_perdas_polpas": "nome_item",
    })


@dataclass(frozen=True)
class OfflineSettings:
    """Tuning knobs for cache, monitor and sync engine."""
    local_db_path: Path = DEFAULT_LOCAL_DB_PATH
    cache_max_age_hours: float = 4.0
    sync_interval_seconds: float = 300.0
    reconnect_sync_delay_seconds: float = 1.0
    check_interval_online: float = 30.0
    check_interval_offline: float = 10.0
    connection_timeout: float = 5.0
    max_replay_attempts: int = 5
    page_size: int = 1000


@dataclass(frozen=True)
class Settings:
    """Top-level application settings."""
    supabase_url: Optional[str] = None
    supabase_key: Optional[str] = None
    offline: OfflineSettings = field(default_factory=OfflineSettings)
    tables: RemoteTables = field(default_factory=RemoteTables)

    @property
    def has_remote(self) -> bool:
        """True when backend credentials are configured."""
        return bool(self.supabase_url and self.supabase_key)

    def require_remote(self) -> None:
        """Raise if backend credentials are missing."""
        if not self.supabase_url:
            raise ConfigurationError("Supabase URL is not configured", config_key="supabase.url")
        if not self.supabase_key:
            raise ConfigurationError("Supabase key is not configured", config_key="supabase.key")


def _load_streamlit_secrets() -> Dict[str, Any]:
    """Read st.secrets; empty when not running under Streamlit or no secrets."""
    try:
        import streamlit as st
        return {section: dict(values) for section, values in st.secrets.items()
                if isinstance(values, Mapping)}
    except Exception as e:
        logger.debug(f"Streamlit secrets not available: {e}")
        return {}


def _load_secrets_file(path: Path) -> Dict[str, Any]:
    """Read a secrets.toml file directly."""
    if not path.exists():
        return {}
    try:
        return toml.load(path)
    except (toml.TomlDecodeError, OSError) as e:
        raise ConfigurationError(
            f"Could not read secrets file: {e}",
            config_key=str(path),
        )


def _coerce_section(cls, values: Mapping[str, Any], base):
    """Apply known keys from a secrets section onto a frozen dataclass."""
    known = {f.name: f for f in fields(cls)}
    updates = {}
    for key, value in values.items():
        if key not in known:
            logger.warning(f"Ignoring unknown setting '{key}' for {cls.__name__}")
            continue
        current = getattr(base, key)
        try:
            if isinstance(current, Path):
                updates[key] = Path(value)
            elif isinstance(current, bool):
                updates[key] = bool(value)
            elif isinstance(current, int):
                updates[key] = int(value)
            elif isinstance(current, float):
                updates[key] = float(value)
            elif isinstance(current, dict):
                updates[key] = dict(value)
            else:
                updates[key] = value
        except (TypeError, ValueError):
            raise ConfigurationError(
                f"Invalid value for {key}: {value!r}",
                config_key=key,
                expected_type=type(current).__name__,
            )
    return replace(base, **updates)


def load_settings(
    secrets_path: Optional[Path] = None,
    use_streamlit: bool = True,
    environ: Optional[Mapping[str, str]] = None,
) -> Settings:
    """
    Build Settings from Streamlit secrets, a secrets file and the environment.

    Args:
        secrets_path: Path to secrets.toml (default: .streamlit/secrets.toml)
        use_streamlit: Whether to consult st.secrets first
        environ: Environment mapping (default: os.environ)

    Returns:
        Settings instance
    """
    environ = os.environ if environ is None else environ

    secrets: Dict[str, Any] = {}
    if use_streamlit:
        secrets = _load_streamlit_secrets()
    if not secrets:
        secrets = _load_secrets_file(Path(secrets_path) if secrets_path else DEFAULT_SECRETS_PATH)

    supabase = secrets.get("supabase", {})
    url = supabase.get("url") or environ.get("SUPABASE_URL") or None
    key = supabase.get("key") or environ.get("SUPABASE_KEY") or None

    offline = _coerce_section(OfflineSettings, secrets.get("offline", {}), OfflineSettings())
    if "local_db_path" not in secrets.get("offline", {}) and environ.get("COSTA_LOCAL_DB"):
        offline = replace(offline, local_db_path=Path(environ["COSTA_LOCAL_DB"]))

    tables = _coerce_section(RemoteTables, secrets.get("tables", {}), RemoteTables())

    if not (url and key):
        logger.warning("Supabase credentials not configured - running in local-only mode")

    return Settings(supabase_url=url, supabase_key=key, offline=offline, tables=tables)
