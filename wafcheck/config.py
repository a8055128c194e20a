"""
WAF Checker - Configuration Management
Centralized configuration for the detector, scan engine and batch scheduler.
"""

import os
import json
from pathlib import Path
from dataclasses import dataclass, field, asdict
from typing import List


# Base paths
PROJECT_ROOT = Path(__file__).parent.parent.resolve()
DATA_DIR = PROJECT_ROOT / "data"

# Persistence files
CONFIG_FILE = DATA_DIR / "config.json"

CHROME_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36"
)


@dataclass
class APIConfig:
    """Backend API configuration."""
    host: str = "127.0.0.1"
    port: int = 8088
    cors_origins: List[str] = field(default_factory=lambda: ["*"])


@dataclass
class ProbeConfig:
    """Outbound probe and scan engine settings."""
    timeout: float = 15.0
    detection_timeout: float = 10.0
    user_agent: str = CHROME_USER_AGENT
    max_connections: int = 32
    max_keepalive_connections: int = 16
    # Scan engine
    page_limit: int = 50
    stream_batch_size: int = 20
    page_concurrency: int = 10


@dataclass
class BatchConfig:
    """Multi-target batch scheduler limits."""
    max_urls: int = 100
    max_concurrency: int = 5
    default_concurrency: int = 3
    per_url_timeout: float = 300.0
    max_pages: int = 10
    max_results: int = 1000
    retention_seconds: float = 24 * 60 * 60
    sweep_probability: float = 0.05


@dataclass
class PayloadConfig:
    """External payload source."""
    remote_url: str = "https://raw.githubusercontent.com/PAPAMICA/waf-payloads/refs/heads/main/payloads.json"
    autoload: bool = False
    timeout: float = 10.0


@dataclass
class ReconConfig:
    """DNS-over-HTTPS resolver used for infrastructure recon."""
    doh_url: str = "https://cloudflare-dns.com/dns-query"
    timeout: float = 3.0


@dataclass
class WafCheckConfig:
    """Overall service configuration."""
    api: APIConfig = field(default_factory=APIConfig)
    probe: ProbeConfig = field(default_factory=ProbeConfig)
    batch: BatchConfig = field(default_factory=BatchConfig)
    payloads: PayloadConfig = field(default_factory=PayloadConfig)
    recon: ReconConfig = field(default_factory=ReconConfig)

    def to_dict(self) -> dict:
        return asdict(self)


def ensure_dirs():
    """Create all required directories."""
    DATA_DIR.mkdir(parents=True, exist_ok=True)


# ── User Config Persistence ───────────────────────────────────────

def load_user_config() -> dict:
    """Load user config overrides (api port, probe timeout, etc)."""
    if not CONFIG_FILE.exists():
        return {}
    try:
        with open(CONFIG_FILE, 'r') as f:
            data = json.load(f)
    except (OSError, ValueError) as e:
        print(f"[Config] Error loading config: {e}")
        return {}
    return data if isinstance(data, dict) else {}


def save_user_config(config: dict):
    """Save user config overrides."""
    ensure_dirs()
    # Merge with existing
    existing = load_user_config()
    for section, values in config.items():
        if isinstance(values, dict) and isinstance(existing.get(section), dict):
            existing[section].update(values)
        else:
            existing[section] = values
    try:
        with open(CONFIG_FILE, 'w') as f:
            json.dump(existing, f, indent=2)
    except OSError as e:
        print(f"[Config] Error saving config: {e}")


def _apply_section(target, overrides: dict):
    if not isinstance(overrides, dict):
        return
    for key, value in overrides.items():
        if not hasattr(target, key):
            print(f"[Config] Ignoring unknown setting: {type(target).__name__}.{key}")
            continue
        current = getattr(target, key)
        try:
            if isinstance(current, bool):
                value = value if isinstance(value, bool) else str(value).lower() in ("1", "true", "yes", "on")
            elif isinstance(current, int):
                value = int(value)
            elif isinstance(current, float):
                value = float(value)
        except (TypeError, ValueError):
            print(f"[Config] Invalid value for {type(target).__name__}.{key}: {value!r}")
            continue
        setattr(target, key, value)


def _apply_env(cfg: WafCheckConfig):
    env_map = {
        "WAFCHECK_HOST": (cfg.api, "host"),
        "WAFCHECK_PORT": (cfg.api, "port"),
        "WAFCHECK_PROBE_TIMEOUT": (cfg.probe, "timeout"),
        "WAFCHECK_PAYLOADS_URL": (cfg.payloads, "remote_url"),
        "WAFCHECK_PAYLOADS_AUTOLOAD": (cfg.payloads, "autoload"),
        "WAFCHECK_DOH_URL": (cfg.recon, "doh_url"),
    }
    for var, (section, key) in env_map.items():
        raw = os.environ.get(var, "").strip()
        if raw:
            _apply_section(section, {key: raw})


def get_config() -> WafCheckConfig:
    """Get the current configuration: defaults, then persisted overrides, then environment."""
    cfg = WafCheckConfig()

    user_cfg = load_user_config()
    for section in ("api", "probe", "batch", "payloads", "recon"):
        _apply_section(getattr(cfg, section), user_cfg.get(section, {}))

    _apply_env(cfg)
    return cfg
