from __future__ import annotations

import ipaddress
import os
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, cast

import yaml
from dotenv import load_dotenv

from .cache import CacheTTLs
from .errors import redact
from .github_rest import DEFAULT_API_URL, DEFAULT_TIMEOUT
from .rate_limit import DEFAULT_MAX_REQUESTS, DEFAULT_WINDOW_SECONDS
from .tokens import DEFAULT_IDLE_EXPIRY, DEFAULT_PREFIX

CONFIG_DEFAULT = "issuegate.config.yaml"

DEFAULT_ALLOWED_ORIGINS = [
    "https://support.vros.cat",
    "https://bugs.vros.cat",
    "http://localhost:5173",
    "http://localhost:3000",
]

TOKEN_ENV_VARS = ("GITHUB_TOKEN", "GH_TOKEN", "GITHUB_PAT")


class ConfigError(RuntimeError):
    pass


@dataclass
class GatewayConfig:
    github_repo: str | None = None
    github_token: str | None = None
    github_api_url: str = DEFAULT_API_URL
    github_timeout: float = DEFAULT_TIMEOUT
    allowed_origins: list[str] = field(default_factory=lambda: list(DEFAULT_ALLOWED_ORIGINS))
    rate_limit_max_requests: int = DEFAULT_MAX_REQUESTS
    rate_limit_window_seconds: float = DEFAULT_WINDOW_SECONDS
    rate_limit_max_clients: int = 10_000
    cache_ttls: CacheTTLs = field(default_factory=CacheTTLs)
    cache_max_entries: int = 1_000
    token_prefix: str = DEFAULT_PREFIX
    token_idle_expiry_seconds: float | None = DEFAULT_IDLE_EXPIRY
    token_max_records: int = 50_000
    product_name: str = "VROS"
    patch_notes_file: Path | None = None
    download_url: str | None = None
    server_host: str = "127.0.0.1"
    server_port: int = 8787
    client_ip_header: str = "CF-Connecting-IP"
    trusted_proxies: list[str] = field(default_factory=list)
    logging_json_enabled: bool = False
    logging_level: str = "INFO"
    telemetry_exporter: str = "none"
    telemetry_endpoint: str | None = None
    source_file: Path | None = None

    def require_upstream(self) -> tuple[str, str]:
        """Repository and credential, or ConfigError when either is missing."""
        if not self.github_repo or self.github_repo.count("/") != 1:
            raise ConfigError("github.repo must be set to 'owner/repo'")
        if not self.github_token:
            raise ConfigError(
                "No upstream credential; set github.token or one of " + ", ".join(TOKEN_ENV_VARS)
            )
        return self.github_repo, self.github_token

    def to_public_dict(self) -> dict[str, Any]:
        """Effective settings with the credential masked."""
        data = asdict(self)
        data["github_token"] = "<redacted>" if self.github_token else None
        for key in ("patch_notes_file", "source_file"):
            if data[key] is not None:
                data[key] = str(data[key])
        return data


def _resolve_env_var(value: Any, env_var_name: str | None = None) -> Any:
    """Resolve environment variable if value starts with $."""
    if isinstance(value, str) and value.startswith('$'):
        env_name = env_var_name or value[1:]
        return os.getenv(env_name) or None
    return value


def _env_token() -> str | None:
    for name in TOKEN_ENV_VARS:
        token = os.getenv(name)
        if token:
            return token
    return None


def _trusted_proxies(raw: Any) -> list[str]:
    if isinstance(raw, str):
        raw = raw.split(',')
    entries = [str(entry).strip() for entry in raw or [] if str(entry).strip()]
    for entry in entries:
        ipaddress.ip_network(entry, strict=False)
    return entries


def _load_environment(env_cfg: dict[str, Any], base: Path) -> None:
    if not bool(env_cfg.get('load_dotenv', True)):
        return
    dotenv_path = env_cfg.get('dotenv_path')
    candidates = [base / dotenv_path] if dotenv_path else [base / '.env', base / '.env.local']
    for candidate in candidates:
        if candidate.exists():
            load_dotenv(candidate, override=False)
            return


def _origins(raw: Any) -> list[str]:
    if isinstance(raw, str):
        raw = raw.split(',')
    if not raw:
        return list(DEFAULT_ALLOWED_ORIGINS)
    origins = [str(o).strip().rstrip('/') for o in raw if str(o).strip()]
    return origins or list(DEFAULT_ALLOWED_ORIGINS)


def load_config(path: str | Path | None = None) -> GatewayConfig:
    """Load gateway settings from YAML; a missing default file means defaults + environment."""
    raw: dict[str, Any] = {}
    p: Path | None = Path(path) if path is not None else None
    if p is not None and p.exists():
        try:
            raw = cast(dict[str, Any], yaml.safe_load(p.read_text(encoding='utf-8')) or {})
        except yaml.YAMLError as exc:
            raise ConfigError(f'Invalid YAML in {p}: {redact(str(exc))}') from exc
        if not isinstance(raw, dict):
            raise ConfigError(f'Configuration root in {p} must be a mapping')
    elif p is not None and p.name != CONFIG_DEFAULT:
        raise ConfigError(f'Configuration file not found: {p}')

    base = p.parent if p is not None else Path.cwd()
    gh = cast(dict[str, Any], raw.get('github', {}) or {})
    cors = cast(dict[str, Any], raw.get('cors', {}) or {})
    rate = cast(dict[str, Any], raw.get('rate_limit', {}) or {})
    cache = cast(dict[str, Any], raw.get('cache', {}) or {})
    tokens = cast(dict[str, Any], raw.get('tokens', {}) or {})
    content = cast(dict[str, Any], raw.get('content', {}) or {})
    server = cast(dict[str, Any], raw.get('server', {}) or {})
    logging_config = cast(dict[str, Any], raw.get('logging', {}) or {})
    telemetry = cast(dict[str, Any], raw.get('telemetry', {}) or {})
    env_cfg = cast(dict[str, Any], raw.get('environment', {}) or {})

    _load_environment(env_cfg, base)

    token = _resolve_env_var(gh.get('token')) or _env_token()
    repo = _resolve_env_var(gh.get('repo')) or os.getenv('ISSUEGATE_REPO')
    origins = os.getenv('ALLOWED_ORIGINS') or cors.get('allowed_origins')
    patch_notes = content.get('patch_notes_file')
    idle_expiry = tokens.get('idle_expiry_seconds', DEFAULT_IDLE_EXPIRY)

    try:
        return GatewayConfig(
            github_repo=repo,
            github_token=token,
            github_api_url=str(gh.get('api_url', DEFAULT_API_URL)),
            github_timeout=float(gh.get('timeout', DEFAULT_TIMEOUT)),
            allowed_origins=_origins(origins),
            rate_limit_max_requests=int(rate.get('max_requests', DEFAULT_MAX_REQUESTS)),
            rate_limit_window_seconds=float(rate.get('window_seconds', DEFAULT_WINDOW_SECONDS)),
            rate_limit_max_clients=int(rate.get('max_clients', 10_000)),
            cache_ttls=CacheTTLs(
                issues=float(cache.get('issues_ttl', 300)),
                stats=float(cache.get('stats_ttl', 1800)),
                static=float(cache.get('static_ttl', 3600)),
                version=float(cache.get('version_ttl', 1800)),
            ),
            cache_max_entries=int(cache.get('max_entries', 1_000)),
            token_prefix=str(tokens.get('prefix', DEFAULT_PREFIX)),
            token_idle_expiry_seconds=float(idle_expiry) if idle_expiry is not None else None,
            token_max_records=int(tokens.get('max_records', 50_000)),
            product_name=str(content.get('product_name', 'VROS')),
            patch_notes_file=base / patch_notes if patch_notes else None,
            download_url=content.get('download_url'),
            server_host=str(server.get('host', '127.0.0.1')),
            server_port=int(server.get('port', 8787)),
            client_ip_header=str(server.get('client_ip_header', 'CF-Connecting-IP')),
            trusted_proxies=_trusted_proxies(server.get('trusted_proxies')),
            logging_json_enabled=bool(logging_config.get('json_enabled', False)),
            logging_level=str(logging_config.get('level', 'INFO')),
            telemetry_exporter=str(telemetry.get('exporter', 'none')),
            telemetry_endpoint=telemetry.get('endpoint'),
            source_file=p if p is not None and p.exists() else None,
        )
    except (TypeError, ValueError) as exc:
        raise ConfigError(f'Invalid configuration value: {exc}') from exc


__all__ = ["CONFIG_DEFAULT", "ConfigError", "GatewayConfig", "load_config"]
