import os
import re
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from indexer_parity.errors import ConfigError


ENV_PATTERN = re.compile(r"\$\{([A-Z0-9_]+)\}")

DEFAULT_CONFIG_PATH = "config/verify.yaml"

# local docker-compose stack
DEFAULT_INDEXERS = [f"http://127.0.0.1:{port}/rest/v1" for port in range(3201, 3207)]


def _expand_env(value: Any) -> Any:
    if isinstance(value, str):
        def replace(match: re.Match) -> str:
            key = match.group(1)
            return os.environ.get(key, "")

        return ENV_PATTERN.sub(replace, value)
    if isinstance(value, dict):
        return {k: _expand_env(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_expand_env(v) for v in value]
    return value


def load_yaml(path: str) -> Dict[str, Any]:
    data = yaml.safe_load(Path(path).read_text())
    return _expand_env(data) or {}


def parse_indexer_list(value: Any) -> List[str]:
    """Comma separated (or list) REST base URLs, trimmed and de-duplicated in order."""
    if value is None:
        return []
    parts = value if isinstance(value, list) else str(value).split(",")
    urls: List[str] = []
    for part in parts:
        url = str(part).strip().rstrip("/")
        if url and url not in urls:
            urls.append(url)
    return urls


def read_assets_file(path: str) -> List[str]:
    try:
        lines = Path(path).read_text().splitlines()
    except OSError as exc:
        raise ConfigError(f"Cannot read assets file {path}: {exc}") from exc
    assets: List[str] = []
    for line in lines:
        asset = line.strip()
        if asset and asset not in assets:
            assets.append(asset)
    return assets


@dataclass
class VerifyConfig:
    indexers: List[str] = field(default_factory=list)
    timeout_seconds: float = 20.0
    page_size: int = 2000
    max_pages: int = 300
    expected_indexers: int = 6
    strict: bool = True
    max_workers: int = 8
    output: Optional[str] = None
    assets: List[str] = field(default_factory=list)
    asset_chunk_size: int = 80

    @property
    def asset_scoped(self) -> bool:
        return bool(self.assets)

    def validate(self) -> "VerifyConfig":
        if not self.indexers:
            raise ConfigError("Missing indexers (comma-separated REST base URLs)")
        if self.strict and len(self.indexers) != self.expected_indexers:
            raise ConfigError(
                f"Strict parity requires {self.expected_indexers} indexers (got {len(self.indexers)}). "
                "Use --allow-any-count to override."
            )
        for name in ("timeout_seconds", "page_size", "max_pages", "max_workers", "asset_chunk_size"):
            if getattr(self, name) <= 0:
                raise ConfigError(f"{name} must be positive (got {getattr(self, name)})")
        return self

    def to_dict(self) -> Dict[str, Any]:
        out = asdict(self)
        out["assets"] = len(self.assets)
        return out


def _coerce(name: str, value: Any, kind: type) -> Any:
    try:
        if kind is bool and isinstance(value, str):
            return value.strip().lower() in {"1", "true", "yes", "on"}
        return kind(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid value for {name}: {value!r}") from exc


def build_config(settings: Optional[Dict[str, Any]] = None, overrides: Optional[Dict[str, Any]] = None) -> VerifyConfig:
    """
    Merge the `verify` section of the YAML settings with CLI overrides.
    Overrides set to None are ignored; anything left unset keeps its default.
    """
    merged: Dict[str, Any] = dict((settings or {}).get("verify") or {})
    for key, value in (overrides or {}).items():
        if value is not None:
            merged[key] = value

    config = VerifyConfig()
    indexers = merged.get("indexers")
    config.indexers = parse_indexer_list(indexers) if indexers not in (None, "") else list(DEFAULT_INDEXERS)
    for name, kind in (
        ("timeout_seconds", float),
        ("page_size", int),
        ("max_pages", int),
        ("expected_indexers", int),
        ("strict", bool),
        ("max_workers", int),
        ("asset_chunk_size", int),
    ):
        if merged.get(name) not in (None, ""):
            setattr(config, name, _coerce(name, merged[name], kind))

    config.output = merged.get("output") or None
    assets_file = merged.get("assets_file")
    if assets_file:
        config.assets = read_assets_file(assets_file)
        if not config.assets:
            raise ConfigError(f"Assets file {assets_file} lists no assets")
    return config.validate()
