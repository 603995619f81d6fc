"""YAML config loader."""

from dataclasses import dataclass, field

import yaml


@dataclass
class DownloadConfig:
    timeout: float = 30.0
    connect_timeout: float = 10.0
    max_retries: int = 3
    backoff_factor: float = 2.0
    user_agent: str = (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36"
    )
    max_file_size: int = 52428800


@dataclass
class RenderConfig:
    viewport_width: int = 1920
    viewport_height: int = 1080
    user_agent: str = ""
    timeout_ms: int = 60000
    wait_until: str = "networkidle"


@dataclass
class CrawlConfig:
    max_pages: int = 10


@dataclass
class AppConfig:
    output_dir: str = "mirrors"
    db_path: str = "mirror.db"
    log_dir: str = "logs"
    max_workers: int = 4
    download: DownloadConfig = field(default_factory=DownloadConfig)
    render: RenderConfig = field(default_factory=RenderConfig)
    crawl: CrawlConfig = field(default_factory=CrawlConfig)


def _section(cls, raw: dict):
    return cls(**{k: v for k, v in (raw or {}).items() if k in cls.__dataclass_fields__})


def load_config(config_path: str = "config.yaml") -> AppConfig:
    with open(config_path) as f:
        raw = yaml.safe_load(f) or {}

    return AppConfig(
        output_dir=raw.get("output_dir", "mirrors"),
        db_path=raw.get("db_path", "mirror.db"),
        log_dir=raw.get("log_dir", "logs"),
        max_workers=raw.get("max_workers", 4),
        download=_section(DownloadConfig, raw.get("download")),
        render=_section(RenderConfig, raw.get("render")),
        crawl=_section(CrawlConfig, raw.get("crawl")),
    )
