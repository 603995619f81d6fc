"""Data models for mirroring jobs and the files they produce."""

import os
from dataclasses import dataclass
from enum import Enum
from typing import Optional


class JobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETE = "complete"
    ERROR = "error"
    PAUSED = "paused"


class Strategy(str, Enum):
    NO_SCRIPT_FETCH = "no-script-fetch"
    BROWSER_RENDER = "browser-render"


class ResourceKind(str, Enum):
    DOCUMENT = "document"
    STYLESHEET = "stylesheet"
    SCRIPT = "script"
    IMAGE = "image"
    FONT = "font"
    ICON = "icon"
    OTHER = "other"


EXTENSION_KINDS = {
    ".html": ResourceKind.DOCUMENT,
    ".htm": ResourceKind.DOCUMENT,
    ".css": ResourceKind.STYLESHEET,
    ".js": ResourceKind.SCRIPT,
    ".mjs": ResourceKind.SCRIPT,
    ".json": ResourceKind.SCRIPT,
    ".png": ResourceKind.IMAGE,
    ".jpg": ResourceKind.IMAGE,
    ".jpeg": ResourceKind.IMAGE,
    ".gif": ResourceKind.IMAGE,
    ".svg": ResourceKind.IMAGE,
    ".webp": ResourceKind.IMAGE,
    ".avif": ResourceKind.IMAGE,
    ".bmp": ResourceKind.IMAGE,
    ".ico": ResourceKind.IMAGE,
    ".woff": ResourceKind.FONT,
    ".woff2": ResourceKind.FONT,
    ".ttf": ResourceKind.FONT,
    ".otf": ResourceKind.FONT,
    ".eot": ResourceKind.FONT,
}

# Output sub-folder for each kind; documents live at the job root
KIND_FOLDERS = {
    ResourceKind.DOCUMENT: "",
    ResourceKind.STYLESHEET: "css",
    ResourceKind.SCRIPT: "js",
    ResourceKind.IMAGE: "images",
    ResourceKind.FONT: "fonts",
    ResourceKind.ICON: "icons",
    ResourceKind.OTHER: "other",
}

TEXT_KINDS = {ResourceKind.DOCUMENT, ResourceKind.STYLESHEET, ResourceKind.SCRIPT}


def classify(path: str) -> ResourceKind:
    """Map a path or URL path to its resource kind by file extension."""
    ext = os.path.splitext(path.split("?", 1)[0].split("#", 1)[0])[1].lower()
    return EXTENSION_KINDS.get(ext, ResourceKind.OTHER)


@dataclass
class Job:
    id: str
    url: str
    name: str
    strategy: Strategy = Strategy.NO_SCRIPT_FETCH
    crawl_depth: int = 0
    status: JobStatus = JobStatus.PENDING
    is_paused: bool = False
    current_step: Optional[str] = None
    progress: int = 0
    resources_discovered: int = 0
    resources_fetched: int = 0
    resources_failed: int = 0
    pages_processed: int = 0
    total_files: int = 0
    total_size: int = 0
    output_dir: str = ""
    estimated_seconds: int = 0
    estimated_bytes: int = 0
    created_at: Optional[str] = None
    completed_at: Optional[str] = None
    error_message: Optional[str] = None

    @classmethod
    def from_row(cls, row: dict) -> "Job":
        data = {k: row[k] for k in cls.__dataclass_fields__ if k in row}
        data["strategy"] = Strategy(data.get("strategy", Strategy.NO_SCRIPT_FETCH))
        data["status"] = JobStatus(data.get("status", JobStatus.PENDING))
        data["is_paused"] = bool(data.get("is_paused"))
        return cls(**data)

    def to_dict(self) -> dict:
        data = dict(self.__dict__)
        data["strategy"] = self.strategy.value
        data["status"] = self.status.value
        return data


@dataclass
class Estimate:
    estimated_seconds: int
    estimated_bytes: int
    resource_count: int


@dataclass
class ResourceRecord:
    id: int
    job_id: str
    path: str
    kind: ResourceKind
    size: int = 0
    # Filled for text kinds only
    content: Optional[str] = None
    created_at: Optional[str] = None

    @classmethod
    def from_row(cls, row: dict) -> "ResourceRecord":
        return cls(
            id=row["id"],
            job_id=row["project_id"],
            path=row["path"],
            kind=ResourceKind(row["kind"]),
            size=row["size"] or 0,
            content=row["content"],
            created_at=row["created_at"],
        )
