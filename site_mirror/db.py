"""SQLite database for tracking mirroring jobs and the files they produce."""

import sqlite3
import threading
import uuid
from typing import List, Optional, Tuple

# Columns update_project_status() may touch besides status
PROJECT_FIELDS = {
    "is_paused", "current_step", "progress", "resources_discovered",
    "resources_fetched", "resources_failed", "pages_processed",
    "total_files", "total_size", "error_message",
}


class Database:
    def __init__(self, db_path: str = "mirror.db"):
        self.db_path = db_path
        self._local = threading.local()
        self._init_db()

    @property
    def _conn(self) -> sqlite3.Connection:
        if not hasattr(self._local, "conn") or self._local.conn is None:
            self._local.conn = sqlite3.connect(self.db_path, timeout=30)
            self._local.conn.row_factory = sqlite3.Row
            self._local.conn.execute("PRAGMA journal_mode=WAL")
            self._local.conn.execute("PRAGMA foreign_keys=ON")
        return self._local.conn

    def _init_db(self):
        conn = self._conn
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS projects (
                id TEXT PRIMARY KEY,
                url TEXT NOT NULL,
                name TEXT NOT NULL,
                strategy TEXT NOT NULL DEFAULT 'no-script-fetch',
                crawl_depth INTEGER DEFAULT 0,
                status TEXT NOT NULL DEFAULT 'pending',
                is_paused INTEGER DEFAULT 0,
                current_step TEXT,
                progress INTEGER DEFAULT 0,
                resources_discovered INTEGER DEFAULT 0,
                resources_fetched INTEGER DEFAULT 0,
                resources_failed INTEGER DEFAULT 0,
                pages_processed INTEGER DEFAULT 0,
                total_files INTEGER DEFAULT 0,
                total_size INTEGER DEFAULT 0,
                output_dir TEXT DEFAULT '',
                estimated_seconds INTEGER DEFAULT 0,
                estimated_bytes INTEGER DEFAULT 0,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                completed_at TIMESTAMP,
                error_message TEXT
            );

            CREATE INDEX IF NOT EXISTS idx_projects_status ON projects(status);

            CREATE TABLE IF NOT EXISTS files (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                project_id TEXT NOT NULL,
                path TEXT NOT NULL,
                kind TEXT NOT NULL,
                content TEXT,
                size INTEGER DEFAULT 0,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                FOREIGN KEY (project_id) REFERENCES projects(id) ON DELETE CASCADE,
                UNIQUE(project_id, path)
            );

            CREATE INDEX IF NOT EXISTS idx_files_project ON files(project_id);
        """)
        conn.commit()

    def create_project(self, url: str, name: str, strategy: str = "no-script-fetch",
                       crawl_depth: int = 0, output_dir: str = "",
                       project_id: str = None, estimated_seconds: int = 0,
                       estimated_bytes: int = 0) -> str:
        project_id = project_id or uuid.uuid4().hex
        self._conn.execute(
            """INSERT INTO projects (id, url, name, strategy, crawl_depth, output_dir,
                                     estimated_seconds, estimated_bytes)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
            (project_id, url, name, strategy, crawl_depth, output_dir,
             estimated_seconds, estimated_bytes),
        )
        self._conn.commit()
        return project_id

    def get_project(self, project_id: str) -> Optional[dict]:
        row = self._conn.execute(
            "SELECT * FROM projects WHERE id = ?", (project_id,)
        ).fetchone()
        return dict(row) if row else None

    def get_all_projects(self) -> List[dict]:
        rows = self._conn.execute(
            "SELECT * FROM projects ORDER BY created_at DESC, rowid DESC"
        ).fetchall()
        return [dict(r) for r in rows]

    def update_project_status(self, project_id: str, status: str, **fields):
        """Set status plus any PROJECT_FIELDS in one statement.

        completed_at is stamped when status becomes 'complete'.
        """
        unknown = set(fields) - PROJECT_FIELDS
        if unknown:
            raise ValueError(f"Unknown project fields: {sorted(unknown)}")

        assignments = ["status = ?"]
        params: list = [status]
        for key, value in fields.items():
            assignments.append(f"{key} = ?")
            params.append(value)
        if status == "complete":
            assignments.append("completed_at = CURRENT_TIMESTAMP")

        params.append(project_id)
        self._conn.execute(
            f"UPDATE projects SET {', '.join(assignments)} WHERE id = ?", params
        )
        self._conn.commit()

    def update_project_name(self, project_id: str, name: str):
        self._conn.execute("UPDATE projects SET name = ? WHERE id = ?", (name, project_id))
        self._conn.commit()

    def delete_project(self, project_id: str):
        self._conn.execute("DELETE FROM files WHERE project_id = ?", (project_id,))
        self._conn.execute("DELETE FROM projects WHERE id = ?", (project_id,))
        self._conn.commit()

    def create_file(self, project_id: str, path: str, kind: str, size: int,
                    content: str = None) -> int:
        """Insert a file record; a rerun writing the same path replaces it."""
        self._conn.execute(
            """INSERT INTO files (project_id, path, kind, content, size)
               VALUES (?, ?, ?, ?, ?)
               ON CONFLICT(project_id, path) DO UPDATE SET
                   kind = excluded.kind, content = excluded.content,
                   size = excluded.size, created_at = CURRENT_TIMESTAMP""",
            (project_id, path, kind, content, size),
        )
        self._conn.commit()
        row = self._conn.execute(
            "SELECT id FROM files WHERE project_id = ? AND path = ?", (project_id, path)
        ).fetchone()
        return row["id"]

    def get_file(self, file_id: int) -> Optional[dict]:
        row = self._conn.execute("SELECT * FROM files WHERE id = ?", (file_id,)).fetchone()
        return dict(row) if row else None

    def get_files_by_project(self, project_id: str) -> List[dict]:
        rows = self._conn.execute(
            "SELECT * FROM files WHERE project_id = ? ORDER BY path", (project_id,)
        ).fetchall()
        return [dict(r) for r in rows]

    def update_file_content(self, file_id: int, content: str):
        self._conn.execute(
            "UPDATE files SET content = ?, size = ? WHERE id = ?",
            (content, len(content.encode("utf-8")), file_id),
        )
        self._conn.commit()

    def get_stats(self) -> List[Tuple]:
        rows = self._conn.execute(
            """SELECT status, COUNT(*) as cnt,
                      COALESCE(SUM(total_files), 0) as files,
                      COALESCE(SUM(total_size), 0) as total_bytes
               FROM projects GROUP BY status ORDER BY status"""
        ).fetchall()
        return [tuple(r) for r in rows]
