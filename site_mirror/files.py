"""On-disk output tree for one job."""

import os
import shutil
from typing import List


class FileStore:
    def __init__(self, root: str):
        self.root = os.path.realpath(root)

    def resolve(self, relative_path: str) -> str:
        full = os.path.realpath(os.path.join(self.root, relative_path))
        # Path traversal protection: everything stays inside the job root
        if full != self.root and not full.startswith(self.root + os.sep):
            raise ValueError(f"Path escapes output directory: {relative_path}")
        return full

    def save(self, relative_path: str, data: bytes) -> str:
        full = self.resolve(relative_path)
        os.makedirs(os.path.dirname(full), exist_ok=True)
        with open(full, "wb") as f:
            f.write(data)
        return full

    def read_text(self, relative_path: str) -> str:
        with open(self.resolve(relative_path), "r", encoding="utf-8") as f:
            return f.read()

    def list_files(self) -> List[str]:
        files = []
        if not os.path.isdir(self.root):
            return files
        for root, _, names in os.walk(self.root):
            for name in names:
                files.append(os.path.relpath(os.path.join(root, name), self.root).replace(os.sep, "/"))
        return sorted(files)

    def delete(self):
        shutil.rmtree(self.root, ignore_errors=True)
