from __future__ import annotations

from pathlib import Path

from gateflow.state.store import StateError

IGNORED_NAMES = {".git", "node_modules", "__pycache__", ".lock"}


class WorkspaceError(StateError):
    """Raised when a path resolves outside the project workspace."""


class Workspace:
    """Project file area the workers read from and write into."""

    def __init__(self, root: Path) -> None:
        self.root = root.resolve()

    def resolve(self, relative_path: str) -> Path:
        cleaned = (relative_path or "").strip().lstrip("/")
        if not cleaned:
            raise WorkspaceError("A file path is required.")
        candidate = (self.root / cleaned).resolve()
        if candidate != self.root and self.root not in candidate.parents:
            raise WorkspaceError(f"Path escapes the project workspace: {relative_path}")
        return candidate

    def exists(self, relative_path: str) -> bool:
        return self.resolve(relative_path).is_file()

    def read_file(self, relative_path: str) -> str:
        path = self.resolve(relative_path)
        if not path.is_file():
            raise WorkspaceError(f"File not found: {relative_path}")
        return path.read_text(encoding="utf-8")

    def write_file(self, relative_path: str, content: str) -> int:
        path = self.resolve(relative_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
        return len(content.encode("utf-8"))

    def directory_tree(self, directory: str | None = None) -> dict:
        base = self.resolve(directory) if directory else self.root
        if not base.exists():
            return {"name": base.name, "type": "directory", "children": []}
        return self._node(base)

    def _node(self, path: Path) -> dict:
        if path.is_file():
            return {"name": path.name, "type": "file"}
        children = [
            self._node(child)
            for child in path.iterdir()
            if child.name not in IGNORED_NAMES
        ]
        children.sort(key=lambda node: (node["type"] != "directory", node["name"]))
        return {"name": path.name, "type": "directory", "children": children}

    def format_tree(self, directory: str | None = None) -> str:
        tree = self.directory_tree(directory)
        children = tree.get("children", [])
        if not children:
            return "(empty workspace)"
        lines: list[str] = []
        self._format_children(children, "", lines)
        return "\n".join(lines)

    def _format_children(self, children: list[dict], prefix: str, lines: list[str]) -> None:
        for index, node in enumerate(children):
            last = index == len(children) - 1
            connector = "└── " if last else "├── "
            suffix = "/" if node["type"] == "directory" else ""
            lines.append(f"{prefix}{connector}{node['name']}{suffix}")
            if node["type"] == "directory":
                extension = "    " if last else "│   "
                self._format_children(node.get("children", []), prefix + extension, lines)
