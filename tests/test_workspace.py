from pathlib import Path

import pytest

from gateflow.state.workspace import Workspace, WorkspaceError


def test_write_and_read_round_trip(tmp_path: Path) -> None:
    workspace = Workspace(tmp_path / "workspace")

    written = workspace.write_file("frontend/src/App.tsx", "export const App = () => null;\n")

    assert written == len("export const App = () => null;\n")
    assert workspace.exists("frontend/src/App.tsx")
    assert workspace.read_file("/frontend/src/App.tsx").startswith("export const App")


def test_paths_cannot_escape_workspace(tmp_path: Path) -> None:
    workspace = Workspace(tmp_path / "workspace")

    with pytest.raises(WorkspaceError, match="escapes"):
        workspace.write_file("../outside.txt", "nope")
    with pytest.raises(WorkspaceError, match="required"):
        workspace.resolve("  ")
    with pytest.raises(WorkspaceError, match="not found"):
        workspace.read_file("missing.md")


def test_format_tree_lists_directories_first(tmp_path: Path) -> None:
    workspace = Workspace(tmp_path / "workspace")
    workspace.write_file("README.md", "# demo\n")
    workspace.write_file("frontend/src/App.tsx", "")
    workspace.write_file("backend/src/main.ts", "")
    workspace.write_file("node_modules/left-pad/index.js", "")

    assert workspace.format_tree() == "\n".join(
        [
            "├── backend/",
            "│   └── src/",
            "│       └── main.ts",
            "├── frontend/",
            "│   └── src/",
            "│       └── App.tsx",
            "└── README.md",
        ]
    )


def test_format_tree_reports_empty_workspace(tmp_path: Path) -> None:
    assert Workspace(tmp_path / "missing").format_tree() == "(empty workspace)"
