from gateflow.state.store import ProjectStore, StateError
from gateflow.state.workspace import Workspace, WorkspaceError

__all__ = ["ProjectStore", "StateError", "Workspace", "WorkspaceError"]
