from dataclasses import dataclass
from typing import Protocol, Type, Dict, Any, TypeVar, Optional, List

# --- Commands ---
@dataclass
class Command:
    pass

@dataclass
class FetchMedia(Command):
    url: str
    quality: str = "default"
    password: Optional[str] = None
    target_email: Optional[str] = None
    identity: str = "anonymous"
    user_agent: str = ""

@dataclass
class ListHistory(Command):
    identity: str = "anonymous"
    limit: int = 50

@dataclass
class CheckUrl(Command):
    url: str

@dataclass
class RedownloadArtifact(Command):
    id: str
    identity: str = "anonymous"

@dataclass
class DeleteArtifact(Command):
    ids: List[str]
    identity: str = "anonymous"

@dataclass
class RunSweep(Command):
    pass

@dataclass
class StorageStats(Command):
    identity: Optional[str] = None  # None for the global view

@dataclass
class ListUsers(Command):
    pass

@dataclass
class SetStorageLimit(Command):
    identity: str
    limit_bytes: int

@dataclass
class SetRole(Command):
    identity: str
    role: str


# --- Bus ---
C = TypeVar("C", bound=Command)

class CommandHandler(Protocol[C]):
    def __call__(self, command: C) -> Any:
        ...

class CommandBus:
    def __init__(self):
        self._handlers: Dict[Type[Command], CommandHandler] = {}

    def register(self, command_type: Type[C], handler: CommandHandler[C]):
        self._handlers[command_type] = handler

    def handle(self, command: Command) -> Any:
        handler = self._handlers.get(type(command))
        if not handler:
            raise ValueError(f"No handler registered for {type(command)}")
        return handler(command)
