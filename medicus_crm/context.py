"""Per-process execution context handed to every tool handler."""

from dataclasses import dataclass, field
from typing import List, Optional

from supabase import Client

from medicus_crm.config import Settings, get_settings
from medicus_crm.writes import NoteRule, note_rules


@dataclass
class CrmContext:
    """Storage client plus the deployment's note defaults."""

    db: Client
    default_note_author: str = "Claude via MCP"
    created_by_fallback: str = "mcp"
    rules: List[NoteRule] = field(init=False)

    def __post_init__(self) -> None:
        self.rules = note_rules(self.created_by_fallback)

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "CrmContext":
        from medicus_crm.database import get_supabase_client

        if settings is None:
            settings = get_settings()
        return cls(
            db=get_supabase_client(settings),
            default_note_author=settings.default_note_author,
            created_by_fallback=settings.created_by_fallback,
        )
