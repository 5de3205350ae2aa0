from mailtree.schemas.email import (
    ComponentRefinementResponse,
    GlobalSettings,
    Patch,
    RefinementContext,
)

__all__ = [
    "ComponentRefinementResponse",
    "GlobalSettings",
    "Patch",
    "RefinementContext",
]
