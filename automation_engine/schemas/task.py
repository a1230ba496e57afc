"""Task and section schemas consumed by the automation engine."""

from datetime import UTC, datetime

from pydantic import BaseModel, ConfigDict, Field


def _utcnow() -> datetime:
    return datetime.now(UTC)


class Task(BaseModel):
    """Card on a board."""

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "id": "3f1c2a9e-1b7d-4d7a-9d33-0f2f7f8f1a10",
                "project_id": "project-1",
                "section_id": "project-1-section-todo",
                "description": "Write weekly report",
                "order": 3,
            }
        }
    )

    id: str = Field(..., description="Task ID")
    project_id: str | None = Field(None, description="Owning project ID")
    parent_task_id: str | None = Field(None, description="Parent task ID (subtasks only)")
    section_id: str | None = Field(None, description="Section the card sits in")
    description: str = Field(..., description="Card title", min_length=1, max_length=500)
    notes: str = Field(default="", description="Free-form notes")
    completed: bool = Field(default=False, description="Completion state")
    completed_at: datetime | None = Field(None, description="When the card was completed")
    due_date: datetime | None = Field(None, description="Due date")
    order: float = Field(default=0, description="Ordering key inside the section")
    created_at: datetime = Field(default_factory=_utcnow, description="Creation timestamp")
    updated_at: datetime = Field(default_factory=_utcnow, description="Last update timestamp")
    moved_to_section_at: datetime | None = Field(
        None, description="When the card entered its current section"
    )


class Section(BaseModel):
    """Board column."""

    id: str = Field(..., description="Section ID")
    project_id: str | None = Field(None, description="Owning project ID")
    name: str = Field(..., description="Section name", min_length=1, max_length=100)
    order: float = Field(default=0, description="Ordering key inside the project")
    created_at: datetime = Field(default_factory=_utcnow, description="Creation timestamp")
    updated_at: datetime = Field(default_factory=_utcnow, description="Last update timestamp")
