"""
Output schemas for the ritual agents.

The generation service validates final outputs against these with
model_validate(); anything that does not conform is a stage failure.
"""

from pydantic import BaseModel, Field


class RitualArtifact(BaseModel):
    """A synthesized (or revised) ritual."""

    narrative: str = Field(..., min_length=1, description="Long-form ritual narrative")
    activity_name: str = Field(
        ..., min_length=1, max_length=120, description="Short name of the activity"
    )
    description: str = Field(..., min_length=1, description="Long description of the activity")
    themes: list[str] = Field(default_factory=list, description="Themes the ritual draws on")


class RedFlagReport(BaseModel):
    """Ethical / safety screening result for a ritual."""

    flagged: bool = Field(..., description="True if the ritual needs revision")
    issues: list[str] = Field(default_factory=list)
    suggestions: list[str] = Field(default_factory=list)
