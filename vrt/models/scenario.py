"""Scenario payload data structures served by the VRT pages API."""

from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from vrt.naming import result_key


class InteractionType(str, Enum):
    CLICK = "click"
    TYPE = "type"
    MOUSEOVER = "mouseover"
    WAIT = "wait"


class Meta(BaseModel):
    generated_at: str = ""
    last_regenerated_at: Optional[str] = None
    generated_by: str = ""
    scenario_count: int = 0
    viewport_count: int = 0
    is_regenerating: bool = False
    token_required: bool = False
    notes: list[str] = Field(default_factory=list)


class Viewport(BaseModel):
    machine_name: str
    label: str = ""
    width: int = Field(gt=0)
    height: int = Field(default=0, ge=0)  # 0 = use the default height
    device_scale_factor: float = Field(default=1.0, gt=0)
    full_page: bool = False

    @property
    def key(self) -> str:
        return self.machine_name

    @property
    def display_name(self) -> str:
        return self.label or self.machine_name


class Interaction(BaseModel):
    # Kept as a plain string so unknown kinds reach the executor and get skipped there
    type: str
    selector: str = ""
    value: Optional[str] = None
    wait_ms: Optional[int] = None


class Scenario(BaseModel):
    id: str
    title: str = ""
    url: str
    mode: str = "static"  # static, interactive
    wait_time_ms: int = Field(default=0, ge=0)
    wait_time_seconds: Optional[float] = None
    viewport_keys: list[str] = Field(default_factory=list)
    source: str = ""
    source_reference: str = ""
    content_type: str = ""
    interactions: list[Interaction] = Field(default_factory=list)

    @property
    def display_name(self) -> str:
        return self.title or self.id


class ApiPayload(BaseModel):
    meta: Meta = Field(default_factory=Meta)
    viewports: list[Viewport] = Field(default_factory=list)
    scenarios: list[Scenario] = Field(default_factory=list)

    def viewport_map(self) -> dict[str, Viewport]:
        return {v.key: v for v in self.viewports}

    @property
    def total_tasks(self) -> int:
        return sum(len(s.viewport_keys) for s in self.scenarios)


class CaptureTask(BaseModel):
    """One (scenario, viewport) combination, consumed exactly once per run."""
    scenario: Scenario
    viewport: Viewport

    @property
    def key(self) -> str:
        return result_key(self.scenario.id, self.viewport.key)

    @property
    def name(self) -> str:
        return f"{self.scenario.display_name} @ {self.viewport.display_name}"
