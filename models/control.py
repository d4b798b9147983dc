from __future__ import annotations

from pydantic import BaseModel, Field


class MonitorCommand(BaseModel):
    command: str = Field(..., description="Human monitor (HMP) command line")


class MonitorOutput(BaseModel):
    output: str


class MediaRequest(BaseModel):
    device: str = Field(..., description="Block device name, e.g. ide1-cd0")
    filename: str | None = Field(
        None, description="Image to insert. Null ejects the current medium"
    )


class ElementResponse(BaseModel):
    ok: bool
    reason: str = ""
