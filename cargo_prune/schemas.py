"""Machine-readable report schema."""

from __future__ import annotations

from pydantic import BaseModel


class LocationOut(BaseModel):
    offset: int
    length: int


class FixOut(BaseModel):
    action: str  # "remove" | "move"
    dependency: str
    table: str
    destination: str | None = None
    applied: bool = False


class FindingOut(BaseModel):
    code: str
    severity: str  # "error" | "warning"
    message: str
    package: str | None = None
    file: str | None = None
    location: LocationOut | None = None
    help: str | None = None
    fix: FixOut | None = None


class Summary(BaseModel):
    errors: int
    warnings: int
    fixes: int


class Report(BaseModel):
    summary: Summary
    findings: list[FindingOut]
