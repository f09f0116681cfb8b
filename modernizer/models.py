from __future__ import annotations

from typing import Dict, List, Optional
from pydantic import BaseModel, Field


class NormalizeRequest(BaseModel):
    name: str = Field(examples=["Demo.Person.cls"])
    content: str


class NormalizedDocument(BaseModel):
    name: str
    sha256: str
    content: str
    lines: List[str] = Field(default_factory=list)


class ReportSummary(BaseModel):
    lines: int = 0
    modern: bool = False
    marker_stripped: bool = False
    assignments_rewritten: int = 0
    invocations_rewritten: int = 0
    deterministic: bool = True


class ReportItem(BaseModel):
    row: Optional[int] = None
    column: Optional[int] = None
    issue: str
    value: Optional[str] = None
    action: str


class NormalizationReport(BaseModel):
    summary: ReportSummary
    rewrites: List[ReportItem] = Field(default_factory=list)


class NormalizeResponse(BaseModel):
    document: NormalizedDocument
    report: NormalizationReport


class CompileRequest(BaseModel):
    name: str
    content: str
    flags: Optional[str] = None


class NamespaceCompileRequest(BaseModel):
    flags: Optional[str] = None


class CompileResponse(BaseModel):
    documents: List[str]
    message: str
    others: Dict[str, List[str]] = Field(default_factory=dict)


class HealthResponse(BaseModel):
    ok: bool = True
