from __future__ import annotations

from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from kindls.engine import Definition, DiagnosticRecord, Severity


class DefinitionDTO(BaseModel):
    name: str
    file: str
    start: int = 0
    end: int = 0
    signature: Optional[str] = None
    payload: Any = None

    @classmethod
    def from_definition(cls, definition: Definition) -> "DefinitionDTO":
        return cls(
            name=definition.name,
            file=definition.file,
            start=definition.start,
            end=definition.end,
            signature=definition.signature,
            payload=definition.payload,
        )

    def to_definition(self) -> Definition:
        return Definition(
            name=self.name,
            file=self.file,
            start=self.start,
            end=self.end,
            signature=self.signature,
            payload=self.payload,
        )


class DiagnosticDTO(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    message: str
    severity: int = int(Severity.ERROR)
    file: str
    from_offset: int = Field(alias="from")
    upto_offset: int = Field(alias="upto")

    @field_validator("severity")
    @classmethod
    def _known_severity(cls, value: int) -> int:
        if value not in {item.value for item in Severity}:
            raise ValueError(f"unknown severity {value}")
        return value

    def to_record(self) -> DiagnosticRecord:
        return DiagnosticRecord(
            message=self.message,
            severity=Severity(self.severity),
            file=self.file,
            from_offset=self.from_offset,
            upto_offset=self.upto_offset,
        )


class ParseRequest(BaseModel):
    uri: str
    text: str


class ParseResponse(BaseModel):
    ok: bool
    defs: List[DefinitionDTO] = []
    offset: int = 0
    message: str = ""


class SynthesisRequest(BaseModel):
    names: List[str]
    defs: List[DefinitionDTO]


class SynthesisResponse(BaseModel):
    defs: List[DefinitionDTO]
    report: List[DiagnosticDTO] = []
