from __future__ import annotations

from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class TextEntry(BaseModel):
    """UTF-8 text destined for one path under the artifact root."""
    model_config = ConfigDict(frozen=True)

    kind: Literal["text"] = "text"
    path: str
    content: str
    declared_type: Optional[str] = None

    @property
    def payload(self) -> bytes:
        return self.content.encode("utf-8")


class BinaryEntry(BaseModel):
    """Raw bytes (already decoded from the transport encoding)."""
    model_config = ConfigDict(frozen=True)

    kind: Literal["binary"] = "binary"
    path: str
    data: bytes
    declared_type: Optional[str] = None

    @property
    def payload(self) -> bytes:
        return self.data


FileEntry = Annotated[Union[TextEntry, BinaryEntry], Field(discriminator="kind")]


class Plan(BaseModel):
    """One run's content proposal. Consumed once, never persisted directly."""
    entries: List[FileEntry] = Field(default_factory=list)
    summary: str = ""

    @property
    def paths(self) -> List[str]:
        return [entry.path for entry in self.entries]


# Wire format returned by the generator (before decoding)


class WireEntry(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    path: str
    content: str
    encoding: Literal["utf-8", "base64"] = "utf-8"
    kind: Literal["text", "binary"]
    declared_type: Optional[str] = Field(None, alias="type")


class WirePlan(BaseModel):
    model_config = ConfigDict(extra="forbid")

    entries: List[WireEntry]
    summary: str = ""
