"""Radio Program Pipeline - Segment data model.

A program is described by an ordered list of segments. Identity is array
position: materialized[i] always corresponds to segments[i].

Structural roles decide which segments receive background music. Callers
may tag roles explicitly; otherwise they are inferred from kind and
position (see infer_roles).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path


class SegmentKind(StrEnum):
    """Input segment kinds."""

    SINGLE = "single"
    RECORDING = "recording"
    QUESTION_INTRO = "question_intro"
    PAUSE = "pause"
    QUESTION_TRANSITION = "question_transition"
    SILENCE = "silence"
    COMBINE_WITH_BACKGROUND = "combine_with_background"


SILENCE_KINDS = frozenset(
    {
        SegmentKind.QUESTION_INTRO,
        SegmentKind.PAUSE,
        SegmentKind.QUESTION_TRANSITION,
        SegmentKind.SILENCE,
    }
)
DOWNLOAD_KINDS = frozenset({SegmentKind.SINGLE, SegmentKind.RECORDING})


class Role(StrEnum):
    """Structural role of a segment in the program timeline."""

    OPENING_JINGLE = "opening_jingle"
    BOUNDARY_JINGLE = "boundary_jingle"
    PROMPT = "prompt"
    RECORDING = "recording"
    SILENCE = "silence"
    CLOSING = "closing"


# Never covered by background music
BOUNDARY_ROLES = frozenset({Role.OPENING_JINGLE, Role.BOUNDARY_JINGLE, Role.CLOSING})

# Authored speech used as the loudness reference
SYSTEM_VOICE_ROLES = frozenset({Role.PROMPT, Role.CLOSING})


class MaterializedKind(StrEnum):
    SINGLE = "single"
    ANSWERS = "answers"


@dataclass(frozen=True)
class GenerationKey:
    """Scope of mutual exclusion, manifests and job ownership."""

    language: str
    world: str
    owner_id: str
    variant: str

    @property
    def lock_key(self) -> str:
        return f"{self.language}:{self.world}:{self.owner_id}:{self.variant}"

    @property
    def storage_prefix(self) -> str:
        """Object storage directory for this key: /{language}/{owner_id}/{world}."""
        return f"/{self.language}/{self.owner_id}/{self.world}"


@dataclass(frozen=True)
class Segment:
    """One submitted segment (immutable)."""

    kind: SegmentKind
    source_url: str | None = None
    duration_seconds: float | None = None
    answer_urls: tuple[str, ...] = ()
    background_url: str | None = None
    question_id: str | None = None
    role: Role | None = None

    @classmethod
    def from_dict(cls, data: dict) -> Segment:
        """Build a Segment from its JSON form (as stored in segments_json)."""
        role = data.get("role")
        return cls(
            kind=SegmentKind(data["kind"]),
            source_url=data.get("source_url"),
            duration_seconds=data.get("duration_seconds"),
            answer_urls=tuple(data.get("answer_urls") or ()),
            background_url=data.get("background_url"),
            question_id=data.get("question_id"),
            role=Role(role) if role else None,
        )

    def to_dict(self) -> dict:
        data: dict = {"kind": str(self.kind)}
        if self.source_url is not None:
            data["source_url"] = self.source_url
        if self.duration_seconds is not None:
            data["duration_seconds"] = self.duration_seconds
        if self.answer_urls:
            data["answer_urls"] = list(self.answer_urls)
        if self.background_url is not None:
            data["background_url"] = self.background_url
        if self.question_id is not None:
            data["question_id"] = self.question_id
        if self.role is not None:
            data["role"] = str(self.role)
        return data

    @property
    def source_urls(self) -> tuple[str, ...]:
        if self.kind == SegmentKind.COMBINE_WITH_BACKGROUND:
            return self.answer_urls
        if self.source_url:
            return (self.source_url,)
        return ()


@dataclass
class MaterializedSegment:
    """A segment resolved to a local audio file."""

    local_path: Path
    kind: MaterializedKind
    original_index: int
    role: Role
    question_id: str | None = None
    source_urls: tuple[str, ...] = ()
    placeholder: bool = False
    # Set by the normalizer when the file was replaced by a normalized copy
    normalized: bool = False
    metrics: dict = field(default_factory=dict)

    @property
    def is_recording(self) -> bool:
        return self.role == Role.RECORDING


def infer_roles(segments: list[Segment]) -> list[Role]:
    """Resolve the structural role of every segment.

    Explicit roles win. Otherwise: the first ``single`` is the opening
    jingle, the last ``single`` is the closing asset, any other ``single``
    is a prompt, recordings and answer groups are recordings, and the
    pause-like kinds are silence.
    """
    single_positions = [i for i, s in enumerate(segments) if s.kind == SegmentKind.SINGLE]
    first_single = single_positions[0] if single_positions else None
    last_single = single_positions[-1] if len(single_positions) > 1 else None

    roles: list[Role] = []
    for index, segment in enumerate(segments):
        if segment.role is not None:
            roles.append(segment.role)
        elif segment.kind in SILENCE_KINDS:
            roles.append(Role.SILENCE)
        elif segment.kind in (SegmentKind.RECORDING, SegmentKind.COMBINE_WITH_BACKGROUND):
            roles.append(Role.RECORDING)
        elif index == first_single:
            roles.append(Role.OPENING_JINGLE)
        elif index == last_single:
            roles.append(Role.CLOSING)
        else:
            roles.append(Role.PROMPT)
    return roles


def find_background_url(segments: list[Segment], explicit: str | None = None) -> str | None:
    """Background track: explicit value, else the first answer group's backgroundUrl."""
    if explicit:
        return explicit
    for segment in segments:
        if segment.kind == SegmentKind.COMBINE_WITH_BACKGROUND and segment.background_url:
            return segment.background_url
    return None
