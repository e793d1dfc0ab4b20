"""
GITOPS RBAC - Resource, Verb and Subject Patterns

Resource paths are matched segment by segment. A segment is either a
literal or the single-level wildcard ``*``; nothing else is accepted, so
matching stays total and easy to audit.
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import FrozenSet, Optional, Tuple


WILDCARD = "*"
SEGMENT_SEPARATOR = "/"

_LITERAL_SEGMENT = re.compile(r"^[A-Za-z0-9._:@-]+$")


class Verb(str, Enum):
    """Recognized permission verbs."""

    GET = "get"
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    SYNC = "sync"
    OVERRIDE = "override"
    ANY = "*"


VERBS: FrozenSet[str] = frozenset(v.value for v in Verb)


class PatternError(ValueError):
    """A resource or subject pattern is not well-formed."""

    pass


# ============================================================
# Resource Segments
# ============================================================


class SegmentKind(str, Enum):
    LITERAL = "literal"
    WILDCARD = "wildcard"


@dataclass(frozen=True)
class Segment:
    """One segment of a resource pattern."""

    kind: SegmentKind
    value: str = ""

    def matches(self, segment: str) -> bool:
        if self.kind is SegmentKind.WILDCARD:
            return bool(segment)
        return self.value == segment

    def __str__(self) -> str:
        return WILDCARD if self.kind is SegmentKind.WILDCARD else self.value


@dataclass(frozen=True)
class ResourcePattern:
    """Compiled resource pattern, e.g. ``apps/*`` or ``projects/default/apps/*``."""

    segments: Tuple[Segment, ...]

    @classmethod
    def parse(cls, text: str) -> "ResourcePattern":
        if not isinstance(text, str) or not text:
            raise PatternError("resource pattern must be a non-empty string")

        segments = []
        for position, raw in enumerate(text.split(SEGMENT_SEPARATOR)):
            if raw == WILDCARD:
                segments.append(Segment(SegmentKind.WILDCARD))
            elif not raw:
                raise PatternError(f"empty segment at position {position} in '{text}'")
            elif WILDCARD in raw:
                raise PatternError(
                    f"segment '{raw}' mixes a wildcard with literal text; "
                    f"only a whole-segment '*' is allowed"
                )
            elif not _LITERAL_SEGMENT.match(raw):
                raise PatternError(f"segment '{raw}' contains unsupported characters")
            else:
                segments.append(Segment(SegmentKind.LITERAL, raw))

        return cls(tuple(segments))

    def matches(self, resource: str) -> bool:
        parts = resource.split(SEGMENT_SEPARATOR)
        if len(parts) != len(self.segments):
            return False
        return all(seg.matches(part) for seg, part in zip(self.segments, parts))

    def __str__(self) -> str:
        return SEGMENT_SEPARATOR.join(str(s) for s in self.segments)


def parse_verb(text: str) -> Verb:
    """Parse a verb, raising PatternError for anything unrecognized."""
    if not isinstance(text, str):
        raise PatternError("verb must be a string")
    try:
        return Verb(text.strip().lower())
    except ValueError:
        raise PatternError(
            f"unknown verb '{text}', expected one of {sorted(VERBS)}"
        ) from None


# ============================================================
# Subject Patterns
# ============================================================


class SubjectKind(str, Enum):
    """What part of the identity a binding matches."""

    GROUP = "group"
    USER = "user"
    EMAIL = "email"
    ANY = "any"  # bare name: subject or any group


@dataclass(frozen=True)
class SubjectPattern:
    """Compiled binding target such as ``group:team-view`` or ``user:alice``."""

    kind: SubjectKind
    name: str

    @classmethod
    def parse(cls, text: str) -> "SubjectPattern":
        if not isinstance(text, str) or not text.strip():
            raise PatternError("subject pattern must be a non-empty string")
        if text != text.strip() or any(c.isspace() for c in text):
            raise PatternError(f"subject pattern '{text}' contains whitespace")

        prefix, sep, name = text.partition(":")
        if not sep:
            return cls(SubjectKind.ANY, text)

        try:
            kind = SubjectKind(prefix)
        except ValueError:
            # Group names such as "my-org:team" keep their colon.
            return cls(SubjectKind.ANY, text)

        if kind is SubjectKind.ANY:
            raise PatternError("'any:' is not a valid subject prefix")
        if not name:
            raise PatternError(f"subject pattern '{text}' has an empty name")
        return cls(kind, name)

    def matches(
        self,
        subject: str,
        groups: FrozenSet[str],
        email: Optional[str] = None,
    ) -> bool:
        if self.kind is SubjectKind.GROUP:
            return self.name in groups
        if self.kind is SubjectKind.USER:
            return self.name == subject
        if self.kind is SubjectKind.EMAIL:
            return email is not None and self.name.lower() == email.lower()
        return self.name == subject or self.name in groups

    def __str__(self) -> str:
        if self.kind is SubjectKind.ANY:
            return self.name
        return f"{self.kind.value}:{self.name}"
