"""Core data model for performance profiles."""

from __future__ import annotations

import copy as _copy
from dataclasses import dataclass, field
from typing import Optional


class ProfileError(Exception):
    """Base class for errors raised while handling profiles."""


class UnrecognizedError(ProfileError):
    """The input is not in a recognised profile format."""

    def __init__(self, message: str = "unrecognized profile format") -> None:
        super().__init__(message)


class MalformedError(ProfileError):
    """The input looks like a profile but its contents are inconsistent."""

    def __init__(self, message: str = "malformed profile format") -> None:
        super().__init__(message)


@dataclass
class ValueType:
    """Describes the semantics and measurement units of a value."""

    type: str = ""
    unit: str = ""


@dataclass(eq=False)
class Function:
    """A function in the profiled program."""

    id: int = 0
    name: str = ""
    system_name: str = ""
    filename: str = ""
    start_line: int = 0


@dataclass
class Line:
    """Source line information for one (possibly inlined) frame."""

    function: Optional[Function] = None
    line: int = 0


@dataclass(eq=False)
class Mapping:
    """A memory-mapped region of the profiled program."""

    id: int = 0
    start: int = 0
    limit: int = 0
    offset: int = 0
    file: str = ""
    build_id: str = ""
    has_functions: bool = False
    has_filenames: bool = False
    has_line_numbers: bool = False
    has_inline_frames: bool = False

    def unsymbolizable(self) -> bool:
        """Return True for well-known system regions such as ``[vdso]``."""
        return self.file.startswith("[")


@dataclass(eq=False)
class Location:
    """A unique place in the program, typically an instruction address."""

    id: int = 0
    mapping: Optional[Mapping] = None
    address: int = 0
    line: list[Line] = field(default_factory=list)
    is_folded: bool = False


@dataclass(eq=False)
class Sample:
    """A stack trace with associated values and labels."""

    location: list[Location] = field(default_factory=list)
    value: list[int] = field(default_factory=list)
    label: dict[str, list[str]] = field(default_factory=dict)
    num_label: dict[str, list[int]] = field(default_factory=dict)
    num_unit: dict[str, list[str]] = field(default_factory=dict)


@dataclass(eq=False)
class Profile:
    """An in-memory performance profile."""

    sample_type: list[ValueType] = field(default_factory=list)
    default_sample_type: str = ""
    sample: list[Sample] = field(default_factory=list)
    mapping: list[Mapping] = field(default_factory=list)
    location: list[Location] = field(default_factory=list)
    function: list[Function] = field(default_factory=list)
    comments: list[str] = field(default_factory=list)
    drop_frames: str = ""
    keep_frames: str = ""
    time_nanos: int = 0
    duration_nanos: int = 0
    period_type: Optional[ValueType] = None
    period: int = 0

    def copy(self) -> "Profile":
        """Return a deep copy that shares nothing with this profile."""
        return _copy.deepcopy(self)


def pad_string_array(arr: list[str], length: int) -> list[str]:
    """Return ``arr`` padded with empty strings up to ``length`` items."""
    if length <= len(arr):
        return arr
    return arr + [""] * (length - len(arr))