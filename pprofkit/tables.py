"""Conversion between profiles and their string-table based encoded form.

In the encoded form every string is replaced by an index into a shared
string table, and references between entities are replaced by their IDs.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable, Optional

from pprofkit.model import (
    Function,
    Line,
    Location,
    MalformedError,
    Mapping,
    Profile,
    Sample,
    ValueType,
    pad_string_array,
)


class StringTable:
    """An indexed, de-duplicating table of strings."""

    def __init__(self, strings: Iterable[str] = ("",)) -> None:
        self._strings: list[str] = []
        self._index: dict[str, int] = {}
        for s in strings:
            self._index.setdefault(s, len(self._strings))
            self._strings.append(s)

    def add(self, s: str) -> int:
        """Return the index of ``s``, appending it if it is not present."""
        idx = self._index.get(s)
        if idx is None:
            idx = len(self._strings)
            self._strings.append(s)
            self._index[s] = idx
        return idx

    def get(self, index: int) -> str:
        """Return the string at ``index``; raise MalformedError if out of range."""
        if not 0 <= index < len(self._strings):
            raise MalformedError()
        return self._strings[index]

    def strings(self) -> list[str]:
        """Return the strings of the table in index order."""
        return list(self._strings)

    def __len__(self) -> int:
        return len(self._strings)


@dataclass
class EncodedLabel:
    """A sample label as string-table indices.

    ``key``, ``value`` and ``unit`` index the string table; ``num`` is the
    numeric value of a numeric label.
    """

    key: int = 0
    value: int = 0
    num: int = 0
    unit: int = 0


@dataclass
class EncodedProfile:
    """A profile whose strings are indices and whose references are IDs."""

    string_table: list[str] = field(default_factory=list)
    sample_type: list[dict[str, int]] = field(default_factory=list)
    sample: list[dict[str, Any]] = field(default_factory=list)
    mapping: list[dict[str, Any]] = field(default_factory=list)
    location: list[dict[str, Any]] = field(default_factory=list)
    function: list[dict[str, int]] = field(default_factory=list)
    drop_frames: int = 0
    keep_frames: int = 0
    time_nanos: int = 0
    duration_nanos: int = 0
    period_type: Optional[dict[str, int]] = None
    period: int = 0
    comment: list[int] = field(default_factory=list)
    default_sample_type: int = 0


def _encode_sample(sample: Sample, table: StringTable) -> dict[str, Any]:
    labels: list[EncodedLabel] = []
    for key in sorted(sample.label):
        for value in sample.label[key]:
            labels.append(EncodedLabel(key=table.add(key), value=table.add(value)))
    for key in sorted(sample.num_label):
        key_x = table.add(key)
        units = sample.num_unit.get(key, [])
        for i, num in enumerate(sample.num_label[key]):
            unit_x = 0
            if units:
                if i >= len(units):
                    raise MalformedError(
                        f"numeric label {key!r} has fewer units than values"
                    )
                unit_x = table.add(units[i])
            labels.append(EncodedLabel(key=key_x, num=num, unit=unit_x))
    return {
        "location_id": [loc.id for loc in sample.location],
        "value": list(sample.value),
        "label": labels,
    }


def encode_tables(profile: Profile) -> EncodedProfile:
    """Build the encoded form of ``profile`` without modifying it."""
    table = StringTable()

    sample_type = [
        {"type": table.add(st.type), "unit": table.add(st.unit)}
        for st in profile.sample_type
    ]
    samples = [_encode_sample(s, table) for s in profile.sample]
    mappings = [
        {
            "id": m.id,
            "memory_start": m.start,
            "memory_limit": m.limit,
            "file_offset": m.offset,
            "filename": table.add(m.file),
            "build_id": table.add(m.build_id),
            "has_functions": m.has_functions,
            "has_filenames": m.has_filenames,
            "has_line_numbers": m.has_line_numbers,
            "has_inline_frames": m.has_inline_frames,
        }
        for m in profile.mapping
    ]
    locations = [
        {
            "id": loc.id,
            "mapping_id": loc.mapping.id if loc.mapping is not None else 0,
            "address": loc.address,
            "line": [
                {
                    "function_id": ln.function.id if ln.function is not None else 0,
                    "line": ln.line,
                }
                for ln in loc.line
            ],
            "is_folded": loc.is_folded,
        }
        for loc in profile.location
    ]
    functions = [
        {
            "id": f.id,
            "name": table.add(f.name),
            "system_name": table.add(f.system_name),
            "filename": table.add(f.filename),
            "start_line": f.start_line,
        }
        for f in profile.function
    ]
    drop_frames = table.add(profile.drop_frames)
    keep_frames = table.add(profile.keep_frames)

    period_type = None
    if profile.period_type is not None:
        type_x = table.add(profile.period_type.type)
        unit_x = table.add(profile.period_type.unit)
        if type_x or unit_x:
            period_type = {"type": type_x, "unit": unit_x}

    comments = [table.add(c) for c in profile.comments]
    default_sample_type = table.add(profile.default_sample_type)

    return EncodedProfile(
        string_table=table.strings(),
        sample_type=sample_type,
        sample=samples,
        mapping=mappings,
        location=locations,
        function=functions,
        drop_frames=drop_frames,
        keep_frames=keep_frames,
        time_nanos=profile.time_nanos,
        duration_nanos=profile.duration_nanos,
        period_type=period_type,
        period=profile.period,
        comment=comments,
        default_sample_type=default_sample_type,
    )


def _decode_sample(
    enc: dict[str, Any], table: StringTable, locations: dict[int, Location]
) -> Sample:
    labels: dict[str, list[str]] = {}
    num_labels: dict[str, list[int]] = {}
    num_units: dict[str, list[str]] = {}
    for lab in enc.get("label", []):
        key = table.get(lab.key)
        if lab.value:
            labels.setdefault(key, []).append(table.get(lab.value))
        elif lab.num:
            if lab.unit:
                unit = table.get(lab.unit)
                units = pad_string_array(
                    num_units.get(key, []), len(num_labels.get(key, []))
                )
                num_units[key] = units + [unit]
            num_labels.setdefault(key, []).append(lab.num)
    if num_labels:
        num_units = {
            key: pad_string_array(units, len(num_labels[key])) if units else units
            for key, units in num_units.items()
        }
    else:
        num_units = {}
    return Sample(
        location=[locations.get(lid) for lid in enc.get("location_id", [])],
        value=list(enc.get("value", [])),
        label=labels,
        num_label=num_labels,
        num_unit=num_units,
    )


def decode_tables(encoded: EncodedProfile) -> Profile:
    """Rebuild a profile from its encoded form.

    Raises MalformedError if the string table is invalid or any string
    index is out of range.
    """
    if encoded.string_table and encoded.string_table[0] != "":
        raise MalformedError("string_table[0] must be ''")
    table = StringTable(encoded.string_table)

    mappings: list[Mapping] = []
    mappings_by_id: dict[int, Mapping] = {}
    for enc in encoded.mapping:
        m = Mapping(
            id=enc.get("id", 0),
            start=enc.get("memory_start", 0),
            limit=enc.get("memory_limit", 0),
            offset=enc.get("file_offset", 0),
            file=table.get(enc.get("filename", 0)),
            build_id=table.get(enc.get("build_id", 0)),
            has_functions=enc.get("has_functions", False),
            has_filenames=enc.get("has_filenames", False),
            has_line_numbers=enc.get("has_line_numbers", False),
            has_inline_frames=enc.get("has_inline_frames", False),
        )
        mappings.append(m)
        mappings_by_id[m.id] = m

    functions: list[Function] = []
    functions_by_id: dict[int, Function] = {}
    for enc in encoded.function:
        f = Function(
            id=enc.get("id", 0),
            name=table.get(enc.get("name", 0)),
            system_name=table.get(enc.get("system_name", 0)),
            filename=table.get(enc.get("filename", 0)),
            start_line=enc.get("start_line", 0),
        )
        functions.append(f)
        functions_by_id[f.id] = f

    locations: list[Location] = []
    locations_by_id: dict[int, Location] = {}
    for enc in encoded.location:
        lines = []
        for ln in enc.get("line", []):
            fid = ln.get("function_id", 0)
            fn = functions_by_id.get(fid) if fid else None
            lines.append(Line(function=fn, line=ln.get("line", 0)))
        loc = Location(
            id=enc.get("id", 0),
            mapping=mappings_by_id.get(enc.get("mapping_id", 0)),
            address=enc.get("address", 0),
            line=lines,
            is_folded=enc.get("is_folded", False),
        )
        locations.append(loc)
        locations_by_id[loc.id] = loc

    sample_type = [
        ValueType(type=table.get(st.get("type", 0)), unit=table.get(st.get("unit", 0)))
        for st in encoded.sample_type
    ]
    samples = [_decode_sample(enc, table, locations_by_id) for enc in encoded.sample]

    drop_frames = table.get(encoded.drop_frames)
    keep_frames = table.get(encoded.keep_frames)
    pt = encoded.period_type or {}
    period_type = ValueType(
        type=table.get(pt.get("type", 0)), unit=table.get(pt.get("unit", 0))
    )
    comments = [table.get(c) for c in encoded.comment]
    default_sample_type = table.get(encoded.default_sample_type)

    return Profile(
        sample_type=sample_type,
        default_sample_type=default_sample_type,
        sample=samples,
        mapping=mappings,
        location=locations,
        function=functions,
        comments=comments,
        drop_frames=drop_frames,
        keep_frames=keep_frames,
        time_nanos=encoded.time_nanos,
        duration_nanos=encoded.duration_nanos,
        period_type=period_type,
        period=encoded.period,
    )