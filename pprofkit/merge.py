"""Merging and compaction of profiles."""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from typing import Hashable, Optional, Sequence

from pprofkit.model import (
    Function,
    Line,
    Location,
    Mapping,
    Profile,
    ProfileError,
    Sample,
    ValueType,
)

_UINT64 = 1 << 64
_MAPSIZE_ROUNDING = 0x1000


@dataclass
class MapInfo:
    """A mapping in the merged profile and the address shift to reach it."""

    mapping: Optional[Mapping] = None
    offset: int = 0


class ProfileMerger:
    """Accumulates entities of source profiles into one merged profile."""

    def __init__(self, profile: Profile) -> None:
        self.profile = profile
        # Tables valid for the source profile currently being merged.
        self.locations_by_id: dict[int, Location] = {}
        self.functions_by_id: dict[int, Function] = {}
        self.mappings_by_id: dict[int, MapInfo] = {}
        # Tables valid across all source profiles.
        self.samples: dict[Hashable, Sample] = {}
        self.locations: dict[Hashable, Location] = {}
        self.functions: dict[Hashable, Function] = {}
        self.mappings: dict[Hashable, Mapping] = {}

    def _start_source(self) -> None:
        self.locations_by_id = {}
        self.functions_by_id = {}
        self.mappings_by_id = {}

    def map_sample(self, src: Sample) -> Sample:
        """Add ``src`` to the merged profile, summing into an equal sample."""
        sample = Sample(
            location=[self.map_location(loc) for loc in src.location],
            value=[0] * len(src.value),
            label={k: list(v) for k, v in src.label.items()},
            num_label={k: list(v) for k, v in src.num_label.items()},
            num_unit={k: list(src.num_unit.get(k, [])) for k in src.num_label},
        )
        key = sample_key(sample)
        existing = self.samples.get(key)
        if existing is not None:
            for i, v in enumerate(src.value):
                existing.value[i] += v
            return existing
        sample.value = list(src.value)
        self.samples[key] = sample
        self.profile.sample.append(sample)
        return sample

    def map_location(self, src: Optional[Location]) -> Optional[Location]:
        """Return the merged-profile location equivalent to ``src``."""
        if src is None:
            return None
        known = self.locations_by_id.get(src.id)
        if known is not None:
            return known

        info = self.map_mapping(src.mapping)
        loc = Location(
            id=len(self.profile.location) + 1,
            mapping=info.mapping,
            address=(src.address + info.offset) % _UINT64,
            line=[self._map_line(ln) for ln in src.line],
            is_folded=src.is_folded,
        )
        key = location_key(loc)
        existing = self.locations.get(key)
        if existing is not None:
            self.locations_by_id[src.id] = existing
            return existing
        self.locations_by_id[src.id] = loc
        self.locations[key] = loc
        self.profile.location.append(loc)
        return loc

    def map_mapping(self, src: Optional[Mapping]) -> MapInfo:
        """Return the merged mapping for ``src`` and the address offset to it."""
        if src is None:
            return MapInfo()
        known = self.mappings_by_id.get(src.id)
        if known is not None:
            return known

        key = mapping_key(src)
        existing = self.mappings.get(key)
        if existing is not None:
            info = MapInfo(existing, existing.start - src.start)
            self.mappings_by_id[src.id] = info
            return info

        m = dataclasses.replace(src, id=len(self.profile.mapping) + 1)
        self.profile.mapping.append(m)
        self.mappings[key] = m
        info = MapInfo(m, 0)
        self.mappings_by_id[src.id] = info
        return info

    def _map_line(self, src: Line) -> Line:
        return Line(function=self.map_function(src.function), line=src.line)

    def map_function(self, src: Optional[Function]) -> Optional[Function]:
        """Return the merged-profile function equivalent to ``src``."""
        if src is None:
            return None
        known = self.functions_by_id.get(src.id)
        if known is not None:
            return known
        key = function_key(src)
        existing = self.functions.get(key)
        if existing is not None:
            self.functions_by_id[src.id] = existing
            return existing
        fn = Function(
            id=len(self.profile.function) + 1,
            name=src.name,
            system_name=src.system_name,
            filename=src.filename,
            start_line=src.start_line,
        )
        self.functions[key] = fn
        self.functions_by_id[src.id] = fn
        self.profile.function.append(fn)
        return fn


def merge(profiles: Sequence[Profile]) -> Profile:
    """Merge ``profiles`` into a new, compacted profile.

    All profiles must have the same sample and period types. The result has
    the largest period, the earliest nonzero start time and the summed
    duration.
    """
    if not profiles:
        raise ProfileError("no profiles to merge")
    merged = _combine_headers(profiles)
    merger = ProfileMerger(merged)

    for src in profiles:
        merger._start_source()
        if not merger.mappings and src.mapping:
            # The first mapping represents the main binary; keep it first.
            merger.map_mapping(src.mapping[0])
        for sample in src.sample:
            if not is_zero_sample(sample):
                merger.map_sample(sample)

    if any(is_zero_sample(s) for s in merged.sample):
        # Samples summed to zero; merge again to drop them and what they use.
        return merge([merged])
    return merged


def compact(profile: Profile) -> Profile:
    """Return a copy of ``profile`` without unreferenced entities."""
    return merge([profile])


def is_zero_sample(sample: Sample) -> bool:
    """Return whether every value of ``sample`` is zero."""
    return all(v == 0 for v in sample.value)


def sample_key(sample: Sample) -> Hashable:
    """Return a key identifying samples that may be summed together."""
    ids = tuple(loc.id if loc is not None else None for loc in sample.location)
    labels = tuple(sorted((k, tuple(v)) for k, v in sample.label.items()))
    num_labels = tuple(
        sorted(
            (k, tuple(v), tuple(sample.num_unit.get(k, [])))
            for k, v in sample.num_label.items()
        )
    )
    return ids, labels, num_labels


def location_key(location: Location) -> Hashable:
    """Return a key identifying equivalent locations."""
    addr = location.address
    mapping_id = 0
    if location.mapping is not None:
        # Normalize for address space randomization.
        addr = (addr - location.mapping.start) % _UINT64
        mapping_id = location.mapping.id
    lines = tuple(
        (ln.function.id if ln.function is not None else None, ln.line)
        for ln in location.line
    )
    return addr, mapping_id, lines, location.is_folded


def mapping_key(mapping: Mapping) -> Hashable:
    """Return a key identifying equivalent mappings.

    The size is rounded up to a 4K boundary; the build ID is preferred
    over the file name. Fake mappings with neither share one key.
    """
    size = (mapping.limit - mapping.start) % _UINT64
    size = (size + _MAPSIZE_ROUNDING - 1) % _UINT64
    size -= size % _MAPSIZE_ROUNDING
    return size, mapping.offset, mapping.build_id or mapping.file


def function_key(function: Function) -> Hashable:
    """Return a key identifying equivalent functions."""
    return function.start_line, function.name, function.system_name, function.filename


def _value_type(vt: Optional[ValueType]) -> ValueType:
    return vt if vt is not None else ValueType()


def _equal_value_type(a: Optional[ValueType], b: Optional[ValueType]) -> bool:
    a, b = _value_type(a), _value_type(b)
    return a.type == b.type and a.unit == b.unit


def check_compatible(p: Profile, pb: Profile) -> None:
    """Raise ProfileError unless ``p`` and ``pb`` can be merged or compared."""
    if not _equal_value_type(p.period_type, pb.period_type):
        raise ProfileError(
            f"incompatible period types {p.period_type} and {pb.period_type}"
        )
    if len(p.sample_type) != len(pb.sample_type) or not all(
        _equal_value_type(a, b) for a, b in zip(p.sample_type, pb.sample_type)
    ):
        raise ProfileError(
            f"incompatible sample types {p.sample_type} and {pb.sample_type}"
        )


def _combine_headers(profiles: Sequence[Profile]) -> Profile:
    first = profiles[0]
    for other in profiles[1:]:
        check_compatible(first, other)

    time_nanos = duration_nanos = period = 0
    comments: list[str] = []
    seen_comments: set[str] = set()
    default_sample_type = ""
    for src in profiles:
        if time_nanos == 0 or src.time_nanos < time_nanos:
            time_nanos = src.time_nanos
        duration_nanos += src.duration_nanos
        if period == 0 or period < src.period:
            period = src.period
        for c in src.comments:
            if c not in seen_comments:
                comments.append(c)
                seen_comments.add(c)
        if not default_sample_type:
            default_sample_type = src.default_sample_type

    return Profile(
        sample_type=[dataclasses.replace(st) for st in first.sample_type],
        drop_frames=first.drop_frames,
        keep_frames=first.keep_frames,
        time_nanos=time_nanos,
        duration_nanos=duration_nanos,
        period_type=(
            dataclasses.replace(first.period_type)
            if first.period_type is not None
            else None
        ),
        period=period,
        comments=comments,
        default_sample_type=default_sample_type,
    )