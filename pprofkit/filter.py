"""Filtering of samples, frames and tags in profiles."""

from __future__ import annotations

import re
from typing import Callable, Iterable, Optional

from pprofkit.model import Function, Line, Location, Profile, Sample

TagMatch = Callable[[Sample], bool]


def _function_matches(pattern: re.Pattern, fn: Function) -> bool:
    return pattern.search(fn.name) is not None or pattern.search(fn.filename) is not None


def _mapping_matches(location: Location, pattern: re.Pattern) -> bool:
    m = location.mapping
    return m is not None and pattern.search(m.file) is not None


def filter_samples_by_name(
    profile: Profile,
    focus: Optional[re.Pattern],
    ignore: Optional[re.Pattern],
    hide: Optional[re.Pattern],
    show: Optional[re.Pattern],
) -> tuple[bool, bool, bool, bool]:
    """Keep samples with a frame matching ``focus`` and none matching ``ignore``.

    Frames matching ``hide`` and frames not matching ``show`` are removed.
    Returns whether focus, ignore, hide and show matched anything.
    """
    fm = im = hm = hnm = False
    marks: dict[int, bool] = {}
    hidden: set[int] = set()
    for loc in profile.location:
        if ignore is not None and matches_name(loc, ignore):
            im = True
            marks[loc.id] = False
        elif focus is None or matches_name(loc, focus):
            fm = True
            marks[loc.id] = True

        if hide is not None and matches_name(loc, hide):
            hm = True
            loc.line = unmatched_lines(loc, hide)
            if not loc.line:
                hidden.add(loc.id)
        if show is not None:
            loc.line = matched_lines(loc, show)
            if not loc.line:
                hidden.add(loc.id)
            else:
                hnm = True

    kept: list[Sample] = []
    for sample in profile.sample:
        if not focused_and_not_ignored(sample.location, marks):
            continue
        if hidden:
            locs = [loc for loc in sample.location if loc.id not in hidden]
            if not locs:
                continue
            sample.location = locs
        kept.append(sample)
    profile.sample = kept
    return fm, im, hm, hnm


def show_from(profile: Profile, pattern: Optional[re.Pattern]) -> bool:
    """Drop all frames above the highest frame matching ``pattern``.

    Samples with no matching frame are removed. Returns whether anything
    matched; with no pattern, returns False and leaves the profile alone.
    """
    if pattern is None:
        return False
    matched = False
    show_locs: set[int] = set()
    for loc in profile.location:
        if _filter_show_from_location(loc, pattern):
            show_locs.add(loc.id)
            matched = True

    kept: list[Sample] = []
    for sample in profile.sample:
        for i, loc in reversed(list(enumerate(sample.location))):
            if loc.id in show_locs:
                sample.location = sample.location[: i + 1]
                kept.append(sample)
                break
    profile.sample = kept
    return matched


def _filter_show_from_location(location: Location, pattern: re.Pattern) -> bool:
    if _mapping_matches(location, pattern):
        return True
    i = last_matched_line_index(location, pattern)
    if i >= 0:
        location.line = location.line[: i + 1]
        return True
    return False


def last_matched_line_index(location: Location, pattern: re.Pattern) -> int:
    """Return the index of the last line matching ``pattern``, or -1."""
    for i, ln in reversed(list(enumerate(location.line))):
        if ln.function is not None and _function_matches(pattern, ln.function):
            return i
    return -1


def filter_tags_by_name(
    profile: Profile, show: Optional[re.Pattern], hide: Optional[re.Pattern]
) -> tuple[bool, bool]:
    """Keep only tags matching ``show`` and not ``hide``.

    Returns whether show and hide matched any tag.
    """
    sm = hm = False

    def should_remove(name: str) -> bool:
        nonlocal sm, hm
        match_show = show is None or show.search(name) is not None
        match_hide = hide is not None and hide.search(name) is not None
        sm = sm or match_show
        hm = hm or match_hide
        return not match_show or match_hide

    for sample in profile.sample:
        for key in list(sample.label):
            if should_remove(key):
                del sample.label[key]
        for key in list(sample.num_label):
            if should_remove(key):
                del sample.num_label[key]
    return sm, hm


def filter_samples_by_tag(
    profile: Profile, focus: Optional[TagMatch], ignore: Optional[TagMatch]
) -> tuple[bool, bool]:
    """Keep samples accepted by ``focus`` and not by ``ignore``.

    Returns whether focus and ignore matched any sample.
    """
    fm = im = False
    kept: list[Sample] = []
    for sample in profile.sample:
        focused = focus(sample) if focus is not None else True
        ignored = ignore(sample) if ignore is not None else False
        fm = fm or focused
        im = im or ignored
        if focused and not ignored:
            kept.append(sample)
    profile.sample = kept
    return fm, im


def matches_name(location: Location, pattern: re.Pattern) -> bool:
    """Return whether a function name, file name or mapping file matches."""
    if any(
        ln.function is not None and _function_matches(pattern, ln.function)
        for ln in location.line
    ):
        return True
    return _mapping_matches(location, pattern)


def unmatched_lines(location: Location, pattern: re.Pattern) -> list[Line]:
    """Return the lines of ``location`` that do not match ``pattern``."""
    if _mapping_matches(location, pattern):
        return []
    return [
        ln
        for ln in location.line
        if ln.function is None or not _function_matches(pattern, ln.function)
    ]


def matched_lines(location: Location, pattern: re.Pattern) -> list[Line]:
    """Return the lines of ``location`` that match ``pattern``.

    If the mapping matches, every line is returned.
    """
    if _mapping_matches(location, pattern):
        return list(location.line)
    return [
        ln
        for ln in location.line
        if ln.function is None or _function_matches(pattern, ln.function)
    ]


def focused_and_not_ignored(locations: Iterable[Location], marks: dict[int, bool]) -> bool:
    """Return whether some location is focused and none is ignored.

    ``marks`` maps location IDs to True (focused) or False (ignored).
    """
    focused = False
    for loc in locations:
        mark = marks.get(loc.id)
        if mark is None:
            continue
        if not mark:
            return False
        focused = True
    return focused