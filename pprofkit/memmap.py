"""Memory map parsing and ID remapping shared by the legacy profile parsers."""

from __future__ import annotations

import re
from typing import Iterable, Optional, Sequence, Union

from pprofkit.model import Function, Location, Mapping, Profile, UnrecognizedError

_UINT64 = 1 << 64
_EXPECTED_START = 0x400000

# Character classes with the exact meaning of the profile formats' whitespace.
_S = r"[\t\n\f\r ]"
_NS = r"[^\t\n\f\r ]"
_X = r"[0-9A-Fa-f]"

_SPACE_DIGITS = _S + r"+[0-9]+"
_HEX_PAIR = _S + "+" + _X + "+:" + _X + "+"
_O_SPACE = _S + "*"
_C_HEX = r"(?:0x)?(" + _X + "+)"
_C_HEX_RANGE = _S + "*" + _C_HEX + r"[\t\n\f\r -]?" + _O_SPACE + _C_HEX + ":?"
_C_SPACE_STRING = "(?:" + _S + "+(" + _NS + "+))?"
_C_SPACE_HEX = "(?:" + _S + "+(" + _X + "+))?"
_C_SPACE_AT_OFFSET = "(?:" + _S + r"+\(@(" + _X + r"+)\))?"
_C_PERM = "(?:" + _S + r"+([-rwxp]+))?"

_PROC_MAPS_RE = re.compile(
    _C_HEX_RANGE + _C_PERM + _C_SPACE_HEX + _HEX_PAIR + _SPACE_DIGITS + _C_SPACE_STRING
)
_BRIEF_MAPS_RE = re.compile(
    _C_HEX_RANGE + _C_PERM + _C_SPACE_STRING + _C_SPACE_AT_OFFSET + _C_SPACE_HEX
)
# Log prefix of the form "... file:line] msg".
_LOG_INFO_RE = re.compile(r"[^\[\]]+:[0-9]+\]" + _S)

MEMORY_MAP_SENTINELS = ("--- Memory map: ---", "MAPPED_LIBRARIES:")

HEAPZ_SAMPLE_TYPES: list[list[str]] = [
    ["allocations", "size"],
    ["objects", "space"],
    ["inuse_objects", "inuse_space"],
    ["alloc_objects", "alloc_space"],
    ["alloc_objects", "alloc_space", "inuse_objects", "inuse_space"],
]
CONTENTIONZ_SAMPLE_TYPES: list[list[str]] = [["contentions", "delay"]]

ALLOC_RX_STR = "|".join(
    [
        # POSIX entry points.
        r"calloc",
        r"cfree",
        r"malloc",
        r"free",
        r"memalign",
        r"do_memalign",
        r"(__)?posix_memalign",
        r"pvalloc",
        r"valloc",
        r"realloc",
        # TC malloc.
        r"tcmalloc::.*",
        r"tc_calloc",
        r"tc_cfree",
        r"tc_malloc",
        r"tc_free",
        r"tc_memalign",
        r"tc_posix_memalign",
        r"tc_pvalloc",
        r"tc_valloc",
        r"tc_realloc",
        r"tc_new",
        r"tc_delete",
        r"tc_newarray",
        r"tc_deletearray",
        r"tc_new_nothrow",
        r"tc_newarray_nothrow",
        # Memory-allocation routines on OS X.
        r"malloc_zone_malloc",
        r"malloc_zone_calloc",
        r"malloc_zone_valloc",
        r"malloc_zone_realloc",
        r"malloc_zone_memalign",
        r"malloc_zone_free",
        # Go runtime.
        r"runtime\..*",
        # Other memory allocation routines.
        r"BaseArena::.*",
        r"(::)?do_malloc_no_errno",
        r"(::)?do_malloc_pages",
        r"(::)?do_malloc",
        r"DoSampledAllocation",
        r"MallocedMemBlock::MallocedMemBlock",
        r"_M_allocate",
        r"__builtin_(vec_)?delete",
        r"__builtin_(vec_)?new",
        r"__gnu_cxx::new_allocator::allocate",
        r"__libc_malloc",
        r"__malloc_alloc_template::allocate",
        r"allocate",
        r"cpp_alloc",
        r"operator new(\[\])?",
        r"simple_alloc::allocate",
    ]
)

ALLOC_SKIP_RX_STR = "|".join(
    [
        # Keep Go runtime frames that appear in the middle/bottom of the stack.
        r"runtime\.panic",
        r"runtime\.reflectcall",
        r"runtime\.call[0-9]*",
    ]
)

CPU_PROFILER_RX_STR = "|".join(
    [
        r"ProfileData::Add",
        r"ProfileData::prof_handler",
        r"CpuProfiler::prof_handler",
        r"__pthread_sighandler",
        r"__restore",
    ]
)

LOCK_RX_STR = "|".join(
    [
        r"RecordLockProfileData",
        r"(base::)?RecordLockProfileData.*",
        r"(base::)?SubmitMutexProfileData.*",
        r"(base::)?SubmitSpinLockProfileData.*",
        r"(base::Mutex::)?AwaitCommon.*",
        r"(base::Mutex::)?Unlock.*",
        r"(base::Mutex::)?UnlockSlow.*",
        r"(base::Mutex::)?ReaderUnlock.*",
        r"(base::MutexLock::)?~MutexLock.*",
        r"(Mutex::)?AwaitCommon.*",
        r"(Mutex::)?Unlock.*",
        r"(Mutex::)?UnlockSlow.*",
        r"(Mutex::)?ReaderUnlock.*",
        r"(MutexLock::)?~MutexLock.*",
        r"(SpinLock::)?Unlock.*",
        r"(SpinLock::)?SlowUnlock.*",
        r"(SpinLockHolder::)?~SpinLockHolder.*",
    ]
)

Lines = Union[str, bytes, Iterable[str]]


def _iter_lines(lines: Lines) -> Iterable[str]:
    """Yield lines without their terminators from text or an iterable of lines."""
    if isinstance(lines, bytes):
        lines = lines.decode("utf-8", errors="replace")
    if isinstance(lines, str):
        parts = lines.split("\n")
        if parts and parts[-1] == "":
            parts.pop()
        for part in parts:
            yield part[:-1] if part.endswith("\r") else part
        return
    for line in lines:
        if line.endswith("\n"):
            line = line[:-1]
        if line.endswith("\r"):
            line = line[:-1]
        yield line


def _replace_all(text: str, pairs: Sequence[tuple[str, str]]) -> str:
    """Replace non-overlapping occurrences left to right; earlier pairs win."""
    if not pairs:
        return text
    out: list[str] = []
    i = 0
    while i < len(text):
        for old, new in pairs:
            if old and text.startswith(old, i):
                out.append(new)
                i += len(old)
                break
        else:
            out.append(text[i])
            i += 1
    return "".join(out)


def _parse_hex(text: str) -> int:
    value = int(text, 16)
    if value >= _UINT64:
        raise UnrecognizedError()
    return value


def remove_logging_info(line: str) -> str:
    """Strip a glog-style ``file:line] `` prefix from ``line`` if present."""
    match = _LOG_INFO_RE.match(line)
    if match is not None:
        return line[match.end():]
    return line


def is_memory_map_sentinel(line: str) -> bool:
    """Return whether ``line`` contains a marker that starts a memory map."""
    return any(s in line for s in MEMORY_MAP_SENTINELS)


def parse_mapping_entry(line: str) -> Optional[Mapping]:
    """Parse one memory map line.

    Returns None for non-executable entries and raises UnrecognizedError
    for lines that are not mapping entries.
    """
    me = _PROC_MAPS_RE.match(line)
    if me is not None:
        start, end, perm, offset, file = (g or "" for g in me.groups())
        build_id = ""
    else:
        me = _BRIEF_MAPS_RE.match(line)
        if me is None:
            raise UnrecognizedError()
        start, end, perm, file, offset, build_id = (g or "" for g in me.groups())

    if perm and "x" not in perm:
        return None
    mapping = Mapping(file=file, build_id=build_id)
    mapping.start = _parse_hex(start)
    mapping.limit = _parse_hex(end)
    if offset:
        mapping.offset = _parse_hex(offset)
    return mapping


def parse_proc_maps(lines: Lines) -> list[Mapping]:
    """Parse a memory map in /proc/self/maps or a similar legacy format.

    Lines of the form ``attr=value`` define substitutions of ``$attr`` in
    later lines; other unrecognised lines are ignored.
    """
    mappings: list[Mapping] = []
    pairs: list[tuple[str, str]] = []
    for raw in _iter_lines(lines):
        line = _replace_all(remove_logging_info(raw), pairs)
        try:
            m = parse_mapping_entry(line)
        except UnrecognizedError:
            key, sep, value = line.partition("=")
            if sep:
                pairs.append(("$" + key.strip(), value.strip()))
            continue
        if m is not None:
            mappings.append(m)
    return mappings


def parse_memory_map(profile: Profile, lines: Lines) -> None:
    """Add the mappings of a memory map to ``profile`` and renumber its entities."""
    profile.mapping.extend(parse_proc_maps(lines))
    remap_location_ids(profile)
    remap_function_ids(profile)
    remap_mapping_ids(profile)


def remap_location_ids(profile: Profile) -> None:
    """Keep only locations referenced by samples, numbered in order of use."""
    seen: set[int] = set()
    locations: list[Location] = []
    for sample in profile.sample:
        for loc in sample.location:
            if id(loc) in seen:
                continue
            loc.id = len(locations) + 1
            locations.append(loc)
            seen.add(id(loc))
    profile.location = locations


def remap_function_ids(profile: Profile) -> None:
    """Keep only functions referenced by locations, numbered in order of use."""
    seen: set[int] = set()
    functions: list[Function] = []
    for loc in profile.location:
        for ln in loc.line:
            fn = ln.function
            if fn is None or id(fn) in seen:
                continue
            fn.id = len(functions) + 1
            functions.append(fn)
            seen.add(id(fn))
    profile.function = functions


def remap_mapping_ids(profile: Profile) -> None:
    """Attach locations to the mappings covering their addresses.

    Fixes common mistakes of legacy profile handlers, creates a fake
    mapping for addresses no mapping covers and renumbers all mappings.
    """
    if profile.mapping:
        first = profile.mapping[0]
        if first.file.startswith("/anon_hugepage"):
            if len(profile.mapping) > 1 and first.limit == profile.mapping[1].start:
                profile.mapping = profile.mapping[1:]

    if profile.mapping:
        first = profile.mapping[0]
        if (first.start - first.offset) % _UINT64 == _EXPECTED_START:
            first.start = _EXPECTED_START
            first.offset = 0

    fake: Optional[Mapping] = None
    for loc in profile.location:
        addr = loc.address
        if loc.mapping is not None or addr == 0:
            continue
        found = next((m for m in profile.mapping if m.start <= addr < m.limit), None)
        if found is None:
            # Legacy handlers may drop the first part of a mapping split in two.
            for m in profile.mapping:
                base = (m.start - m.offset) % _UINT64
                if m.offset != 0 and base <= addr < m.start:
                    m.start = base
                    m.offset = 0
                    found = m
                    break
        if found is None:
            if fake is None:
                fake = Mapping(id=1, limit=_UINT64 - 1)
                profile.mapping.append(fake)
            found = fake
        loc.mapping = found

    for i, m in enumerate(profile.mapping, start=1):
        m.id = i


def is_profile_type(profile: Profile, types: Iterable[Sequence[str]]) -> bool:
    """Return whether the sample types of ``profile`` equal one of ``types``."""
    names = [st.type for st in profile.sample_type]
    return any(list(t) == names for t in types)


def add_legacy_frame_info(profile: Profile) -> None:
    """Set the drop and keep frame patterns that suit the profile's kind."""
    if is_profile_type(profile, HEAPZ_SAMPLE_TYPES):
        profile.drop_frames, profile.keep_frames = ALLOC_RX_STR, ALLOC_SKIP_RX_STR
    elif is_profile_type(profile, CONTENTIONZ_SAMPLE_TYPES):
        profile.drop_frames, profile.keep_frames = LOCK_RX_STR, ""
    else:
        profile.drop_frames, profile.keep_frames = CPU_PROFILER_RX_STR, ""