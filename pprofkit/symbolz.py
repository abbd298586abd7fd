"""Symbolization of profiles using the output of a symbolz service."""

from __future__ import annotations

import posixpath
import re
from dataclasses import dataclass
from typing import Callable, Mapping as MappingType, Optional, Sequence
from urllib.parse import urlsplit, urlunsplit

from pprofkit.model import Function, Line, Mapping, ProfileError, Profile

_SYMBOLZ_RE = re.compile(r"(0x[0-9A-Fa-f]+)\s+(.*)")
_UINT64 = 1 << 64

_GPERFTOOLS_SUFFIXES = (
    "/pprof/heap",
    "/pprof/growth",
    "/pprof/profile",
    "/pprof/pmuprofile",
    "/pprof/contention",
)

SymbolFetcher = Callable[[str, str], bytes]


@dataclass
class MappingSource:
    """A place a mapping's profile was fetched from, with its start address."""

    source: str
    start: int = 0


def symbolize(
    profile: Profile,
    force: bool,
    sources: Optional[MappingType[str, Sequence[MappingSource]]],
    syms: SymbolFetcher,
) -> None:
    """Symbolize ``profile`` with data returned by ``syms(url, query)``.

    Unless ``force`` is set, mappings already marked as having functions are
    skipped. Unsymbolizable system mappings are always skipped.
    """
    sources = sources or {}
    for m in profile.mapping:
        if not force and m.has_functions:
            continue
        if m.unsymbolizable():
            continue
        mapping_sources = list(sources.get(m.file, ()))
        if m.build_id:
            mapping_sources.extend(sources.get(m.build_id, ()))
        for src in mapping_sources:
            symz = symbolz_url(src.source)
            if symz:
                symbolize_mapping(symz, src.start - m.start, syms, m, profile)
                m.has_functions = True
                break


def has_gperftools_suffix(path: str) -> bool:
    """Return whether ``path`` ends with a known gperftools handler suffix."""
    return path.endswith(_GPERFTOOLS_SUFFIXES)


def symbolz_url(source: str) -> str:
    """Return the symbolz URL matching a profile URL, or "" if there is none."""
    try:
        parts = urlsplit(source)
    except ValueError:
        return ""
    if not parts.netloc:
        return ""
    path = parts.path
    if "/debug/pprof/" in path or has_gperftools_suffix(path):
        path = posixpath.normpath(path + "/../symbol")
    else:
        path = "/symbolz"
    return urlunsplit((parts.scheme, parts.netloc, path, "", parts.fragment))


def symbolize_mapping(
    source: str,
    offset: int,
    syms: SymbolFetcher,
    mapping: Mapping,
    profile: Profile,
) -> None:
    """Symbolize the locations of one mapping by querying ``source``.

    ``offset`` is applied to every address to undo normalization of merged
    mappings.
    """
    query = []
    for loc in profile.location:
        if loc.mapping is mapping and loc.address != 0 and not loc.line:
            addr, overflow = adjust(loc.address, offset)
            if overflow:
                raise ProfileError(
                    f"cannot adjust address {loc.address} by {offset}, "
                    f"it would overflow (mapping {mapping})"
                )
            query.append(hex(addr))

    if not query:
        return

    data = syms(source, "+".join(query))
    text = data.decode("utf-8", errors="replace") if isinstance(data, bytes) else data

    functions: dict[str, Function] = {}
    lines: dict[int, Function] = {}
    # Only newline-terminated records are complete; a trailing fragment is dropped.
    for record in text.split("\n")[:-1]:
        match = _SYMBOLZ_RE.search(record + "\n")
        if match is None:
            continue
        orig_addr = int(match.group(1), 16)
        if orig_addr >= _UINT64:
            raise ProfileError(f"unexpected parse failure {match.group(1)}: value out of range")
        addr, overflow = adjust(orig_addr, -offset)
        if overflow:
            raise ProfileError(
                f"cannot adjust symbolz address {orig_addr} by {-offset}, it would overflow"
            )
        name = match.group(2)
        fn = functions.get(name)
        if fn is None:
            fn = Function(id=len(profile.function) + 1, name=name, system_name=name)
            functions[name] = fn
            profile.function.append(fn)
        lines[addr] = fn

    for loc in profile.location:
        if loc.mapping is not mapping:
            continue
        fn = lines.get(loc.address)
        if fn is not None:
            loc.line = [Line(function=fn)]


def adjust(addr: int, offset: int) -> tuple[int, bool]:
    """Shift an unsigned 64-bit address by a signed offset.

    Returns the adjusted address and whether the shift overflowed; on
    overflow the address returned is 0.
    """
    adj = (addr + offset) % _UINT64
    if offset < 0:
        if adj >= addr:
            return 0, True
    elif adj < addr:
        return 0, True
    return adj, False