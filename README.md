# pprofkit

A pure-Python library for working with performance profiles held in memory:
a profile data model, conversion to and from a string-table form, memory map
parsing, sample and tag filtering, merging and compaction, sample index
selection, and symbolization through a symbolz service.

It has no dependencies outside the standard library.

## Installation

```
pip install .
```

With the test dependencies:

```
pip install .[test]
```

## Modules

- `pprofkit.model` defines the data model: `Profile`, `Sample`, `Location`,
  `Line`, `Function`, `Mapping` and `ValueType`, plus the errors
  `ProfileError`, `UnrecognizedError` and `MalformedError` (both subclasses of
  `ProfileError`). `Profile.copy()` returns a deep copy; `Mapping.unsymbolizable()`
  is true for system regions whose file name starts with `[`, such as `[vdso]`.
- `pprofkit.tables` converts a `Profile` into an `EncodedProfile`, in which every
  string is an index into a shared string table and references between entities
  are IDs (`encode_tables`), and back again (`decode_tables`). `StringTable` is the
  de-duplicating table itself. Out-of-range string indices raise `MalformedError`.
- `pprofkit.memmap` parses memory maps in `/proc/self/maps` format and the shorter
  `start-end file (@offset) buildid` format with `parse_proc_maps` and
  `parse_mapping_entry`. Log prefixes of the form `file:line] ` are stripped, lines
  like `attr=value` define `$attr` substitutions for later lines, and
  non-executable entries are skipped. `parse_memory_map` adds the parsed mappings
  to a profile, drops unreferenced locations and functions, renumbers everything
  and attaches each location to the mapping covering its address (creating a fake
  mapping when none does). `add_legacy_frame_info` sets the drop/keep frame
  patterns suited to heap, contention or CPU profiles.
- `pprofkit.filter` filters profiles in place: `filter_samples_by_name`
  (focus, ignore, hide and show patterns), `show_from`, `filter_tags_by_name` and
  `filter_samples_by_tag`. Patterns are compiled `re` patterns, matched with
  `search` against function names, file names and mapping files.
- `pprofkit.merge` merges profiles with identical sample and period types into a
  new profile with `merge`, and removes unreferenced entities with `compact`.
  Equal samples are summed, and samples summing to zero are dropped. The result
  takes the largest period, the earliest nonzero start time and the total
  duration. `check_compatible` raises `ProfileError` for incompatible profiles.
- `pprofkit.index` picks a sample value index with `sample_index_by_name`: an empty
  string selects the default sample type or else the last one, a number selects
  by position, and a name selects by type (a legacy `inuse_` prefix is accepted).
- `pprofkit.symbolz` symbolizes a profile with `symbolize`, given the places its
  mappings were fetched from (`MappingSource`) and a callable that sends a symbol
  query to a URL and returns the reply. `symbolz_url` derives the symbol URL from
  a profile URL, and `adjust` shifts a 64-bit address with overflow detection.

## Example

```python
import re

from pprofkit.filter import filter_samples_by_name
from pprofkit.index import sample_index_by_name
from pprofkit.memmap import parse_memory_map
from pprofkit.merge import merge
from pprofkit.model import Function, Line, Location, Profile, Sample, ValueType

main = Function(id=1, name="main", system_name="main", filename="main.c")
work = Function(id=2, name="work", system_name="work", filename="work.c")
loc_main = Location(id=1, address=0x401000, line=[Line(function=main, line=10)])
loc_work = Location(id=2, address=0x402000, line=[Line(function=work, line=20)])

profile = Profile(
    sample_type=[ValueType("samples", "count"), ValueType("cpu", "nanoseconds")],
    period_type=ValueType("cpu", "nanoseconds"),
    period=10_000_000,
    function=[main, work],
    location=[loc_main, loc_work],
    sample=[
        Sample(location=[loc_work, loc_main], value=[3, 30_000_000]),
        Sample(location=[loc_main], value=[1, 10_000_000]),
    ],
)

parse_memory_map(profile, "00400000-00500000 r-xp 00000000 00:00 0 /usr/bin/app\n")
print(profile.location[0].mapping.file)          # /usr/bin/app

print(sample_index_by_name(profile, "cpu"))      # 1

combined = merge([profile, profile.copy()])
print([s.value for s in combined.sample])        # [[6, 60000000], [2, 20000000]]

focus, ignore, hide, show = filter_samples_by_name(
    combined, re.compile("work"), None, None, None
)
print(focus, len(combined.sample))               # True 1
```

Symbolizing through a symbolz service:

```python
from pprofkit.model import Location, Mapping, Profile
from pprofkit.symbolz import MappingSource, symbolize

mapping = Mapping(id=1, start=0x1000, limit=0x5000, file="app")
profile = Profile(mapping=[mapping], location=[Location(id=1, mapping=mapping, address=0x1234)])

def fetch(url: str, query: str) -> bytes:
    # query is "0x1234"; url is http://localhost:8080/debug/pprof/symbol
    return b"0x1234 main\n"

symbolize(
    profile,
    False,
    {"app": [MappingSource("http://localhost:8080/debug/pprof/profile")]},
    fetch,
)
print(profile.location[0].line[0].function.name)  # main
```

## What this package does not do

- It reads no profile files: there is no parser for the protocol-buffer profile
  format, nor for legacy heap, contention, thread, goroutine or binary CPU
  profiles. Profiles are built in memory, and `encode_tables` yields an
  `EncodedProfile` object, not bytes.
- It does not symbolize from local binaries, and does not demangle names.
- It makes no network requests itself: `symbolize` calls the function you pass it.
- It has no command-line tool, no report generation and no web interface.

## Running the tests

```
pytest
```