import re

import pytest

from pprofkit.filter import (
    filter_samples_by_name,
    filter_samples_by_tag,
    filter_tags_by_name,
    focused_and_not_ignored,
    last_matched_line_index,
    matched_lines,
    matches_name,
    show_from,
    unmatched_lines,
)
from pprofkit.model import Function, Line, Location, Mapping, Profile, Sample, ValueType


def _mappings():
    flags = dict(
        has_functions=True, has_filenames=True, has_line_numbers=True, has_inline_frames=True
    )
    return [
        Mapping(id=1, start=0x10000, limit=0x40000, file="map0", **flags),
        Mapping(id=2, start=0x50000, limit=0x70000, file="map1", **flags),
    ]


def _functions():
    return [
        Function(id=i + 1, name=f"fun{i}", system_name=f"fun{i}", filename=f"file{i}")
        for i in range(11)
    ]


def _profile(mappings, functions, locations, samples):
    return Profile(
        time_nanos=10000,
        period_type=ValueType("cpu", "milliseconds"),
        period=1,
        duration_nanos=10_000_000_000,
        sample_type=[ValueType("samples", "count")],
        mapping=mappings,
        function=functions,
        location=locations,
        sample=samples,
    )


def no_inlines_profile():
    m, f = _mappings(), _functions()
    addresses = [
        0x1000, 0x2000, 0x3000, 0x4000, 0x5000, 0x6000,
        0x7000, 0x8000, 0x9000, 0x10000, 0x11000,
    ]
    locs = [
        Location(id=i + 1, mapping=m[0], address=addr, line=[Line(function=fn, line=1)])
        for i, (addr, fn) in enumerate(zip(addresses, f))
    ]
    locs[10].mapping = m[1]
    samples = [
        Sample(value=[1], location=[locs[0], locs[1], locs[2], locs[3]]),
        Sample(value=[2], location=[locs[4], locs[5], locs[1], locs[6]]),
        Sample(value=[3], location=[locs[7], locs[8]]),
        Sample(value=[4], location=[locs[9], locs[4], locs[10], locs[7]]),
    ]
    return _profile(m, f, locs, samples)


def inlines_profile():
    m, f = _mappings(), _functions()
    locs = [
        Location(id=1, mapping=m[0], address=0x1000,
                 line=[Line(function=f[0], line=1), Line(function=f[1], line=1)]),
        Location(id=2, mapping=m[0], address=0x2000,
                 line=[Line(function=f[2], line=1), Line(function=f[3], line=1)]),
        Location(id=3, mapping=m[0], address=0x3000,
                 line=[Line(function=f[4], line=1), Line(function=f[5], line=1),
                       Line(function=f[6], line=1)]),
    ]
    samples = [
        Sample(value=[1], location=[locs[0], locs[1]]),
        Sample(value=[2], location=[locs[2]]),
    ]
    return _profile(m, f, locs, samples)


def empty_lines_profile():
    m, f = _mappings(), _functions()
    locs = [
        Location(id=1, mapping=m[0], address=0x1000,
                 line=[Line(function=f[0], line=1), Line(function=f[1], line=1)]),
        Location(id=2, mapping=m[0], address=0x2000, line=[]),
        Location(id=3, mapping=m[1], address=0x2000, line=[]),
    ]
    samples = [
        Sample(value=[1], location=[locs[0], locs[1]]),
        Sample(value=[2], location=[locs[2]]),
        Sample(value=[3], location=[]),
    ]
    return _profile(m, f, locs, samples)


ALL_NO_INLINES = [
    "fun0 fun1 fun2 fun3: 1",
    "fun4 fun5 fun1 fun6: 2",
    "fun7 fun8: 3",
    "fun9 fun4 fun10 fun7: 4",
]


def sample_funcs(p):
    result = []
    for s in p.sample:
        funcs = [ln.function.name for loc in s.location for ln in loc.line]
        result.append(f"{' '.join(funcs)}: {s.value[0]}")
    return result


def _rx(pattern):
    return re.compile(pattern) if pattern is not None else None


# (name, factory, focus, ignore, hide, show, (fm, im, hm, sm), want)
FILTER_CASES = [
    ("empty filters keep all frames", no_inlines_profile, None, None, None, None,
     (True, False, False, False), ALL_NO_INLINES),
    ("focus with no matches", no_inlines_profile, "unknown", None, None, None,
     (False, False, False, False), []),
    ("focus matches function names", no_inlines_profile, "fun1", None, None, None,
     (True, False, False, False),
     ["fun0 fun1 fun2 fun3: 1", "fun4 fun5 fun1 fun6: 2", "fun9 fun4 fun10 fun7: 4"]),
    ("focus matches file names", no_inlines_profile, "file1", None, None, None,
     (True, False, False, False),
     ["fun0 fun1 fun2 fun3: 1", "fun4 fun5 fun1 fun6: 2", "fun9 fun4 fun10 fun7: 4"]),
    ("focus matches mapping names", no_inlines_profile, "map1", None, None, None,
     (True, False, False, False), ["fun9 fun4 fun10 fun7: 4"]),
    ("focus matches inline functions", inlines_profile, "fun5", None, None, None,
     (True, False, False, False), ["fun4 fun5 fun6: 2"]),
    ("ignore with no matches matches all samples", no_inlines_profile, None, "unknown",
     None, None, (True, False, False, False), ALL_NO_INLINES),
    ("ignore matches function names", no_inlines_profile, None, "fun1", None, None,
     (True, True, False, False), ["fun7 fun8: 3"]),
    ("ignore matches file names", no_inlines_profile, None, "file1", None, None,
     (True, True, False, False), ["fun7 fun8: 3"]),
    ("ignore matches mapping names", no_inlines_profile, None, "map1", None, None,
     (True, True, False, False),
     ["fun0 fun1 fun2 fun3: 1", "fun4 fun5 fun1 fun6: 2", "fun7 fun8: 3"]),
    ("ignore matches inline functions", inlines_profile, None, "fun5", None, None,
     (True, True, False, False), ["fun0 fun1 fun2 fun3: 1"]),
    ("show with no matches", no_inlines_profile, None, None, None, "unknown",
     (True, False, False, False), []),
    ("show matches function names", no_inlines_profile, None, None, None, "fun1|fun2",
     (True, False, False, True), ["fun1 fun2: 1", "fun1: 2", "fun10: 4"]),
    ("show matches file names", no_inlines_profile, None, None, None, "file1|file3",
     (True, False, False, True), ["fun1 fun3: 1", "fun1: 2", "fun10: 4"]),
    ("show matches mapping names", no_inlines_profile, None, None, None, "map1",
     (True, False, False, True), ["fun10: 4"]),
    ("show matches inline functions", inlines_profile, None, None, None, "fun[03]",
     (True, False, False, True), ["fun0 fun3: 1"]),
    ("show keeps all lines when matching both mapping and function", inlines_profile,
     None, None, None, "map0|fun5", (True, False, False, True),
     ["fun0 fun1 fun2 fun3: 1", "fun4 fun5 fun6: 2"]),
    ("hide with no matches", no_inlines_profile, None, None, "unknown", None,
     (True, False, False, False), ALL_NO_INLINES),
    ("hide matches function names", no_inlines_profile, None, None, "fun1|fun2", None,
     (True, False, True, False),
     ["fun0 fun3: 1", "fun4 fun5 fun6: 2", "fun7 fun8: 3", "fun9 fun4 fun7: 4"]),
    ("hide matches file names", no_inlines_profile, None, None, "file1|file3", None,
     (True, False, True, False),
     ["fun0 fun2: 1", "fun4 fun5 fun6: 2", "fun7 fun8: 3", "fun9 fun4 fun7: 4"]),
    ("hide matches mapping names", no_inlines_profile, None, None, "map1", None,
     (True, False, True, False),
     ["fun0 fun1 fun2 fun3: 1", "fun4 fun5 fun1 fun6: 2", "fun7 fun8: 3",
      "fun9 fun4 fun7: 4"]),
    ("hide matches inline functions", inlines_profile, None, None, "fun[125]", None,
     (True, False, True, False), ["fun0 fun3: 1", "fun4 fun6: 2"]),
    ("hide drops all lines when matching both mapping and function", inlines_profile,
     None, None, "map0|fun5", None, (True, False, True, False), []),
    ("hides a stack matched by both focus and ignore", no_inlines_profile,
     "fun1|fun7", "fun1", None, None, (True, True, False, False), ["fun7 fun8: 3"]),
    ("hides a function if both show and hide match it", no_inlines_profile,
     None, None, "fun10", "fun1", (True, False, True, True), ["fun1: 1", "fun1: 2"]),
]


@pytest.mark.parametrize(
    "factory,focus,ignore,hide,show,want_match,want_funcs",
    [pytest.param(*case[1:], id=case[0]) for case in FILTER_CASES],
)
def test_filter_samples_by_name(factory, focus, ignore, hide, show, want_match, want_funcs):
    p = factory()
    got = filter_samples_by_name(p, _rx(focus), _rx(ignore), _rx(hide), _rx(show))
    assert got == want_match
    assert sample_funcs(p) == want_funcs


SHOW_FROM_CASES = [
    ("nil showFrom keeps all frames", no_inlines_profile, None, False, ALL_NO_INLINES),
    ("showFrom with no matches drops all samples", no_inlines_profile, "unknown", False, []),
    ("showFrom matches function names", no_inlines_profile, "fun1", True,
     ["fun0 fun1: 1", "fun4 fun5 fun1: 2", "fun9 fun4 fun10: 4"]),
    ("showFrom matches file names", no_inlines_profile, "file1", True,
     ["fun0 fun1: 1", "fun4 fun5 fun1: 2", "fun9 fun4 fun10: 4"]),
    ("showFrom matches mapping names", no_inlines_profile, "map1", True,
     ["fun9 fun4 fun10: 4"]),
    ("showFrom drops frames above highest of multiple matches", no_inlines_profile,
     "fun[12]", True, ["fun0 fun1 fun2: 1", "fun4 fun5 fun1: 2", "fun9 fun4 fun10: 4"]),
    ("showFrom matches inline functions", inlines_profile, "fun0|fun5", True,
     ["fun0: 1", "fun4 fun5: 2"]),
    ("showFrom drops frames above highest of multiple inline matches", inlines_profile,
     "fun[1245]", True, ["fun0 fun1 fun2: 1", "fun4 fun5: 2"]),
    ("showFrom keeps all lines when matching mapping and function", inlines_profile,
     "map0|fun5", True, ["fun0 fun1 fun2 fun3: 1", "fun4 fun5 fun6: 2"]),
    ("showFrom matches location with empty lines", empty_lines_profile, "map1", True,
     [": 2"]),
]


@pytest.mark.parametrize(
    "factory,pattern,want_match,want_funcs",
    [pytest.param(*case[1:], id=case[0]) for case in SHOW_FROM_CASES],
)
def test_show_from(factory, pattern, want_match, want_funcs):
    p = factory()
    assert show_from(p, _rx(pattern)) is want_match
    assert sample_funcs(p) == want_funcs


def tag_profile():
    return Profile(
        sample=[
            Sample(value=[1], label={"key1": ["tag1"]}, num_label={"key3": [3]}),
            Sample(value=[2], label={"key2": ["tag2"]}),
        ]
    )


def count_tags(p):
    tags = set()
    for s in p.sample:
        tags.update(s.label)
        tags.update(s.num_label)
    return len(tags)


@pytest.mark.parametrize(
    "include,exclude,want_im,want_em,want_count",
    [
        (None, None, True, False, 3),
        ("notfound", None, False, False, 0),
        ("key1", None, True, False, 1),
        (None, "key[12]", True, True, 1),
    ],
)
def test_filter_tags_by_name(include, exclude, want_im, want_em, want_count):
    p = tag_profile()
    assert filter_tags_by_name(p, _rx(include), _rx(exclude)) == (want_im, want_em)
    assert count_tags(p) == want_count


def test_filter_samples_by_tag_focus_and_ignore():
    p = no_inlines_profile()
    fm, im = filter_samples_by_tag(p, lambda s: s.value[0] >= 2, lambda s: s.value[0] == 4)
    assert (fm, im) == (True, True)
    assert [s.value[0] for s in p.sample] == [2, 3]


def test_filter_samples_by_tag_without_filters_keeps_all():
    p = no_inlines_profile()
    assert filter_samples_by_tag(p, None, None) == (True, False)
    assert sample_funcs(p) == ALL_NO_INLINES


def test_filter_samples_by_tag_no_focus_match():
    p = no_inlines_profile()
    assert filter_samples_by_tag(p, lambda s: False, None) == (False, False)
    assert p.sample == []


def test_focused_and_not_ignored():
    locs = [Location(id=i) for i in (1, 2, 3)]
    assert focused_and_not_ignored(locs[:1], {1: True}) is True
    assert focused_and_not_ignored(locs, {1: True, 2: False}) is False
    assert focused_and_not_ignored(locs, {}) is False
    assert focused_and_not_ignored(locs[2:], {1: True}) is False


def test_matches_name_checks_functions_files_and_mapping():
    p = inlines_profile()
    loc = p.location[0]
    assert matches_name(loc, re.compile("fun1"))
    assert matches_name(loc, re.compile("file0"))
    assert matches_name(loc, re.compile("map0"))
    assert not matches_name(loc, re.compile("fun9"))


def test_unmatched_and_matched_lines():
    loc = inlines_profile().location[2]
    pattern = re.compile("fun5")
    assert [ln.function.name for ln in unmatched_lines(loc, pattern)] == ["fun4", "fun6"]
    assert [ln.function.name for ln in matched_lines(loc, pattern)] == ["fun5"]
    mapping_pattern = re.compile("map0")
    assert unmatched_lines(loc, mapping_pattern) == []
    assert len(matched_lines(loc, mapping_pattern)) == 3


def test_last_matched_line_index():
    loc = inlines_profile().location[2]
    assert last_matched_line_index(loc, re.compile("fun[45]")) == 1
    assert last_matched_line_index(loc, re.compile("nothing")) == -1