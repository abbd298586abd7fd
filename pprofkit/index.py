"""Selection of a sample value index by number or name."""

from __future__ import annotations

import re

from pprofkit.model import Profile, ProfileError

_INT_RE = re.compile(r"[+-]?[0-9]+")


def sample_types(profile: Profile) -> list[str]:
    """Return the type names of the profile's sample values."""
    return [st.type for st in profile.sample_type]


def sample_index_by_name(profile: Profile, sample_index: str) -> int:
    """Return the value index selected by ``sample_index``.

    An empty string selects the default sample type, or else the last one.
    A number selects by position; anything else by type name, with an
    optional legacy ``inuse_`` prefix.
    """
    if sample_index == "":
        dst = profile.default_sample_type
        if dst:
            for i, t in enumerate(sample_types(profile)):
                if t == dst:
                    return i
        return len(profile.sample_type) - 1

    if _INT_RE.fullmatch(sample_index):
        i = int(sample_index)
        if i < 0 or i >= len(profile.sample_type):
            raise ProfileError(
                f"sample_index {sample_index} is outside the range "
                f"[0..{len(profile.sample_type) - 1}]"
            )
        return i

    no_inuse = sample_index.removeprefix("inuse_")
    for i, st in enumerate(profile.sample_type):
        if st.type in (sample_index, no_inuse):
            return i

    types = " ".join(sample_types(profile))
    raise ProfileError(f'sample_index "{sample_index}" must be one of: [{types}]')