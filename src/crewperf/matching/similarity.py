"""
Job-name similarity.

Names coming from the external spreadsheet and from the time-clock export are
typed by different people: case, punctuation, street abbreviations and a
trailing branch code ("Dale Fairchild - ORA", "Smith Residence - Job") vary.
Both names are normalized and compared with four rapidfuzz ratios; the best
one wins.
"""
import re
from functools import lru_cache
from typing import Iterable, Optional

from rapidfuzz import fuzz

from crewperf.config import settings

_PUNCT_RE = re.compile(r"[^\w\s]")
_SPACE_RE = re.compile(r"\s+")
_DASH_RE = re.compile(r"[‐-―−]")


def _suffix_pattern(suffixes: Iterable[str]) -> re.Pattern:
    codes = "|".join(re.escape(s) for s in suffixes)
    return re.compile(rf"\s*-\s*(?:{codes})\s*$", re.IGNORECASE)


@lru_cache(maxsize=4096)
def _normalize(name: str, suffixes: tuple) -> str:
    s = _DASH_RE.sub("-", name.strip())
    pattern = _suffix_pattern(suffixes)
    # "Smith - WA - Revised" carries two codes
    while True:
        stripped = pattern.sub("", s)
        if stripped == s:
            break
        s = stripped
    s = _PUNCT_RE.sub(" ", s.lower())
    return _SPACE_RE.sub(" ", s).strip()


def normalize_job_name(name: Optional[str], suffixes: Optional[Iterable[str]] = None) -> str:
    """Lowercase, drop punctuation and trailing '- CODE' suffixes, collapse whitespace."""
    if not name:
        return ""
    codes = tuple(suffixes) if suffixes is not None else tuple(settings.JOB_NAME_SUFFIXES)
    return _normalize(name, codes)


def score(a: Optional[str], b: Optional[str]) -> float:
    """Similarity of two job names in [0, 1]; symmetric, and 1.0 for names equal after normalization."""
    na = normalize_job_name(a)
    nb = normalize_job_name(b)
    if na == nb:
        return 1.0
    if not na or not nb:
        return 0.0

    # Sorted so partial_ratio sees the same (shorter, longer) order either way
    x, y = sorted((na, nb))
    best = max(
        fuzz.ratio(x, y),
        fuzz.partial_ratio(x, y),
        fuzz.token_sort_ratio(x, y),
        fuzz.token_set_ratio(x, y),
    )
    return round(best / 100.0, 4)
