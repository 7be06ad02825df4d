from __future__ import annotations

import difflib
from pathlib import Path
from typing import Iterable, List, Optional, Sequence


def _is_probably_url(s: str) -> bool:
    return s.startswith("http://") or s.startswith("https://") or s.startswith("s3://")


def _norm_path(p: str, *, base_dir: Optional[Path]) -> str:
    """Normalize a URI/path relative to a base directory (when provided).

    - Leaves absolute paths and URLs unchanged.
    - If base_dir is provided and p is relative, returns an absolute resolved path.
    """
    if not isinstance(p, str) or not p:
        return p
    if _is_probably_url(p):
        return p
    pp = Path(p).expanduser()
    if pp.is_absolute():
        return str(pp)
    if base_dir is None:
        return str(pp)
    return str((base_dir / pp).resolve())


_EXTENSION_TYPES = {
    ".csv": "csv",
    ".tsv": "tsv",
    ".tab": "tsv",
    ".json": "json",
    ".sqlite": "sqlite",
    ".sqlite3": "sqlite",
    ".db": "sqlite",
}


def _infer_type_from_uri(uri: str) -> Optional[str]:
    return _EXTENSION_TYPES.get(Path(str(uri)).suffix.lower())


# ---------------- similarity ----------------

def is_subsequence(needle: str, haystack: str) -> bool:
    it = iter(haystack)
    return all(ch in it for ch in needle)


def similarity(query: str, candidate: str, *, case_sensitive: bool = False) -> float:
    """Approximate match score in [0, 1].

    Candidates that contain the query as an ordered subsequence score in
    [0.5, 1]; everything else falls back to the plain sequence ratio.
    The same scorer backs fuzzy search and command suggestions.
    """
    if not case_sensitive:
        query = query.lower()
        candidate = candidate.lower()
    if not query:
        return 0.0
    ratio = difflib.SequenceMatcher(None, query, candidate, autojunk=False).ratio()
    if is_subsequence(query, candidate):
        return 0.5 + 0.5 * ratio
    return ratio


def closest_matches(word: str, candidates: Iterable[str], *, n: int = 3, cutoff: float = 0.6) -> List[str]:
    """Candidates scoring at least `cutoff`, best first, ties in input order."""
    scored = []
    for i, cand in enumerate(candidates):
        score = similarity(word, cand)
        if score >= cutoff:
            scored.append((-score, i, cand))
    scored.sort()
    return [cand for _, _, cand in scored[:n]]


def suggest_column(name: str, columns: Sequence[str]) -> str:
    matches = closest_matches(name, columns, n=3, cutoff=0.6)
    if matches:
        return f"Did you mean {matches[0]!r}?"
    if not columns:
        return "The table has no columns."
    return "Available columns: " + ", ".join(columns)
