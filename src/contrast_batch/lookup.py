"""
Feature id to human-readable name lookup.

A :class:`NameLookup` is a read-only mapping that is called with a feature
id and returns the name or ``None``. It is safe to share between threads and
cheap to send to worker processes.
"""
from __future__ import annotations

from collections.abc import Mapping
from typing import Dict, Iterator, Optional

import pandas as pd


class NameLookup(Mapping):
    """Read-only feature id -> name mapping.

    Parameters
    ----------
    names : mapping of str to str
        Feature id to name. Ids and names are stripped; empty names are
        dropped so that they resolve to ``None``.
    """

    def __init__(self, names: Mapping[str, str] | None = None):
        cleaned: Dict[str, str] = {}
        for fid, name in (names or {}).items():
            if name is None or pd.isna(name):
                continue
            name = str(name).strip()
            if name:
                cleaned[str(fid).strip()] = name
        self._names = cleaned

    @classmethod
    def from_frame(cls, df: pd.DataFrame, id_col: str, name_col: str) -> "NameLookup":
        """Build a lookup from two columns of a table; the first id wins."""
        sub = df[[id_col, name_col]].dropna(subset=[id_col])
        sub = sub.drop_duplicates(subset=[id_col], keep="first")
        return cls(dict(zip(sub[id_col].astype(str), sub[name_col])))

    def __call__(self, feature_id: str) -> Optional[str]:
        return self._names.get(str(feature_id).strip())

    def __getitem__(self, feature_id: str) -> str:
        return self._names[str(feature_id).strip()]

    def __iter__(self) -> Iterator[str]:
        return iter(self._names)

    def __len__(self) -> int:
        return len(self._names)
