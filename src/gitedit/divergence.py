"""Approximate divergence between the edit branch and trunk.

Both histories are newest-first and restricted to one subtree. Each side is
walked until its first commit whose hash also appears anywhere in the other
history; that commit is marked shared on both sides and the walk stops. The
commits visited before the stop point are the side's additional commits.

This is not a merge-base computation. It assumes linear, non-rewritten
history and will misreport after a rebase or when the first textual match is
not the true common ancestor.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Sequence


@dataclass
class CommitHistoryEntry:
    hash: str
    timestamp: str
    message: str
    shared: bool = False

    def to_dict(self) -> dict:
        payload = {"hash": self.hash, "date": self.timestamp, "message": self.message}
        if self.shared:
            payload["master"] = True
        return payload


@dataclass
class DivergenceResult:
    editor_history: List[CommitHistoryEntry] = field(default_factory=list)
    trunk_history: List[CommitHistoryEntry] = field(default_factory=list)
    editor_additional: int = 0
    trunk_additional: int = 0

    def to_dict(self) -> dict:
        return {
            "history": [entry.to_dict() for entry in self.editor_history],
            "historyMaster": [entry.to_dict() for entry in self.trunk_history],
            "editorAdditional": self.editor_additional,
            "masterAdditional": self.trunk_additional,
        }


def _walk(
    history: Sequence[CommitHistoryEntry],
    other: Dict[str, CommitHistoryEntry],
) -> int:
    additional = 0
    for entry in history:
        match = other.get(entry.hash)
        if match is not None:
            entry.shared = True
            match.shared = True
            break
        additional += 1
    return additional


def _index(history: Sequence[CommitHistoryEntry]) -> Dict[str, CommitHistoryEntry]:
    index: Dict[str, CommitHistoryEntry] = {}
    for entry in history:
        index.setdefault(entry.hash, entry)  # first (newest) occurrence wins
    return index


def analyze_divergence(
    editor_history: List[CommitHistoryEntry],
    trunk_history: List[CommitHistoryEntry],
) -> DivergenceResult:
    """Annotate both histories in place and count commits ahead on each side."""
    editor_additional = _walk(editor_history, _index(trunk_history))
    trunk_additional = _walk(trunk_history, _index(editor_history))
    return DivergenceResult(
        editor_history=editor_history,
        trunk_history=trunk_history,
        editor_additional=editor_additional,
        trunk_additional=trunk_additional,
    )
