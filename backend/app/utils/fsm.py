from __future__ import annotations
"""Explicit transition table for action-driven lifecycles.

The table is a flat sequence of ``(from, action, to)`` triples. One action may
leave a state towards several targets (e.g. COMPLETE picks its target from the
requested resolution); the caller chooses the target and the table decides
whether that edge exists.

Usage:
    from app.utils.fsm import Transition, TransitionTable
    TABLE = TransitionTable([
        Transition('QUEUED', 'START', 'STARTED'),
        Transition('STARTED', 'FINISH', 'DONE'),
    ])
    TABLE.assert_edge(current_status, 'START', 'STARTED')

Raises InvalidTransition (no mutation has happened yet at that point).
"""
from typing import Dict, FrozenSet, Iterable, List, NamedTuple, Set, Tuple
from app.errors import InvalidTransition


class Transition(NamedTuple):
    source: str
    action: str
    target: str


class TransitionTable:
    def __init__(self, transitions: Iterable[Transition]):
        self.transitions: Tuple[Transition, ...] = tuple(transitions)
        self._edges: Dict[Tuple[str, str], Set[str]] = {}
        for t in self.transitions:
            self._edges.setdefault((t.source, t.action), set()).add(t.target)

    def targets(self, source: str, action: str) -> FrozenSet[str]:
        return frozenset(self._edges.get((source, action), ()))

    def can(self, source: str, action: str) -> bool:
        return (source, action) in self._edges

    def assert_edge(self, source: str, action: str, target: str) -> Transition:
        allowed = self._edges.get((source, action))
        if not allowed:
            raise InvalidTransition(source, action)
        if target not in allowed:
            raise InvalidTransition(
                source, action,
                f'Cannot {action} from {source} to {target}; allowed: {", ".join(sorted(allowed))}',
            )
        return Transition(source, action, target)

    def actions_from(self, source: str) -> List[str]:
        return sorted({t.action for t in self.transitions if t.source == source})

    def states(self) -> List[str]:
        seen: List[str] = []
        for t in self.transitions:
            for s in (t.source, t.target):
                if s not in seen:
                    seen.append(s)
        return seen


__all__ = ['Transition', 'TransitionTable']
