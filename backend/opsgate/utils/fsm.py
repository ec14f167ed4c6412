from __future__ import annotations
"""Role-gated finite state machine for approval requests.

A TransitionValidator holds a table of (state, action) -> Rule. A rule names
the roles allowed to act, the target state, whether a reason is mandatory and
an optional side-effect tag the engine dispatches on.

Usage:
    from opsgate.utils.fsm import TransitionValidator, Rule
    FSM = TransitionValidator({
        ('pending', 'approve'): Rule(frozenset({Role.HEAD_OF_OPERATIONS}), 'approved'),
        ('pending', 'reject'): Rule(frozenset({Role.HEAD_OF_OPERATIONS}), 'rejected', requires_reason=True),
    }, terminal={'approved', 'rejected'}, initial='pending')
    rule = FSM.assert_can_transition(current_status, 'approve', actor_role)

Raises AlreadyTerminal on terminal source states and InvalidTransition for
any other disallowed (state, action, role) combination.
"""
from dataclasses import dataclass
from typing import Dict, FrozenSet, Iterable, Optional, Set, Tuple

from opsgate.constants.roles import Role
from opsgate.errors import AlreadyTerminal, InvalidTransition


@dataclass(frozen=True)
class Rule:
    actors: FrozenSet[Role]
    target: str
    requires_reason: bool = False
    side_effect: Optional[str] = None


class TransitionValidator:
    def __init__(self, rules: Dict[Tuple[str, str], Rule], terminal: Iterable[str], initial: str, field_name: str = 'status'):
        self.rules = dict(rules)
        self.terminal = frozenset(terminal)
        self.initial = initial
        self.field_name = field_name

    @property
    def states(self) -> Set[str]:
        out = {self.initial} | set(self.terminal)
        for (state, _action), rule in self.rules.items():
            out.add(state)
            out.add(rule.target)
        return out

    def assert_can_transition(self, current: str, action: str, actor: Role) -> Rule:
        if current in self.terminal:
            raise AlreadyTerminal(f'request is already {current}', status=current, action=action)
        rule = self.rules.get((current, action))
        if rule is None:
            raise InvalidTransition(f'cannot {action} from {self.field_name} {current}', status=current, action=action)
        if actor not in rule.actors:
            raise InvalidTransition(
                f'{actor.value} cannot {action} a request in {self.field_name} {current}',
                status=current, action=action, role=actor.value,
            )
        return rule

    def expected_actor_states(self, role: Role) -> Set[str]:
        """States in which role has at least one allowed action (its queue)."""
        return {state for (state, _action), rule in self.rules.items() if role in rule.actors}


__all__ = ['Rule', 'TransitionValidator']
