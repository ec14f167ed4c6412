import pytest
from opsgate.constants.roles import Role
from opsgate.errors import AlreadyTerminal, InvalidTransition
from opsgate.utils.fsm import Rule, TransitionValidator
from opsgate.services.workflow import TWO_STAGE, SINGLE_STAGE

HO = Role.HEAD_OF_OPERATIONS
MD = Role.MAIN_DIRECTOR


def _fsm():
    return TransitionValidator({
        ('A', 'go'): Rule(frozenset({HO}), 'B'),
        ('B', 'go'): Rule(frozenset({MD}), 'DONE', requires_reason=True),
    }, terminal={'DONE'}, initial='A')


def test_transition_validator_allows_valid():
    rule = _fsm().assert_can_transition('A', 'go', HO)
    assert rule.target == 'B'
    assert not rule.requires_reason


def test_transition_validator_blocks_wrong_role_and_state():
    fsm = _fsm()
    with pytest.raises(InvalidTransition):
        fsm.assert_can_transition('A', 'go', MD)
    with pytest.raises(InvalidTransition):
        fsm.assert_can_transition('A', 'stop', HO)
    with pytest.raises(AlreadyTerminal):
        fsm.assert_can_transition('DONE', 'go', MD)


def test_states_and_expected_actor_states():
    fsm = _fsm()
    assert fsm.states == {'A', 'B', 'DONE'}
    assert fsm.expected_actor_states(HO) == {'A'}
    assert fsm.expected_actor_states(Role.ADMIN) == set()


def test_request_tables_route_to_the_right_gate():
    assert TWO_STAGE.expected_actor_states(HO) == {'pending_ho'}
    assert TWO_STAGE.expected_actor_states(MD) == {'forwarded_to_md'}
    assert SINGLE_STAGE.expected_actor_states(HO) == {'pending'}
    assert SINGLE_STAGE.expected_actor_states(MD) == {'pending'}
    for fsm in (TWO_STAGE, SINGLE_STAGE):
        for (_state, action), rule in fsm.rules.items():
            assert rule.requires_reason == (action == 'reject')
