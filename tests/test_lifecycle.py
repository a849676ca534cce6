"""
Tests del grafo de estados de una reserva
"""
import itertools

import pytest

from petpilot.errors import IllegalTransition
from petpilot.lifecycle import (
    CANCELLABLE,
    TERMINAL,
    allowed_targets,
    can_transition,
    check_transition,
    sources_of,
)
from petpilot.schemas.booking import BookingStatus as S

HAPPY_PATH = [
    S.pending,
    S.accepted,
    S.en_route_to_pickup,
    S.pet_picked_up,
    S.en_route_to_destination,
    S.completed,
]
LEGAL = set(zip(HAPPY_PATH, HAPPY_PATH[1:])) | {(S.pending, S.cancelled), (S.accepted, S.cancelled)}


@pytest.mark.parametrize("old,new", list(itertools.product(S, S)))
def test_only_documented_edges_are_legal(old, new):
    assert can_transition(old, new) == ((old, new) in LEGAL)
    if (old, new) in LEGAL:
        check_transition(old, new)
    else:
        with pytest.raises(IllegalTransition):
            check_transition(old, new)


def test_terminal_states():
    assert TERMINAL == {S.completed, S.cancelled}
    for status in TERMINAL:
        assert allowed_targets(status) == set()


def test_cancellable_states():
    assert CANCELLABLE == {S.pending, S.accepted}
    assert sources_of(S.cancelled) == {S.pending, S.accepted}


def test_sources_of_follow_the_happy_path():
    for prev, nxt in zip(HAPPY_PATH, HAPPY_PATH[1:]):
        assert sources_of(nxt) == {prev}
    assert sources_of(S.pending) == set()
