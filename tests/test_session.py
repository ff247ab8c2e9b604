"""Tests for session snapshot types, the observer snapshot and account state."""

import pytest

from runematch.credentials import AccountState
from runematch.observer import Actor, WorldSnapshot
from runematch.session import MatchSession, Participant, Rally, WorldPoint, is_fighting, is_terminal


def make_session(local_rsn="Zezima", p1="Zezima", p2="Lynx Titan", token="", **kwargs):
    """Two-slot session with Zezima in player1 by default."""
    return MatchSession(
        match_code="M-1",
        local_rsn=local_rsn,
        participants=(
            Participant(p1, joined=True, ready_to_fight=False, token="tok-1"),
            Participant(p2, joined=False, ready_to_fight=True, token=""),
        ),
        token=token,
        **kwargs,
    )


class TestWorldPoint:
    """Tests for tile coordinates."""

    def test_chebyshev_distance(self):
        """Distance is the larger of the axis deltas."""
        assert WorldPoint(0, 0).distance_to(WorldPoint(3, -7)) == 7
        assert WorldPoint(10, 10, 1).distance_to(WorldPoint(10, 10, 1)) == 0

    def test_other_plane_has_no_distance(self):
        """Points on different planes have no distance."""
        assert WorldPoint(0, 0, 0).distance_to(WorldPoint(0, 0, 1)) is None

    def test_rally_converts_to_point(self):
        """A rally converts to the same world point."""
        assert Rally(5, 6, 2).to_world_point() == WorldPoint(5, 6, 2)


class TestStatus:
    """Tests for status predicates."""

    @pytest.mark.parametrize("status", ["Completed", "canceled", "COMPLETED"])
    def test_terminal(self, status):
        """Completed and Canceled are terminal in any case."""
        assert is_terminal(status)

    @pytest.mark.parametrize("status", ["", None, "Fighting", "Rally", "Cancelled"])
    def test_not_terminal(self, status):
        """Other statuses, and misspellings, are not terminal."""
        assert not is_terminal(status)

    def test_fighting(self):
        """Fighting is matched case-insensitively."""
        assert is_fighting("FIGHTING")
        assert not is_fighting(None)


class TestMatchSession:
    """Tests for MatchSession local views."""

    def test_local_views_player1(self):
        """Local views resolve player1."""
        session = make_session()
        assert session.local_participant.rsn == "Zezima"
        assert session.opponent_rsn == "Lynx Titan"
        assert session.local_joined is True
        assert session.local_ready_to_fight is False
        assert session.local_token == "tok-1"

    def test_local_views_player2_case_insensitive(self):
        """Local views resolve player2 regardless of case."""
        session = make_session(local_rsn="LYNX TITAN", token="auth-tok")
        assert session.local_participant.rsn == "Lynx Titan"
        assert session.opponent_rsn == "Zezima"
        assert session.local_ready_to_fight is True
        # Slot token is empty, so the authentication block token is used
        assert session.local_token == "auth-tok"

    def test_player1_wins_tie(self):
        """player1 is local when both slots carry the local name."""
        session = make_session(p1="Zezima", p2="zezima")
        assert session.local_participant is session.player1
        assert session.opponent is session.player2

    def test_unknown_local_player(self):
        """An unmatched local name yields absent local views."""
        session = make_session(local_rsn="Someone Else")
        assert session.local_participant is None
        assert session.opponent_rsn is None
        assert session.local_joined is False
        assert session.local_ready_to_fight is False
        assert session.local_token == ""

    def test_involves(self):
        """involves matches either participant case-insensitively."""
        session = make_session()
        assert session.involves("lynx titan")
        assert session.involves("ZEZIMA")
        assert not session.involves("Woox")
        assert not session.involves(None)

    def test_empty_slot_never_matches(self):
        """Empty names never match a slot."""
        session = make_session(local_rsn="", p2="")
        assert session.local_participant is None
        assert not session.involves("")

    def test_has_participants(self):
        """Sessions without any player names carry no match fields."""
        assert make_session().has_participants
        assert make_session(p1="").has_participants
        assert not make_session(p1="", p2="").has_participants

    def test_to_dict_omits_tokens(self):
        """to_dict never exposes tokens."""
        data = make_session(token="secret", rally=Rally(1, 2, 0)).to_dict()
        assert data["rally"] == {"x": 1, "y": 2, "plane": 0}
        assert data["winner"] is None
        assert "secret" not in str(data)
        assert "tok-1" not in str(data)


class TestWorldSnapshot:
    """Tests for the in-memory observer."""

    def test_find_player_case_insensitive(self):
        """Players are found by name regardless of case."""
        world = WorldSnapshot()
        world.update_player(Actor("Lynx Titan", WorldPoint(1, 1)))
        assert world.find_player("LYNX titan").name == "Lynx Titan"
        world.remove_player("lynx titan")
        assert world.find_player("Lynx Titan") is None

    def test_find_player_includes_local(self):
        """The local player can be found by name."""
        world = WorldSnapshot()
        me = Actor("Zezima", WorldPoint(1, 1))
        world.set_local_player(me)
        assert world.find_player("zezima") is me

    def test_hint_changes_counted(self):
        """Every set or clear of the arrow is counted."""
        world = WorldSnapshot()
        world.set_hint_arrow(WorldPoint(1, 2))
        world.clear_hint_arrow()
        assert world.hint_target is None
        assert world.hint_changes == 2

    def test_mutual_interaction(self):
        """Interaction is one-directional and case-insensitive."""
        a = Actor("A", WorldPoint(0, 0), interacting="b")
        b = Actor("B", WorldPoint(1, 0))
        assert a.is_interacting_with(b)
        assert not b.is_interacting_with(a)


class TestAccountState:
    """Tests for account verification state."""

    def test_empty_values_are_missing(self):
        """Empty strings count as missing credentials."""
        account = AccountState("", "Zezima")
        assert account.verification_code is None
        assert not account.verified

    def test_update_and_reset(self):
        """update sets credentials and reset clears them."""
        account = AccountState()
        account.update("ABC123", "Zezima")
        assert account.verified
        account.reset()
        assert account.verified_username is None
        assert not account.verified
