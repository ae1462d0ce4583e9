"""
Tests for the natpunch room registry.

Validates:
1. Rooms are created lazily and reused per token
2. remove_if_empty only drops empty rooms
3. Stale eviction uses a strict cutoff and removes emptied rooms
4. all_rooms() snapshots survive mutation during iteration
"""

import pytest

from natpunch.registry import Room, RoomRegistry, format_endpoint

A = ("203.0.113.1", 1000)
B = ("198.51.100.2", 2000)
STALE = 300.0


class TestRoom:
    """Room membership bookkeeping."""

    def test_add_and_find(self):
        room = Room("room1")
        member = room.add(A, is_host=True, now=10.0)
        assert room.find(A) is member
        assert room.find(B) is None
        assert len(room) == 1
        assert A in room

    def test_duplicate_endpoint_rejected(self):
        room = Room("room1")
        room.add(A, is_host=True, now=10.0)
        with pytest.raises(KeyError):
            room.add(A, is_host=False, now=11.0)
        assert len(room) == 1

    def test_hosts_and_clients_split(self):
        room = Room("room1")
        room.add(A, is_host=True, now=0.0)
        room.add(B, is_host=False, now=0.0)
        assert [m.endpoint for m in room.hosts()] == [A]
        assert [m.endpoint for m in room.clients()] == [B]

    def test_members_keep_admission_order(self):
        room = Room("room1")
        room.add(B, is_host=True, now=0.0)
        room.add(A, is_host=False, now=0.0)
        assert [m.endpoint for m in room.members] == [B, A]

    def test_remove_stale_is_strict(self):
        room = Room("room1")
        room.add(A, is_host=True, now=100.0)
        room.add(B, is_host=False, now=99.0)
        removed = room.remove_stale(cutoff=100.0)
        assert [m.endpoint for m in removed] == [B]
        assert room.find(A) is not None


class TestRoomRegistry:
    """Token -> room mapping."""

    @pytest.fixture
    def registry(self):
        return RoomRegistry()

    def test_get_or_create_room_reuses_room(self, registry):
        first = registry.get_or_create_room("room1")
        second = registry.get_or_create_room("room1")
        assert first is second
        assert len(registry) == 1

    def test_get_room_does_not_create(self, registry):
        assert registry.get_room("missing") is None
        assert "missing" not in registry

    def test_remove_if_empty(self, registry):
        registry.get_or_create_room("room1")
        assert registry.remove_if_empty("room1") is True
        assert "room1" not in registry

    def test_remove_if_empty_keeps_populated_room(self, registry):
        registry.get_or_create_room("room1").add(A, is_host=True, now=0.0)
        assert registry.remove_if_empty("room1") is False
        assert "room1" in registry

    def test_remove_if_empty_unknown_token(self, registry):
        assert registry.remove_if_empty("nope") is False

    def test_all_rooms_snapshot_allows_mutation(self, registry):
        for token in ("a", "b", "c"):
            registry.get_or_create_room(token)
        for token, _room in registry.all_rooms():
            registry.remove_if_empty(token)
        assert len(registry) == 0

    def test_member_count(self, registry):
        registry.get_or_create_room("a").add(A, is_host=True, now=0.0)
        room_b = registry.get_or_create_room("b")
        room_b.add(A, is_host=True, now=0.0)
        room_b.add(B, is_host=False, now=0.0)
        assert registry.member_count() == 3


class TestEviction:
    """Stale member sweep."""

    @pytest.fixture
    def registry(self):
        return RoomRegistry()

    def test_stale_members_and_empty_rooms_removed(self, registry):
        room = registry.get_or_create_room("room1")
        room.add(A, is_host=True, now=0.0)
        room.add(B, is_host=False, now=0.0)

        evicted = registry.evict_stale(now=STALE + 1, stale_timeout=STALE)

        assert {m.endpoint for _, m in evicted} == {A, B}
        assert "room1" not in registry

    def test_fresh_members_survive(self, registry):
        room = registry.get_or_create_room("room1")
        room.add(A, is_host=True, now=0.0)
        room.add(B, is_host=False, now=200.0)

        evicted = registry.evict_stale(now=STALE + 1, stale_timeout=STALE)

        assert [(t, m.endpoint) for t, m in evicted] == [("room1", A)]
        assert registry.get_room("room1").members[0].endpoint == B

    def test_member_exactly_at_cutoff_survives(self, registry):
        registry.get_or_create_room("room1").add(A, is_host=True, now=0.0)
        assert registry.evict_stale(now=STALE, stale_timeout=STALE) == []
        assert "room1" in registry

    def test_evicted_host_not_replaced(self, registry):
        room = registry.get_or_create_room("room1")
        room.add(A, is_host=True, now=0.0)
        room.add(B, is_host=False, now=250.0)

        registry.evict_stale(now=STALE + 1, stale_timeout=STALE)

        assert room.hosts() == []
        assert room.find(B).is_host is False

    def test_rooms_swept_independently(self, registry):
        registry.get_or_create_room("old").add(A, is_host=True, now=0.0)
        registry.get_or_create_room("new").add(B, is_host=True, now=290.0)

        registry.evict_stale(now=STALE + 10, stale_timeout=STALE)

        assert "old" not in registry
        assert "new" in registry


def test_format_endpoint():
    assert format_endpoint(("10.0.0.1", 5)) == "10.0.0.1:5"
    assert format_endpoint(("::1", 5)) == "[::1]:5"
