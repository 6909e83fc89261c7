from models.room import Player, Room
from services.room_store import PlayerDirectory, RoomStore


def _player(pid, name="", room_id=None, is_bot=False):
    return Player(id=pid, window_identity=f"w-{pid}", name=name, room_id=room_id, is_bot=is_bot)


class TestPlayerDirectory:
    def test_name_lookup_is_case_insensitive(self):
        directory = PlayerDirectory()
        directory.add(_player("c1", "Alex"))
        assert directory.by_name("alex").id == "c1"
        assert directory.by_name("  ALEX ").id == "c1"

    def test_rename_moves_the_name_index(self):
        directory = PlayerDirectory()
        player = _player("c1")
        directory.add(player)
        directory.rename(player, "Alex")
        directory.rename(player, "Sam")
        assert directory.by_name("alex") is None
        assert directory.by_name("sam") is player

    def test_remove_cleans_every_index(self):
        directory = PlayerDirectory()
        directory.add(_player("c1", "Alex"))
        directory.remove("c1")
        assert "c1" not in directory
        assert directory.by_name("Alex") is None
        assert directory.by_window("w-c1") is None

    def test_connection_for_skips_bots_and_other_rooms(self):
        directory = PlayerDirectory()
        directory.add(_player("c1", "Alex", room_id="r1"))
        directory.add(_player("bot_1", "BotAlex", room_id="r1", is_bot=True))
        assert directory.connection_for("alex", "r1") == "c1"
        assert directory.connection_for("Alex", "r2") is None
        assert directory.connection_for("BotAlex", "r1") is None

    def test_snapshot_lists_only_named_players(self):
        directory = PlayerDirectory()
        directory.add(_player("c1", "Alex"))
        directory.add(_player("c2"))
        assert [p["id"] for p in directory.snapshot()] == ["c1"]


class TestRoomStore:
    def test_last_member_leaving_deletes_the_room(self):
        store = RoomStore()
        room = Room(name="Trivia", capacity=2, host_id="c1", members=["c1"])
        store.add(room)
        assert store.remove_member(room, "c1", "Alex") is True
        assert store.get(room.id) is None
        assert store.find_by_name("trivia") is None

    def test_remove_member_drops_finished_mark(self):
        store = RoomStore()
        room = Room(name="Trivia", capacity=2, host_id="c1", members=["c1", "c2"], finished=["Alex"])
        store.add(room)
        assert store.remove_member(room, "c1", "Alex") is False
        assert room.finished == []
        assert room.members == ["c2"]

    def test_prune_removes_stale_members_and_their_finished_names(self):
        directory = PlayerDirectory()
        directory.add(_player("c2", "Sam"))
        store = RoomStore()
        room = Room(
            name="Trivia", capacity=3, host_id="c1",
            members=["c1", "c2"], finished=["Alex", "Sam"],
        )
        store.add(room)
        assert store.prune(room, directory) is False
        assert room.members == ["c2"]
        assert room.finished == ["Sam"]

    def test_prune_deletes_a_room_with_no_live_members(self):
        store = RoomStore()
        room = Room(name="Trivia", capacity=2, host_id="c1", members=["c1"])
        store.add(room)
        assert store.prune(room, PlayerDirectory()) is True
        assert len(store) == 0
