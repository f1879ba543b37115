import random
import threading

from concurrent import futures
from typing import Set

from barscripts.mpris.properties import Properties

from fakes import FIREFOX, SPOTIFY, VLC, Engine, player_bag


def test_seed_adds_players_already_on_the_bus() -> None:
    engine = Engine()
    engine.transport.bags[VLC] = player_bag()
    engine.transport.bags[SPOTIFY] = player_bag(status="Paused")
    engine.ownership.seed([VLC, SPOTIFY])
    assert engine.registry.list() == {VLC, SPOTIFY}
    assert engine.properties(SPOTIFY).playback_status == "Paused"
    assert len(engine.transport.active_subscriptions(VLC)) == 1


def test_player_appears_and_vanishes() -> None:
    engine = Engine()
    engine.transport.appear(VLC, player_bag())
    assert engine.registry.list() == {VLC}
    engine.transport.vanish(VLC)
    assert engine.registry.list() == set()
    assert engine.transport.active_subscriptions(VLC) == []
    assert engine.events == [("updated", VLC), ("removed", VLC)]


def test_late_delta_does_not_resurrect() -> None:
    engine = Engine()
    engine.transport.appear(VLC, player_bag())
    engine.transport.vanish(VLC)
    got = engine.registry.apply_delta(VLC, Properties({"Position": 5000000}))
    assert got is False
    assert engine.registry.list() == set()


def test_missing_trackid_is_not_added() -> None:
    engine = Engine()
    engine.transport.appear(SPOTIFY, player_bag(trackid=None))
    assert engine.registry.list() == set()
    assert engine.transport.active_subscriptions(SPOTIFY) == []


def test_player_is_retried_when_it_reappears() -> None:
    engine = Engine()
    engine.transport.appear(SPOTIFY, player_bag(trackid=None))
    engine.transport.vanish(SPOTIFY)
    engine.transport.appear(SPOTIFY, player_bag())
    assert engine.registry.list() == {SPOTIFY}


def test_unreachable_player_is_not_added() -> None:
    engine = Engine()
    engine.transport.unreachable.add(VLC)
    engine.transport.appear(VLC, player_bag())
    engine.transport.appear(SPOTIFY, player_bag())
    assert engine.registry.list() == {SPOTIFY}
    assert engine.transport.active_subscriptions(VLC) == []


def test_subscription_failure_skips_player() -> None:
    engine = Engine()
    engine.transport.unsubscribable.add(VLC)
    engine.transport.appear(VLC, player_bag())
    assert engine.registry.list() == set()
    assert engine.transport.get_all_calls == []


def test_other_names_are_ignored() -> None:
    engine = Engine()
    engine.transport.appear("org.freedesktop.Notifications", player_bag())
    assert engine.transport.get_all_calls == []
    assert engine.registry.list() == set()


def test_owner_replacement_is_remove_then_add() -> None:
    engine = Engine()
    engine.transport.appear(VLC, player_bag())
    old = engine.registry.get(VLC).handle
    engine.transport.bags[VLC] = player_bag(status="Stopped")
    engine.transport.name_owner_changed(VLC, ":1.1", ":1.2")
    entry = engine.registry.get(VLC)
    assert entry.handle is not old
    assert not old.active
    assert entry.properties.playback_status == "Stopped"
    assert engine.events == [
        ("updated", VLC),
        ("removed", VLC),
        ("updated", VLC),
    ]


def test_stop_unsubscribes_from_owner_changes() -> None:
    engine = Engine()
    engine.ownership.stop()
    engine.transport.appear(VLC, player_bag())
    assert engine.registry.list() == set()
    assert engine.transport.owner_callbacks == []


def test_owned_then_unowned_before_fetch_completes() -> None:
    entered = threading.Event()
    gate = threading.Event()

    def slow_fetch() -> None:
        entered.set()
        assert gate.wait(10)

    with futures.ThreadPoolExecutor(max_workers=4) as executor:
        engine = Engine(executor=executor)
        engine.transport.bags[FIREFOX] = player_bag()
        engine.transport.before_get_all[FIREFOX] = slow_fetch
        engine.transport.name_owner_changed(FIREFOX, "", ":1.7")
        assert entered.wait(5)
        engine.transport.name_owner_changed(FIREFOX, ":1.7", "")
        gate.set()
        assert engine.dispatcher.wait_idle(5)

    assert engine.registry.list() == set()
    assert engine.transport.active_subscriptions(FIREFOX) == []
    assert engine.events == [("updated", FIREFOX), ("removed", FIREFOX)]


def test_final_membership_follows_last_ownership_event() -> None:
    names = [VLC, SPOTIFY, FIREFOX]
    for seed in range(20):
        rng = random.Random(seed)
        with futures.ThreadPoolExecutor(max_workers=3) as executor:
            engine = Engine(executor=executor)
            want: Set[str] = set()
            owners = dict((name, "") for name in names)
            for name in names:
                engine.transport.bags[name] = player_bag()
            for _ in range(60):
                name = rng.choice(names)
                old = owners[name]
                new = rng.choice(["", engine.transport.new_owner()])
                if not old and not new:
                    continue
                owners[name] = new
                engine.transport.name_owner_changed(name, old, new)
                if new:
                    want.add(name)
                else:
                    want.discard(name)
            assert engine.dispatcher.wait_idle(10)

        assert engine.registry.list() == want, "seed %s" % seed
        for name in names:
            active = engine.transport.active_subscriptions(name)
            assert len(active) == (1 if name in want else 0), "seed %s" % seed
