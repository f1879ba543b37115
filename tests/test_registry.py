import threading

from typing import Any, List, Tuple

import pytest

from barscripts.mpris.errors import SourceNotFound
from barscripts.mpris.properties import Properties, decode_properties
from barscripts.mpris.registry import SourceRegistry
from barscripts.mpris.transport import Subscription

from fakes import SPOTIFY, VLC, player_bag


def snapshot(**extra: Any) -> Properties:
    props, _ = decode_properties(player_bag(**extra))
    return props


def recording_registry() -> Tuple[SourceRegistry, List[Tuple[str, str]]]:
    events: List[Tuple[str, str]] = []
    registry = SourceRegistry(
        on_updated=lambda i, p: events.append(("updated", i)),
        on_removed=lambda i: events.append(("removed", i)),
    )
    return registry, events


def test_remove_twice_is_safe() -> None:
    registry, events = recording_registry()
    registry.upsert_full(VLC, snapshot(), Subscription(VLC))
    assert registry.remove(VLC) is True
    assert registry.remove(VLC) is False
    assert registry.list() == set()
    assert events == [("updated", VLC), ("removed", VLC)]


def test_remove_cancels_subscription() -> None:
    registry, _ = recording_registry()
    handle = Subscription(VLC)
    registry.upsert_full(VLC, snapshot(), handle)
    registry.remove(VLC)
    assert not handle.active


def test_remove_with_foreign_handle_does_nothing() -> None:
    registry, _ = recording_registry()
    handle = Subscription(VLC)
    registry.upsert_full(VLC, snapshot(), handle)
    assert registry.remove(VLC, handle=Subscription(VLC)) is False
    assert registry.list() == {VLC}
    assert handle.active


def test_apply_delta_never_creates_entry() -> None:
    registry, events = recording_registry()
    got = registry.apply_delta(VLC, Properties({"Volume": 0.5}))
    assert got is False
    assert registry.list() == set()
    assert events == []


def test_apply_delta_merges_and_invalidates() -> None:
    registry, events = recording_registry()
    registry.upsert_full(VLC, snapshot(), None)
    got = registry.apply_delta(VLC, Properties({"Volume": 0.5}), ["Rate"])
    assert got is True
    props = registry.get(VLC).properties
    assert props.volume == 0.5
    assert "Rate" not in props
    assert props.playback_status == "Playing"
    assert events == [("updated", VLC), ("updated", VLC)]


def test_apply_delta_without_changes_is_silent() -> None:
    registry, events = recording_registry()
    registry.upsert_full(VLC, snapshot(), None)
    assert registry.apply_delta(VLC, Properties({"Volume": 1.0})) is False
    assert events == [("updated", VLC)]


def test_apply_delta_checks_handle_and_status() -> None:
    registry, _ = recording_registry()
    handle = Subscription(VLC)
    registry.upsert_full(VLC, snapshot(status="Paused"), handle)
    delta = Properties({"Position": 10})
    assert not registry.apply_delta(VLC, delta, handle=Subscription(VLC))
    assert not registry.apply_delta(VLC, delta, require_status="Playing")
    assert registry.get(VLC).properties.position == 0
    assert registry.apply_delta(VLC, delta, handle=handle, require_status="Paused")
    assert registry.get(VLC).properties.position == 10


def test_upsert_replaces_and_cancels_old_handle() -> None:
    registry, events = recording_registry()
    old = Subscription(VLC)
    new = Subscription(VLC)
    registry.upsert_full(VLC, snapshot(), old)
    registry.upsert_full(VLC, snapshot(status="Paused"), new)
    assert not old.active
    assert new.active
    assert registry.get(VLC).handle is new
    assert registry.get(VLC).properties.playback_status == "Paused"
    assert events == [("updated", VLC), ("updated", VLC)]


def test_upsert_with_same_handle_keeps_it() -> None:
    registry, _ = recording_registry()
    handle = Subscription(VLC)
    registry.upsert_full(VLC, snapshot(), handle)
    registry.upsert_full(VLC, snapshot(Volume=0.1), handle)
    assert handle.active


def test_get_unknown_raises() -> None:
    registry, _ = recording_registry()
    with pytest.raises(SourceNotFound):
        registry.get(VLC)
    with pytest.raises(KeyError):
        registry.get(VLC)


def test_entries_are_snapshots() -> None:
    registry, _ = recording_registry()
    registry.upsert_full(VLC, snapshot(), None)
    before = registry.get(VLC)
    registry.apply_delta(VLC, Properties({"Volume": 0.5}))
    assert before.properties.volume == 1.0
    assert registry.get(VLC) is not before


def test_clear_removes_everything() -> None:
    registry, events = recording_registry()
    handles = [Subscription("a"), Subscription("b")]
    registry.upsert_full("a", snapshot(), handles[0])
    registry.upsert_full("b", snapshot(), handles[1])
    registry.clear()
    assert registry.list() == set()
    assert not any(h.active for h in handles)
    assert sorted(events[2:]) == [("removed", "a"), ("removed", "b")]


def test_listener_errors_do_not_break_registry() -> None:
    def boom(*unused: Any) -> None:
        raise RuntimeError("listener failed")

    registry = SourceRegistry(on_updated=boom, on_removed=boom)
    registry.upsert_full(VLC, snapshot(), None)
    assert registry.list() == {VLC}
    assert registry.remove(VLC)
    assert registry.list() == set()


def test_slow_listener_does_not_block_other_sources() -> None:
    entered = threading.Event()
    gate = threading.Event()
    got: List[Tuple[str, Any]] = []

    def on_updated(identity: str, props: Properties) -> None:
        if identity == VLC and props.volume == 0.5:
            entered.set()
            assert gate.wait(10)
        got.append((identity, props.volume))

    registry = SourceRegistry(on_updated=on_updated)
    registry.upsert_full(VLC, snapshot(), None)
    registry.upsert_full(SPOTIFY, snapshot(), None)

    slow = threading.Thread(
        target=registry.apply_delta,
        args=(VLC, Properties({"Volume": 0.5})),
    )
    slow.start()
    assert entered.wait(5)

    other = threading.Thread(
        target=registry.apply_delta,
        args=(SPOTIFY, Properties({"Position": 5})),
    )
    other.start()
    other.join(5)
    assert not other.is_alive()
    assert registry.get(SPOTIFY).properties.position == 5

    # Same source: the mutation lands at once, its notification waits
    # behind the one being delivered.
    same = threading.Thread(
        target=registry.apply_delta,
        args=(VLC, Properties({"Volume": 0.25})),
    )
    same.start()
    same.join(5)
    assert not same.is_alive()
    assert registry.get(VLC).properties.volume == 0.25

    gate.set()
    slow.join(5)
    assert not slow.is_alive()
    vlc_feed = [volume for identity, volume in got if identity == VLC]
    assert vlc_feed == [1.0, 0.5, 0.25]


def test_listener_may_read_registry() -> None:
    seen: List[Any] = []
    registry: SourceRegistry

    def on_updated(identity: str, props: Properties) -> None:
        seen.append(registry.get(identity).properties.volume)

    registry = SourceRegistry(on_updated=on_updated)
    registry.upsert_full(VLC, snapshot(Volume=0.3), None)
    assert seen == [0.3]
