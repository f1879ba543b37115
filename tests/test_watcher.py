from barscripts.mpris.errors import SubscriptionTerminated

from fakes import SPOTIFY, VLC, Engine, player_bag


def started_engine() -> Engine:
    engine = Engine()
    engine.transport.appear(VLC, player_bag(status="Paused"))
    engine.transport.appear(SPOTIFY, player_bag())
    return engine


def test_change_is_applied() -> None:
    engine = started_engine()
    engine.transport.properties_changed(
        VLC,
        {
            "PlaybackStatus": "Playing",
            "Metadata": {"mpris:trackid": "/t/2", "xesam:title": "Next"},
        },
    )
    props = engine.properties(VLC)
    assert props.playback_status == "Playing"
    assert props.metadata.trackid == "/t/2"
    assert props.metadata.title == "Next"
    assert engine.properties(SPOTIFY).metadata.title == "Song"


def test_invalidated_properties_become_absent() -> None:
    engine = started_engine()
    engine.transport.properties_changed(VLC, {}, ["Rate", "Volume"])
    props = engine.properties(VLC)
    assert "Rate" not in props
    assert "Volume" not in props
    assert props.playback_status == "Paused"


def test_malformed_notification_is_dropped() -> None:
    engine = started_engine()
    before = engine.properties(VLC)
    engine.transport.properties_changed(VLC, "garbage", [])
    engine.transport.properties_changed(VLC, {"Volume": 0.5}, "Volume")
    assert engine.properties(VLC) == before
    assert engine.registry.list() == {VLC, SPOTIFY}


def test_bad_metadata_in_change_keeps_the_rest() -> None:
    engine = started_engine()
    engine.transport.properties_changed(
        VLC,
        {"Metadata": {"xesam:title": "No id"}, "Volume": 0.5},
    )
    props = engine.properties(VLC)
    assert props.volume == 0.5
    assert props.metadata.title == "Song"


def test_terminated_subscription_removes_player() -> None:
    engine = started_engine()
    engine.transport.terminate(VLC)
    assert engine.registry.list() == {SPOTIFY}
    assert engine.transport.active_subscriptions(VLC) == []


def test_old_subscription_cannot_touch_new_entry() -> None:
    engine = started_engine()
    on_changed, on_terminated = engine.transport.watchers[VLC][0]
    engine.transport.name_owner_changed(VLC, ":1.1", ":1.9")
    on_changed({"Volume": 0.1}, [])
    assert engine.properties(VLC).volume == 1.0
    on_terminated(SubscriptionTerminated("late"))
    assert engine.registry.list() == {VLC, SPOTIFY}
