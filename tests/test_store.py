from channel_relay.models import DownloadStatus

def test_insert_applies_defaults(store):
    channel = store.insert(name="Lobby", rtmp_url="rtmp://a/app", rtmp_key="k1")

    assert channel.id is not None
    assert channel.created_at is not None
    assert channel.download_status == DownloadStatus.IDLE.value
    assert channel.is_active is False
    assert channel.looping_enabled is True
    assert channel.video_source_path is None

def test_list_all_returns_newest_first(store):
    first = store.insert(name="First", rtmp_url="rtmp://a/app", rtmp_key="k1")
    second = store.insert(name="Second", rtmp_url="rtmp://a/app", rtmp_key="k2")

    assert [c.id for c in store.list_all()] == [second.id, first.id]

def test_update_only_touches_supplied_fields(store):
    channel = store.insert(name="Lobby", rtmp_url="rtmp://a/app", rtmp_key="k1")

    assert store.update(channel.id, name="Foyer") == 1

    updated = store.get(channel.id)
    assert updated.name == "Foyer"
    assert updated.rtmp_url == "rtmp://a/app"
    assert updated.rtmp_key == "k1"

def test_update_with_none_clears_column(store):
    channel = store.insert(name="Lobby", rtmp_url="rtmp://a/app", rtmp_key="k1", last_error="boom")

    store.update(channel.id, last_error=None)

    assert store.get(channel.id).last_error is None

def test_update_and_delete_report_zero_rows_for_missing_channel(store):
    assert store.update(999, name="Nobody") == 0
    assert store.update(999) == 0
    assert store.delete(999) == 0

def test_delete_removes_row(store):
    channel = store.insert(name="Lobby", rtmp_url="rtmp://a/app", rtmp_key="k1")

    assert store.delete(channel.id) == 1
    assert store.get(channel.id) is None

def test_list_scheduled_ready_requires_window_and_ready_status(store, make_channel):
    wanted = make_channel("Scheduled", ready=True, schedule_start_time="08:00", schedule_stop_time="17:00")
    make_channel("Unscheduled", ready=True)
    make_channel("Not downloaded", schedule_start_time="08:00", schedule_stop_time="17:00")

    assert [c.id for c in store.list_scheduled_ready()] == [wanted.id]

def test_clear_active_flags(store):
    a = store.insert(name="A", rtmp_url="rtmp://a/app", rtmp_key="k1", is_active=True)
    b = store.insert(name="B", rtmp_url="rtmp://a/app", rtmp_key="k2", is_active=True)
    store.insert(name="C", rtmp_url="rtmp://a/app", rtmp_key="k3")

    assert store.clear_active_flags() == 2
    assert store.get(a.id).is_active is False
    assert store.get(b.id).is_active is False

def test_fail_interrupted_downloads(store):
    channel = store.insert(
        name="A", rtmp_url="rtmp://a/app", rtmp_key="k1",
        download_status=DownloadStatus.DOWNLOADING.value,
    )

    assert store.fail_interrupted_downloads("interrupted") == 1

    row = store.get(channel.id)
    assert row.download_status == DownloadStatus.ERROR.value
    assert row.last_error == "interrupted"
