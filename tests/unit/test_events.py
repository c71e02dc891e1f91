"""
Unit tests for the event channel (httpbackup/events.py).
"""

from httpbackup.events import Event, EventChannel, EventType


class TestEventChannel:
    """Test bounded, non-blocking publishing."""

    def test_publish_and_get(self):
        channel = EventChannel(maxsize=2)

        assert channel.publish(Event(EventType.RUN_NOW)) is True

        event = channel.get(timeout=0.1)
        assert event.type == EventType.RUN_NOW

    def test_full_channel_drops_without_blocking(self):
        channel = EventChannel(maxsize=2)

        assert channel.notify_config_changed() is True
        assert channel.notify_config_changed() is True
        assert channel.request_run() is False

        assert channel.pending() == 2

    def test_get_times_out_with_none(self):
        channel = EventChannel(maxsize=1)

        assert channel.get(timeout=0.01) is None

    def test_events_delivered_in_order(self):
        channel = EventChannel()
        channel.notify_config_changed()
        channel.request_run()

        assert channel.get(timeout=0.1).type == EventType.CONFIG_CHANGED
        assert channel.get(timeout=0.1).type == EventType.RUN_NOW

    def test_non_positive_size_uses_default(self):
        channel = EventChannel(maxsize=0)

        for _ in range(8):
            assert channel.request_run() is True
        assert channel.request_run() is False
