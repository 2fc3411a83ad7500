import time

import pytest

from image_store.monitor import Monitor


def test_rejects_invalid_threshold():
    with pytest.raises(ValueError):
        Monitor(failure_threshold=0)
    with pytest.raises(ValueError):
        Monitor(failure_threshold=3, window_seconds=0)


def test_alerts_once_when_threshold_reached():
    alerts = []
    monitor = Monitor(failure_threshold=3, window_seconds=60, alert_handler=alerts.append)

    monitor.pass_()
    monitor.fail()
    monitor.fail()
    assert alerts == []
    assert not monitor.degraded

    monitor.fail()
    assert len(alerts) == 1
    assert "3 storage failures" in alerts[0]
    assert monitor.degraded

    monitor.fail()
    assert len(alerts) == 1

    stats = monitor.stats
    assert stats["total_passes"] == 1
    assert stats["total_failures"] == 4
    assert stats["consecutive_failures"] == 4
    assert stats["window_seconds"] == 60


def test_failures_expire_with_window():
    alerts = []
    monitor = Monitor(failure_threshold=2, window_seconds=1, alert_handler=alerts.append)

    monitor.fail()
    assert monitor.consecutive_failures == 1

    # Wait past the window
    time.sleep(1.1)
    assert monitor.consecutive_failures == 0

    monitor.fail()
    assert alerts == []
    assert monitor.stats["total_failures"] == 2


def test_default_alert_is_logged(caplog):
    monitor = Monitor(failure_threshold=1)

    with caplog.at_level("ERROR", logger="image_store"):
        monitor.fail()

    assert "[ALERT]" in caplog.text
