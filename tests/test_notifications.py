"""Tests for gateflow.notifications module."""

from unittest.mock import patch

from gateflow.notifications import MAX_NOTIFICATION_LENGTH, notify, notify_complete, notify_escalation


class TestNotify:
    @patch("gateflow.notifications.shutil.which", return_value=None)
    @patch("gateflow.notifications.subprocess.run")
    def test_skipped_without_notify_send(self, mock_run, mock_which):
        notify("title", "body")
        mock_run.assert_not_called()

    @patch("gateflow.notifications.shutil.which", return_value="/usr/bin/notify-send")
    @patch("gateflow.notifications.subprocess.run")
    def test_truncates_long_message(self, mock_run, mock_which):
        mock_run.return_value.returncode = 0
        notify("title", "x" * 500)
        message = mock_run.call_args[0][0][-1]
        assert len(message) == MAX_NOTIFICATION_LENGTH + 3

    @patch("gateflow.notifications.shutil.which", return_value="/usr/bin/notify-send")
    @patch("gateflow.notifications.subprocess.run")
    def test_invalid_urgency_falls_back(self, mock_run, mock_which, caplog):
        mock_run.return_value.returncode = 0
        notify("title", "body", urgency="extreme")
        assert "Invalid urgency" in caplog.text
        assert mock_run.call_args[0][0][2] == "normal"

    @patch("gateflow.notifications.shutil.which", return_value="/usr/bin/notify-send")
    @patch("gateflow.notifications.subprocess.run", side_effect=OSError("no dbus"))
    def test_os_error_is_logged(self, mock_run, mock_which, caplog):
        notify("title", "body")
        assert "Failed to run notify-send" in caplog.text


class TestHelpers:
    @patch("gateflow.notifications.notify")
    def test_escalation_is_critical(self, mock_notify):
        notify_escalation("demo", "3", "tests failed")
        mock_notify.assert_called_once_with("gateflow: demo", "Unit 3 escalated: tests failed", "critical")

    @patch("gateflow.notifications.notify")
    def test_complete_urgency(self, mock_notify):
        notify_complete("demo", 3, 0, 0)
        assert mock_notify.call_args[0][2] == "low"
        notify_complete("demo", 1, 1, 1)
        assert mock_notify.call_args[0][2] == "normal"
