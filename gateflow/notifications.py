"""
Desktop notifications for gateflow.

Uses notify-send (freedesktop compliant). Missing notify-send or a failing
notification daemon is logged and otherwise ignored.
"""

import logging
import shutil
import subprocess

logger = logging.getLogger(__name__)

APP_NAME = "gateflow"
VALID_URGENCIES = ("low", "normal", "critical")
MAX_NOTIFICATION_LENGTH = 200


def notify(title: str, message: str, urgency: str = "normal"):
    """
    Send desktop notification.

    Args:
        title: Notification title
        message: Notification body
        urgency: One of "low", "normal", "critical"
    """
    if urgency not in VALID_URGENCIES:
        logger.warning(f"Invalid urgency '{urgency}', using 'normal'")
        urgency = "normal"

    if not shutil.which("notify-send"):
        logger.debug("notify-send not found, skipping notification")
        return

    if len(message) > MAX_NOTIFICATION_LENGTH:
        message = message[:MAX_NOTIFICATION_LENGTH] + "..."

    try:
        result = subprocess.run(
            ["notify-send", "--urgency", urgency, "--app-name", APP_NAME, title, message],
            capture_output=True, text=True, timeout=5,
        )
        if result.returncode != 0:
            logger.warning(f"notify-send failed (exit {result.returncode}): {result.stderr}")
    except subprocess.TimeoutExpired:
        logger.warning("notify-send timed out")
    except OSError as e:
        logger.warning(f"Failed to run notify-send: {e}")


def notify_escalation(plan_id: str, unit_id: str, reason: str):
    """A unit exhausted its retries and needs an operator."""
    notify(f"gateflow: {plan_id}", f"Unit {unit_id} escalated: {reason}", "critical")


def notify_complete(plan_id: str, completed: int, failed: int, skipped: int):
    """A run finished."""
    if failed or skipped:
        notify(
            f"gateflow: {plan_id}",
            f"Run finished: {completed} completed, {failed} failed, {skipped} skipped",
            "normal",
        )
    else:
        notify(f"gateflow: {plan_id}", f"All {completed} units completed", "low")
