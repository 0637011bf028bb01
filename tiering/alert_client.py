"""
Operator alerts.

Posts a JSON event to ALERT_WEBHOOK_URL and/or runs NOTIFY_CMD with
(severity, tag, message) arguments. Alerts are best-effort: failures are
logged and never abort a job.
"""

import logging
import shlex
import socket
import subprocess
from datetime import datetime, timezone

import requests

log = logging.getLogger("tiering.alerts")


class AlertClient:
    """Sends job alerts to a webhook and/or a local notify command."""

    def __init__(self, webhook_url: str | None = None, notify_cmd: str | None = None,
                 timeout: int = 10, runner=subprocess.run):
        self.webhook_url = webhook_url
        self.notify_cmd = notify_cmd
        self.timeout = timeout
        self._runner = runner
        self._http = None

    @classmethod
    def from_settings(cls, settings) -> "AlertClient":
        return cls(settings.alert_webhook_url, settings.notify_cmd, settings.alert_timeout)

    @property
    def enabled(self) -> bool:
        return bool(self.webhook_url or self.notify_cmd)

    def _session(self) -> requests.Session:
        if self._http is None:
            self._http = requests.Session()
            self._http.headers.update({"Content-Type": "application/json"})
        return self._http

    def _post(self, payload: dict) -> bool:
        try:
            resp = self._session().post(self.webhook_url, json=payload, timeout=self.timeout)
            resp.raise_for_status()
            return True
        except requests.RequestException as e:
            log.warning(f"Alert webhook failed: {e}")
            return False

    def _run_cmd(self, severity: str, tag: str, message: str) -> bool:
        cmd = shlex.split(self.notify_cmd) + [severity, tag, message]
        try:
            result = self._runner(cmd, capture_output=True, text=True, timeout=self.timeout)
        except (OSError, subprocess.TimeoutExpired) as e:
            log.warning(f"Notify command failed: {e}")
            return False
        if result.returncode != 0:
            log.warning(f"Notify command exited {result.returncode}: {(result.stderr or '')[:300]}")
            return False
        return True

    def notify(self, severity: str, tag: str, message: str) -> bool:
        """Send an alert through every configured channel. True if all succeeded."""
        if not self.enabled:
            return False
        ok = True
        if self.webhook_url:
            ok = self._post({
                "severity": severity,
                "tag": tag,
                "message": message,
                "host": socket.gethostname(),
                "ts": datetime.now(timezone.utc).isoformat(),
            }) and ok
        if self.notify_cmd:
            ok = self._run_cmd(severity, tag, message) and ok
        return ok
