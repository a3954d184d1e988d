from __future__ import annotations

import json
import logging
from pathlib import Path
from urllib.parse import urljoin

import requests

from recordapp.config import RemoteConfig
from recordapp.errors import TransportError
from recordapp.remote.models import StatusReport


logger = logging.getLogger(__name__)


class CommandFeedClient:
    """HTTP side of the recorder: pulls commands, pushes status and finished files."""

    def __init__(
        self,
        base_url: str = "http://localhost:5000",
        *,
        command_path: str = "/api/recording/command",
        status_path: str = "/api/recording/status",
        upload_path: str = "/api/recording/upload",
        timeout_s: float = 10.0,
    ) -> None:
        self.base_url = base_url.rstrip("/") + "/"
        self.command_path = command_path
        self.status_path = status_path
        self.upload_path = upload_path
        self.timeout_s = timeout_s

    @classmethod
    def from_config(cls, remote: RemoteConfig) -> CommandFeedClient:
        return cls(
            remote.base_url,
            command_path=remote.command_path,
            status_path=remote.status_path,
            upload_path=remote.upload_path,
            timeout_s=remote.timeout_seconds,
        )

    def _url(self, path: str) -> str:
        return urljoin(self.base_url, path.lstrip("/"))

    def fetch_command(self) -> str:
        url = self._url(self.command_path)
        try:
            resp = requests.get(url, timeout=self.timeout_s)
        except requests.RequestException as exc:
            raise TransportError(f"could not retrieve commands from {url}: {exc}") from exc
        if not resp.ok:
            raise TransportError(
                f"command feed returned HTTP {resp.status_code} {resp.reason or ''}".rstrip(),
                status=resp.status_code,
            )
        return resp.text

    def send_status(self, report: StatusReport) -> bool:
        url = self._url(self.status_path)
        try:
            resp = requests.post(
                url,
                data=json.dumps(report.to_json_dict()),
                headers={"Content-Type": "application/json"},
                timeout=self.timeout_s,
            )
        except requests.RequestException as exc:
            logger.warning("error sending status %r: %s", report.status, exc)
            return False
        if not resp.ok:
            logger.warning("failed to send status %r: HTTP %s %s", report.status, resp.status_code, resp.reason)
            return False
        logger.debug("status %r sent", report.status)
        return True

    def upload_file(self, path: Path) -> bool:
        if not path.is_file():
            logger.warning("file not found for upload: %s", path)
            return False
        url = self._url(self.upload_path)
        try:
            with path.open("rb") as f:
                resp = requests.post(
                    url,
                    files={"file": (path.name, f, "application/octet-stream")},
                    timeout=self.timeout_s,
                )
        except (OSError, requests.RequestException) as exc:
            logger.warning("error uploading %s: %s", path.name, exc)
            return False
        if not resp.ok:
            logger.warning("failed to upload %s: HTTP %s %s", path.name, resp.status_code, resp.reason)
            return False
        logger.info("uploaded %s", path.name)
        return True
