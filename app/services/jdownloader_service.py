"""
JDownloader Direct Connection API client for handing verified links off to
a local download manager.
"""

import logging
import time

import requests

from constants import JDOWNLOADER_URL
from exceptions import DownloaderException, ValidationException

logger = logging.getLogger("main")

QUERY_FIELDS = (
    "bytesLoaded",
    "bytesTotal",
    "comment",
    "status",
    "enabled",
    "eta",
    "extractionStatus",
    "finished",
    "running",
    "speed",
    "url",
)


class JDownloaderService:
    def __init__(self, base_url=JDOWNLOADER_URL, session=None, timeout=10):
        self.base_url = (base_url or JDOWNLOADER_URL).rstrip("/")
        self.session = session or requests.Session()
        self.timeout = timeout

    def _request(self, method, path, payload=None):
        url = f"{self.base_url}{path}"
        try:
            response = self.session.request(method, url, json=payload, timeout=self.timeout)
        except requests.RequestException as e:
            raise DownloaderException(f"failed to connect to JDownloader: {e}")
        if response.status_code != 200:
            raise DownloaderException(f"JDownloader returned status {response.status_code}: {response.text[:200]}")
        return response

    def is_available(self):
        try:
            response = self.session.get(f"{self.base_url}/flash/get/version", timeout=self.timeout)
        except requests.RequestException:
            return False
        return response.status_code == 200

    def get_version(self):
        return self._request("GET", "/flash/get/version").text.strip()

    def add_links(self, links, package_name=None, destination_dir=None):
        links = [link for link in (links or []) if link]
        if not links:
            raise ValidationException("no links provided")

        payload = {"links": links, "autostart": False, "autoExtract": False}
        if package_name:
            payload["packageName"] = package_name
        if destination_dir:
            payload["destinationFolder"] = destination_dir

        self._request("POST", "/linkgrabberv2/addLinks", payload)
        logger.info(f"Sent {len(links)} links to JDownloader (package: {package_name or '-'})")
        return len(links)

    def start_downloads(self):
        self._request("GET", "/downloadcontroller/start")
        return True

    def stop_downloads(self):
        self._request("GET", "/downloadcontroller/stop")
        return True

    def get_download_status(self):
        try:
            return self._request("GET", "/downloadcontroller/getCurrentState").json()
        except ValueError as e:
            raise DownloaderException(f"unexpected JDownloader status payload: {e}")

    def get_download_list(self):
        payload = {field: True for field in QUERY_FIELDS}
        try:
            return self._request("POST", "/downloadsV2/queryLinks", payload).json()
        except ValueError as e:
            raise DownloaderException(f"unexpected JDownloader download list: {e}")

    def add_links_and_start(self, links, package_name=None, destination_dir=None, settle_seconds=0.5):
        count = self.add_links(links, package_name, destination_dir)
        # JDownloader needs a moment to ingest the links
        time.sleep(settle_seconds)
        self.start_downloads()
        return count
