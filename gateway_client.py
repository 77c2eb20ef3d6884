import logging

import httpx

from classes.ZoneDirectory import ZoneDirectory
from state import Failure, FailureKind, RemoteStatusSnapshot, StartOk, StopOk

DEFAULT_TIMEOUT = 8.0
DEFAULT_PATHS = {
    "status": "/status",
    "sprinklers": "/sprinklers/",
    "start": "/sprinklers/start",
    "stop": "/sprinklers/stop",
}
SEE_LOGS = "see logs for details"


def first_detail(body):
    """Pull the first human readable message out of an error body, or None."""
    if not isinstance(body, dict):
        return None
    detail = body.get("detail")
    if isinstance(detail, list):
        detail = detail[0] if detail else None
    if isinstance(detail, dict):
        detail = detail.get("msg")
    if isinstance(detail, str) and detail.strip():
        return detail
    return None


def classify_error_response(status_code: int, body) -> Failure:
    detail = first_detail(body)
    if detail is not None and (status_code == 503 or detail.startswith("Hardware")):
        return Failure(FailureKind.HARDWARE, detail)
    if detail is not None and status_code == 409:
        return Failure(FailureKind.ZONE_CONFLICT, detail)
    if detail is not None and 400 <= status_code < 500:
        return Failure(FailureKind.VALIDATION, detail)
    if detail is not None:
        if SEE_LOGS in detail:
            return Failure(FailureKind.SERVER, detail)
        return Failure(FailureKind.SERVER, f"{detail}, {SEE_LOGS}")
    return Failure(FailureKind.SERVER, f"Server error {status_code}, {SEE_LOGS}")


def parse_status(body) -> RemoteStatusSnapshot:
    """
    Accepts the nested shape {"status": {...}, "message": ...} as well as the
    legacy flat {"systemStatus": ..., "message": ..., "zone": ..., "duration": ...}.
    """
    data = dict(body or {})
    nested = data.get("status")
    if isinstance(nested, dict):
        merged = dict(nested)
        merged.setdefault("message", data.get("message"))
        data = merged
    elif isinstance(nested, str):
        data.setdefault("systemStatus", nested)

    system_status = str(data.get("systemStatus") or "inactive").lower()
    zone = data.get("zone")
    if zone is None:
        zone = data.get("active_zone")
    duration = data.get("duration")
    return RemoteStatusSnapshot(
        system_status=system_status,
        message=data.get("message") or "",
        zone=int(zone) if zone is not None else None,
        duration=int(duration) if duration is not None else None,
    )


class SessionGateway:
    """
    JSON/HTTP client for the irrigation backend.

      GET  {base}/status             -> RemoteStatusSnapshot
      GET  {base}/sprinklers/        -> ZoneDirectory
      POST {base}/sprinklers/start   {"zone": z, "duration": seconds}
      POST {base}/sprinklers/stop

    Every call is bounded by one timeout and returns a Failure value instead of
    raising; there are no retries here.
    """

    def __init__(self, base_url, timeout=DEFAULT_TIMEOUT, paths=None, client=None, logger=None):
        self.base_url = base_url.rstrip("/")
        self.timeout = float(timeout)
        self.paths = {**DEFAULT_PATHS, **(paths or {})}
        self.logger = logger or logging.getLogger(__name__)

        self.client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(self.timeout),
            headers={"Accept": "application/json", "Content-Type": "application/json"},
        )

    async def _request(self, method, name, payload=None):
        url = self.base_url + self.paths[name]
        try:
            response = await self.client.request(method, url, json=payload, timeout=self.timeout)
        except httpx.TimeoutException:
            failure = Failure(FailureKind.TIMEOUT, f"Request timed out after {self.timeout:g} seconds")
            self.logger.warning("%s %s: %s", method, url, failure.message)
            return failure
        except httpx.TransportError as e:
            failure = Failure(FailureKind.NETWORK, str(e) or type(e).__name__)
            self.logger.warning("%s %s: %s", method, url, failure.message)
            return failure

        try:
            body = response.json()
        except ValueError:
            body = None

        if response.is_error:
            failure = classify_error_response(response.status_code, body)
            self.logger.warning(
                "%s %s -> %s %s: %s", method, url, response.status_code, failure.kind.value, failure.message
            )
            return failure
        if body is None:
            return Failure(FailureKind.SERVER, f"Invalid response from server, {SEE_LOGS}")

        self.logger.debug("%s %s -> %s %r", method, url, response.status_code, body)
        return body

    async def query_status(self):
        body = await self._request("GET", "status")
        if isinstance(body, Failure):
            return body
        try:
            return parse_status(body)
        except (TypeError, ValueError) as e:
            return Failure(FailureKind.SERVER, f"Malformed status response ({e}), {SEE_LOGS}")

    async def list_zones(self):
        body = await self._request("GET", "sprinklers")
        if isinstance(body, Failure):
            return body
        try:
            return ZoneDirectory.from_payload(body)
        except (KeyError, TypeError, ValueError) as e:
            return Failure(FailureKind.SERVER, f"Malformed sprinkler list ({e}), {SEE_LOGS}")

    async def start(self, zone: int, duration_minutes: int):
        seconds = int(duration_minutes) * 60
        body = await self._request("POST", "start", {"zone": int(zone), "duration": seconds})
        if isinstance(body, Failure):
            return body
        if not isinstance(body, dict):
            body = {}
        if str(body.get("systemStatus", "")).lower() == "error":
            return Failure(FailureKind.SERVER, body.get("message") or f"Start failed, {SEE_LOGS}")

        remote_zone = body.get("zone")
        remote_duration = body.get("duration")
        try:
            return StartOk(
                zone=int(remote_zone if remote_zone is not None else zone),
                duration_seconds=int(remote_duration if remote_duration is not None else seconds),
            )
        except (TypeError, ValueError) as e:
            return Failure(FailureKind.SERVER, f"Malformed start response ({e}), {SEE_LOGS}")

    async def stop(self):
        body = await self._request("POST", "stop")
        if isinstance(body, Failure):
            return body
        if isinstance(body, dict) and str(body.get("systemStatus", "")).lower() == "error":
            return Failure(FailureKind.SERVER, body.get("message") or f"Stop failed, {SEE_LOGS}")
        return StopOk(message=body.get("message", "") if isinstance(body, dict) else "")

    async def aclose(self):
        await self.client.aclose()
