import logging
from typing import Any, Dict, Literal, Optional

import httpx

from avcontrol.exceptions.devices import DeviceConnectionError, DeviceProtocolError

log = logging.getLogger("avcontrol.amplifier")

AMP_API_PORT = 10000
AMP_TIMEOUT = 5.0

AmpPower = Literal["active", "off"]


class AmplifierClient:
    """
    Client for the amplifier's JSON-RPC style audio control API.

    The remote answers HTTP 200 even when the call failed at application level,
    so only a non-2xx status is reported as an error here. Bodies of 2xx
    responses are returned untouched and never inspected for error fields.
    """

    def __init__(self, host: str, *, port: int = AMP_API_PORT, timeout: float = AMP_TIMEOUT,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.host = host
        self.port = port
        if not host:
            log.error("Amplifier host not set, amplifier commands will fail")
        self.http = httpx.AsyncClient(
            timeout=timeout,
            headers={"Accept": "application/json"},
            transport=transport,
        )

    @property
    def configured(self) -> bool:
        return bool(self.host)

    @property
    def base_url(self) -> str:
        return f"http://{self.host}:{self.port}/sony"

    async def aclose(self):
        await self.http.aclose()

    async def set_power(self, state: AmpPower) -> str:
        payload = {
            "method": "setPowerStatus",
            "version": "1.1",
            "id": 1,
            "params": [{"status": state}],
        }
        body = await self._post("system", payload)
        log.debug("Amp response: %s", body)
        return body

    async def _post(self, service: str, payload: Dict[str, Any]) -> str:
        if not self.configured:
            raise DeviceConnectionError("Amplifier host is not configured")

        url = f"{self.base_url}/{service}"
        log.info("Amp POST %s %s", url, payload.get("method"))
        try:
            r = await self.http.post(url, json=payload)
        except httpx.HTTPError as e:
            raise DeviceConnectionError(f"Amplifier request failed: {e}", {"url": url}) from e

        if r.is_success:
            return r.text

        try:
            log.debug("Amp error body: %s", r.text)
        except Exception:
            log.error("Unable to read body of amp error response")
        raise DeviceProtocolError(f"Amplifier returned HTTP {r.status_code}", context={"url": url})
