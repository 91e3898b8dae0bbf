# contentflow/health/probes.py
import logging
import shutil
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

import httpx

logger = logging.getLogger(__name__)

STATUS_OPERATIONAL = "operational"
STATUS_DEGRADED = "degraded"
STATUS_ERROR = "error"

DEFAULT_PROBE_TIMEOUT = 5.0

DEFAULT_API_ENDPOINTS: Dict[str, str] = {
    "openai": "https://api.openai.com/v1/models",
    "gemini": "https://generativelanguage.googleapis.com/v1/models",
    "deepseek": "https://api.deepseek.com/v1/status",
}


@dataclass
class ProbeResult:
    name: str
    status: str
    critical: bool = False
    status_code: Optional[int] = None
    message: str = ""

    @property
    def operational(self) -> bool:
        return self.status == STATUS_OPERATIONAL


@dataclass
class DiskUsage:
    total: int
    used: int
    free: int

    @property
    def percentage(self) -> float:
        if self.total <= 0:
            return 0.0
        return round(self.used / self.total * 100, 2)


def disk_usage_probe(path: str = "/") -> Callable[[], DiskUsage]:
    def probe() -> DiskUsage:
        usage = shutil.disk_usage(path)
        return DiskUsage(total=usage.total, used=usage.used, free=usage.free)

    return probe


@dataclass
class ApiProbe:
    """GET an external API endpoint and classify the answer."""

    name: str
    endpoint: str
    timeout: float = DEFAULT_PROBE_TIMEOUT
    headers: Dict[str, str] = field(default_factory=dict)
    client: Optional[httpx.Client] = None

    def __call__(self) -> ProbeResult:
        try:
            if self.client is not None:
                resp = self.client.get(self.endpoint, headers=self.headers, timeout=self.timeout)
            else:
                resp = httpx.get(self.endpoint, headers=self.headers, timeout=self.timeout)
        except httpx.HTTPError as e:
            logger.warning(f"API probe {self.name} failed: {e}")
            return ProbeResult(self.name, STATUS_ERROR, critical=True, message=str(e))

        if resp.status_code != 200:
            return ProbeResult(
                self.name,
                STATUS_DEGRADED,
                critical=resp.status_code >= 500,
                status_code=resp.status_code,
                message=f"Unexpected response code: {resp.status_code}",
            )
        return ProbeResult(self.name, STATUS_OPERATIONAL, status_code=resp.status_code)


def default_api_probes(
    timeout: float = DEFAULT_PROBE_TIMEOUT,
    api_keys: Optional[Dict[str, str]] = None,
    client: Optional[httpx.Client] = None,
) -> List[ApiProbe]:
    api_keys = api_keys or {}
    probes = []
    for name, endpoint in DEFAULT_API_ENDPOINTS.items():
        headers = {}
        key = api_keys.get(name)
        if key:
            headers["Authorization"] = f"Bearer {key}"
        probes.append(ApiProbe(name, endpoint, timeout=timeout, headers=headers, client=client))
    return probes
