"""Vultr v2 REST client.

Calls are blocking `requests` calls pushed to a worker thread so the event
loop keeps serving progress streams while the provider is slow.
"""
from __future__ import annotations

import asyncio
import base64
import logging
from functools import lru_cache
from typing import Any
from urllib.parse import quote

import requests

from .config import Settings, get_settings
from .errors import ProviderError
from .models import Instance, OSCatalog, OSImage, Plan, Region

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT = 30

KNOWN_WINDOWS_OS_IDS = frozenset(
    {240, 371, 501, 521, 522, 523, 1761, 1762, 1764, 1765, 2514, 2515, 2516, 2517}
)
LINUX_FAMILIES = frozenset(
    {
        "ubuntu", "debian", "centos", "fedora", "rockylinux", "almalinux", "archlinux",
        "opensuse", "alpinelinux", "freebsd", "flatcar", "openbsd", "fedora-coreos",
    }
)

WINDOWS_REMOTE_ENABLE_SCRIPT = r"""#ps1
# Let the local Administrator use WinRM with Negotiate auth
Set-ItemProperty -Path HKLM:\SOFTWARE\Microsoft\Windows\CurrentVersion\Policies\System -Name LocalAccountTokenFilterPolicy -Value 1 -Type DWord -Force
Set-ItemProperty -Path HKLM:\SOFTWARE\Microsoft\Windows\CurrentVersion\Policies\System -Name FilterAdministratorToken -Value 0 -Type DWord -Force
winrm quickconfig -force 2>&1 | Out-Null
Restart-Service WinRM -Force -ErrorAction SilentlyContinue
"""


def _instance_from_api(raw: dict[str, Any]) -> Instance:
    return Instance(
        id=raw["id"],
        label=raw.get("label") or "",
        hostname=raw.get("hostname") or "",
        os=raw.get("os") or "",
        os_id=raw.get("os_id"),
        plan=raw.get("plan") or "",
        region=raw.get("region") or "",
        ip=raw.get("main_ip") or "0.0.0.0",
        status=raw.get("status") or "",
        power_status=raw.get("power_status") or "",
        server_status=raw.get("server_status") or "",
        ram=raw.get("ram"),
        disk=raw.get("disk"),
        vcpu_count=raw.get("vcpu_count"),
        default_password=raw.get("default_password") or None,
        date_created=raw.get("date_created"),
        tags=raw.get("tags") or [],
    )


def _format_ram(ram_mb: int) -> str:
    return f"{ram_mb / 1024:g} GB" if ram_mb >= 1024 else f"{ram_mb} MB"


def is_windows_os(os_id: int, catalog: OSCatalog | None = None) -> bool:
    if os_id in KNOWN_WINDOWS_OS_IDS:
        return True
    if catalog is not None:
        return any(image.id == os_id for image in catalog.windows)
    return False


def generate_rdp_content(ip: str, username: str = "Administrator") -> str:
    return "\r\n".join(
        [
            f"full address:s:{ip}",
            "prompt for credentials:i:1",
            f"username:s:{username}",
            "screen mode id:i:2",
            "use multimon:i:0",
            "desktopwidth:i:1920",
            "desktopheight:i:1080",
            "session bpp:i:32",
            "compression:i:1",
            "keyboardhook:i:2",
            "audiocapturemode:i:0",
            "videoplaybackmode:i:1",
            "connection type:i:7",
            "networkautodetect:i:1",
            "bandwidthautodetect:i:1",
            "displayconnectionbar:i:1",
            "disable wallpaper:i:0",
            "allow font smoothing:i:1",
            "allow desktop composition:i:1",
            "redirectclipboard:i:1",
            "redirectprinters:i:0",
            "autoreconnection enabled:i:1",
            "authentication level:i:2",
            "negotiate security layer:i:1",
        ]
    )


class VultrClient:
    """Thin async facade over the Vultr v2 API with in-process catalog caches."""

    def __init__(self, api_key: str, base_url: str = "https://api.vultr.com/v2", session: requests.Session | None = None):
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._session = session or requests.Session()
        self._plans: list[Plan] | None = None
        self._os_catalog: OSCatalog | None = None
        self._regions: list[Region] | None = None

    @classmethod
    def from_settings(cls, settings: Settings) -> "VultrClient":
        return cls(settings.vultr_api_key, settings.vultr_base_url)

    @property
    def cached_os_catalog(self) -> OSCatalog | None:
        return self._os_catalog

    def _request(self, method: str, endpoint: str, payload: dict | None = None) -> dict[str, Any] | None:
        try:
            response = self._session.request(
                method,
                f"{self._base_url}{endpoint}",
                json=payload,
                headers={"Authorization": f"Bearer {self._api_key}"},
                timeout=REQUEST_TIMEOUT,
            )
        except requests.RequestException as e:
            raise ProviderError(f"Vultr API unreachable: {e}") from e

        if response.status_code == 204:
            return None
        try:
            data = response.json()
        except ValueError:
            data = {}
        if not response.ok:
            message = data.get("error") or data.get("message") or f"HTTP {response.status_code}"
            raise ProviderError(message, status_code=response.status_code)
        return data

    async def _call(self, method: str, endpoint: str, payload: dict | None = None) -> dict[str, Any] | None:
        return await asyncio.to_thread(self._request, method, endpoint, payload)

    # --- Catalogs ---

    async def get_plans(self) -> list[Plan]:
        if self._plans is None:
            data = await self._call("GET", "/plans?per_page=500")
            plans = [
                Plan(
                    id=p["id"],
                    vcpu=p.get("vcpu_count", 0),
                    ram=p.get("ram", 0),
                    disk=p.get("disk", 0),
                    bandwidth=p.get("bandwidth", 0),
                    monthly_cost=p.get("monthly_cost", 0),
                    type=p.get("type", ""),
                    locations=p.get("locations", []),
                    desc=(
                        f"{p.get('vcpu_count', 0)} vCPU, {_format_ram(p.get('ram', 0))} RAM, "
                        f"{p.get('disk', 0)} GB SSD - ${p.get('monthly_cost', 0)}/month"
                    ),
                )
                for p in data["plans"]
                if p.get("type") == "vc2" and p.get("locations")
            ]
            self._plans = sorted(plans, key=lambda plan: plan.monthly_cost)
        return self._plans

    async def get_os_catalog(self) -> OSCatalog:
        if self._os_catalog is None:
            data = await self._call("GET", "/os?per_page=500")
            catalog = OSCatalog()
            for raw in data["os"]:
                image = OSImage(id=raw["id"], name=raw["name"], arch=raw.get("arch", ""), family=raw.get("family", ""))
                if image.family == "windows":
                    catalog.windows.append(image)
                elif image.family in LINUX_FAMILIES:
                    catalog.linux.append(image)
            self._os_catalog = catalog
        return self._os_catalog

    async def get_regions(self) -> list[Region]:
        if self._regions is None:
            data = await self._call("GET", "/regions?per_page=500")
            regions = [
                Region(
                    id=r["id"],
                    city=r.get("city", ""),
                    country=r.get("country", ""),
                    continent=r.get("continent", ""),
                    desc=f"{r.get('city', '')}, {r.get('country', '')} ({r['id']})",
                )
                for r in data["regions"]
            ]
            self._regions = sorted(regions, key=lambda region: region.desc)
        return self._regions

    async def get_account(self) -> dict[str, Any]:
        data = await self._call("GET", "/account")
        return data["account"]

    # --- Startup scripts ---

    async def create_startup_script(self, name: str, script: str) -> str:
        data = await self._call(
            "POST",
            "/startup-scripts",
            {"name": name, "type": "boot", "script": base64.b64encode(script.encode()).decode()},
        )
        return data["startup_script"]["id"]

    async def delete_startup_script(self, script_id: str) -> None:
        await self._call("DELETE", f"/startup-scripts/{script_id}")

    # --- Instances ---

    async def create_instance(
        self,
        *,
        label: str,
        region: str,
        plan: str,
        os_id: int,
        tag: str | None = None,
        script_id: str | None = None,
    ) -> Instance:
        """Create an instance. The returned `default_password` is only available here."""
        body: dict[str, Any] = {
            "region": region,
            "plan": plan,
            "os_id": os_id,
            "label": label,
            "hostname": label,
            "backups": "disabled",
            "enable_ipv6": False,
            "tags": [tag] if tag else [],
        }
        if script_id:
            body["script_id"] = script_id
        data = await self._call("POST", "/instances", body)
        return _instance_from_api(data["instance"])

    async def list_instances(self, tag: str | None = None) -> list[Instance]:
        endpoint = "/instances?per_page=100"
        if tag:
            endpoint += f"&tag={quote(tag)}"
        data = await self._call("GET", endpoint)
        return [_instance_from_api(raw) for raw in data.get("instances") or []]

    async def get_instance(self, instance_id: str) -> Instance:
        data = await self._call("GET", f"/instances/{instance_id}")
        return _instance_from_api(data["instance"])

    async def start_instance(self, instance_id: str) -> None:
        await self._call("POST", f"/instances/{instance_id}/start")

    async def stop_instance(self, instance_id: str) -> None:
        await self._call("POST", f"/instances/{instance_id}/halt")

    async def reboot_instance(self, instance_id: str) -> None:
        await self._call("POST", f"/instances/{instance_id}/reboot")

    async def delete_instance(self, instance_id: str) -> None:
        await self._call("DELETE", f"/instances/{instance_id}")


@lru_cache(maxsize=1)
def get_vultr_client() -> VultrClient:
    return VultrClient.from_settings(get_settings())
