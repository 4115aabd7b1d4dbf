"""Resolve who is calling: client IP, parsed user agent, and geolocation.

Geolocation uses a MaxMind GeoIP2 City database. The reader is opened once in
the application lifespan and handed to requests through a dependency.
"""

import logging
from dataclasses import dataclass

import geoip2.database
import geoip2.errors
from starlette.requests import Request
from user_agents import parse as parse_user_agent

logger = logging.getLogger("app.client_info")

UNKNOWN_DEVICE = "Unknown"


@dataclass(frozen=True)
class DeviceInfo:
    device: str
    browser: str
    os: str
    is_mobile: bool


@dataclass(frozen=True)
class GeoLocation:
    country: str | None
    region: str | None = None
    city: str | None = None
    latitude: float | None = None
    longitude: float | None = None


class GeoLocator:
    """Look up IP addresses in a GeoIP2 City database.

    Constructed without a path it resolves nothing, so deployments without a
    database still create sessions (with no location).
    """

    def __init__(self, db_path: str | None = None):
        self._reader: geoip2.database.Reader | None = None
        if db_path:
            self._reader = geoip2.database.Reader(db_path)
            logger.info("GeoIP database loaded from %s", db_path)

    def lookup(self, ip_address: str | None) -> GeoLocation | None:
        if self._reader is None or not ip_address:
            return None
        try:
            response = self._reader.city(ip_address)
        except (geoip2.errors.AddressNotFoundError, ValueError):
            return None
        return GeoLocation(
            country=response.country.iso_code,
            region=response.subdivisions.most_specific.iso_code,
            city=response.city.name,
            latitude=response.location.latitude,
            longitude=response.location.longitude,
        )

    def close(self) -> None:
        if self._reader is not None:
            self._reader.close()
            self._reader = None


def describe_user_agent(user_agent: str | None) -> DeviceInfo:
    """Parse a User-Agent header into device, browser and OS labels."""
    if not user_agent:
        return DeviceInfo(device=UNKNOWN_DEVICE, browser="", os="", is_mobile=False)

    ua = parse_user_agent(user_agent)
    if ua.device.brand:
        device = f"{ua.device.brand} {ua.device.model or ''}".strip()
    else:
        device = UNKNOWN_DEVICE
    browser = f"{ua.browser.family} {ua.browser.version_string}".strip()
    os_label = f"{ua.os.family} {ua.os.version_string}".strip()
    return DeviceInfo(device=device, browser=browser, os=os_label, is_mobile=ua.is_mobile)


def client_ip(request: Request, *, trust_forwarded_for: bool = True) -> str | None:
    """Client address: first X-Forwarded-For hop when trusted, else the socket peer."""
    if trust_forwarded_for:
        forwarded = request.headers.get("X-Forwarded-For")
        if forwarded:
            first = forwarded.split(",")[0].strip()
            if first:
                return first
    return request.client.host if request.client else None


@dataclass(frozen=True)
class ClientContext:
    ip_address: str | None
    user_agent: str | None
    device_info: DeviceInfo
    location: GeoLocation | None


def resolve_client(
    request: Request, locator: GeoLocator, *, trust_forwarded_for: bool = True
) -> ClientContext:
    ip = client_ip(request, trust_forwarded_for=trust_forwarded_for)
    user_agent = request.headers.get("User-Agent")
    return ClientContext(
        ip_address=ip,
        user_agent=user_agent,
        device_info=describe_user_agent(user_agent),
        location=locator.lookup(ip),
    )
