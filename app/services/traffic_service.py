"""Traffic obfuscation parameters for anonymous personas.

These are stateless transforms over a persona's stored configuration. They do
not select real relays or provide unlinkability; a routing path is a list of
random hop descriptors a client or gateway may use.
"""

import random
import secrets
from dataclasses import asdict, dataclass

from app.models.persona import (
    DEFAULT_MAX_DELAY_MS,
    DEFAULT_MIN_DELAY_MS,
    AnonymousPersona,
    clamp_proxy_hops,
)

HOP_TTL_SECONDS = 300

COMMON_USER_AGENTS = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/91.0.4472.124 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/14.1.1 Safari/605.1.15",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:89.0) Gecko/20100101 Firefox/89.0",
)

BROWSER_HEADERS = {
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.5",
    "Accept-Encoding": "gzip, deflate, br",
    "Connection": "keep-alive",
    "Upgrade-Insecure-Requests": "1",
}


@dataclass(frozen=True)
class RoutingHop:
    node_id: str
    encryption_key: str
    ttl: int = HOP_TTL_SECONDS


@dataclass(frozen=True)
class RoutingDescriptor:
    hops: tuple[RoutingHop, ...]

    def as_list(self) -> list[dict]:
        return [asdict(hop) for hop in self.hops]


@dataclass(frozen=True)
class DelayParameters:
    min: int
    max: int


def generate_routing_path(persona: AnonymousPersona) -> RoutingDescriptor | None:
    """One random hop per configured proxy hop, or None when multi-path routing is off."""
    mixing = persona.mixing_parameters or {}
    if not mixing.get("multi_path_routing"):
        return None

    hops = mixing.get("proxy_hops")
    hop_count = clamp_proxy_hops(hops if isinstance(hops, int) else 0)
    return RoutingDescriptor(
        hops=tuple(
            RoutingHop(node_id=secrets.token_hex(8), encryption_key=secrets.token_hex(16))
            for _ in range(hop_count)
        )
    )


def get_delay_parameters(persona: AnonymousPersona) -> DelayParameters | None:
    """Artificial delay bounds in ms, or None when timing noise is off."""
    mixing = persona.mixing_parameters or {}
    if not mixing.get("timing_noise"):
        return None

    delay = mixing.get("random_delay") or {}
    return DelayParameters(
        min=delay.get("min") or DEFAULT_MIN_DELAY_MS,
        max=delay.get("max") or DEFAULT_MAX_DELAY_MS,
    )


def generate_headers(mimic_browsers: bool, rng: random.Random | None = None) -> dict[str, str]:
    """Randomized request headers.

    Mimicking produces a plausible browser header set with a catalog
    User-Agent; otherwise three opaque random identifiers are returned.
    """
    rng = rng or random.SystemRandom()
    if not mimic_browsers:
        return {
            "X-Request-ID": secrets.token_hex(16),
            "X-Routing-ID": secrets.token_hex(8),
            "X-Session-Variation": str(rng.randrange(100)),
        }

    headers = {"User-Agent": rng.choice(COMMON_USER_AGENTS)}
    headers.update(BROWSER_HEADERS)
    if rng.random() < 0.5:
        headers["DNT"] = "1"
    headers["Cache-Control"] = "max-age=0" if rng.random() < 0.5 else "no-cache"
    return headers
