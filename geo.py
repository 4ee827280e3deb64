import asyncio
import ipaddress
import logging
import socket
from dataclasses import dataclass
from typing import Mapping
import pycountry
import config

logger = logging.getLogger(config.LOGGER_NAME)

CGNAT_NETWORK = ipaddress.ip_network("100.64.0.0/10")
IPV6_UNIQUE_LOCAL = ipaddress.ip_network("fc00::/7")
IPV6_LINK_LOCAL = ipaddress.ip_network("fe80::/10")


@dataclass(frozen=True)
class Lookup:
    """Either a looked-up value or the fallback it degraded to. Enrichment never raises, it returns one of these."""
    value: str
    degraded: bool = False

    @classmethod
    def fallback(cls, value: str) -> "Lookup":
        return cls(value, degraded=True)


@dataclass(frozen=True)
class Enrichment:
    country_code: str
    country_name: Lookup
    reverse_dns: Lookup

    def as_dict(self):
        return {"countryCode": self.country_code, "countryName": self.country_name.value, "rDNS": self.reverse_dns.value}


def country_code_from_headers(headers: Mapping[str, str]) -> str:
    for name in config.GEO_HEADERS:
        if (value := (headers.get(name) or "").strip()):
            return value[:2].upper()
    return ""


def country_name(code: str) -> Lookup:
    if not code: return Lookup.fallback(config.UNKNOWN_COUNTRY)
    try:
        country = pycountry.countries.get(alpha_2=code)
    except (KeyError, LookupError) as e:
        logger.info(f"[GEO] No country name for {code!r}: {e}")
        country = None
    if country is None: return Lookup.fallback(config.UNKNOWN_COUNTRY)
    return Lookup(getattr(country, "common_name", None) or country.name)


def is_public_ip(ip: str) -> bool:
    """Loopback, RFC1918, link-local, CGNAT and IPv6 ULA/link-local are all non-public. Garbage is non-public too."""
    try:
        addr = ipaddress.ip_address(ip.strip().strip("[]"))
    except ValueError:
        return False
    if isinstance(addr, ipaddress.IPv6Address) and addr.ipv4_mapped:
        addr = addr.ipv4_mapped
    if addr.is_loopback or addr.is_link_local or addr.is_private or addr.is_unspecified or addr.is_multicast:
        return False
    if isinstance(addr, ipaddress.IPv4Address):
        return addr not in CGNAT_NETWORK
    return addr not in IPV6_UNIQUE_LOCAL and addr not in IPV6_LINK_LOCAL


async def reverse_dns(ip: str) -> Lookup:
    """Single PTR lookup attempt for public addresses, no retry. Private ranges never touch the network."""
    if not is_public_ip(ip):
        return Lookup.fallback(config.UNRESOLVED)
    try:
        hostname, _aliases, _addrs = await asyncio.to_thread(socket.gethostbyaddr, ip.strip().strip("[]"))
    except (OSError, UnicodeError, ValueError) as e:
        logger.info(f"[RDNS] {ip} unresolved: {e}")
        return Lookup.fallback(config.UNRESOLVED)
    if not hostname:
        return Lookup.fallback(config.UNRESOLVED)
    return Lookup(hostname)


async def enrich(client_ip: str, headers: Mapping[str, str]) -> Enrichment:
    code = country_code_from_headers(headers)
    name = country_name(code)
    rdns = await reverse_dns(client_ip)
    logger.info(f"[GEO] {client_ip} -> country={code or '-'} ({name.value}), rdns={rdns.value}")
    return Enrichment(country_code=code, country_name=name, reverse_dns=rdns)
