from __future__ import annotations
import asyncio
import ipaddress
import socket
import urllib.parse
from dataclasses import dataclass
from typing import Tuple

IpAddress = ipaddress.IPv4Address | ipaddress.IPv6Address


class UrlSafetyError(RuntimeError):
    pass


def has_http_scheme(url: str) -> bool:
    return url.startswith("http://") or url.startswith("https://")


def is_ip_literal(host: str) -> bool:
    h = host.strip("[]")
    try:
        ipaddress.ip_address(h)
        return True
    except ValueError:
        return False


def is_localhost(host: str) -> bool:
    h = host.lower().strip("[]")
    return h in {"localhost", "localhost.localdomain"} or h.endswith(".localhost")


@dataclass(frozen=True)
class UrlSafetyPolicy:
    # Falseにすると以下のチェックを全部スキップ（社内向けなど）
    enabled: bool = True
    allowed_schemes: Tuple[str, ...] = ("http", "https")
    block_private_ips: bool = True
    block_link_local: bool = True
    block_loopback: bool = True
    block_multicast: bool = True
    block_reserved: bool = True


def ip_is_blocked(ip: IpAddress, policy: UrlSafetyPolicy) -> bool:
    if policy.block_loopback and ip.is_loopback:
        return True
    if policy.block_private_ips and ip.is_private:
        return True
    if policy.block_link_local and ip.is_link_local:
        return True
    if policy.block_multicast and ip.is_multicast:
        return True
    if policy.block_reserved and ip.is_reserved:
        return True
    # “unspecified” も実質危険
    return ip.is_unspecified


async def _resolve_host_ips(host: str) -> list[IpAddress]:
    # asyncio.getaddrinfo でDNS解決（テストでモックしやすい）
    infos = await asyncio.get_running_loop().getaddrinfo(
        host, None, type=socket.SOCK_STREAM
    )
    ips: list[IpAddress] = []
    for fam, _, _, _, sockaddr in infos:
        if fam in (socket.AF_INET, socket.AF_INET6):
            ips.append(ipaddress.ip_address(sockaddr[0]))
    return ips


async def validate_url_safe(url: str, policy: UrlSafetyPolicy) -> None:
    """
    SSRF対策。localhost / IP直打ち / 解決後のprivate等を拒否する。
    """
    if not policy.enabled:
        return

    u = urllib.parse.urlsplit(url)
    scheme = (u.scheme or "").lower()
    if scheme not in policy.allowed_schemes:
        raise UrlSafetyError(f"scheme not allowed: {scheme}")

    host = u.hostname or ""
    if not host:
        raise UrlSafetyError("missing host")

    if is_localhost(host):
        raise UrlSafetyError("localhost is blocked")

    if is_ip_literal(host):
        raise UrlSafetyError("IP literal is blocked")

    try:
        ips = await _resolve_host_ips(host)
    except socket.gaierror as e:
        raise UrlSafetyError(f"DNS resolution failed: {e}") from e
    if not ips:
        raise UrlSafetyError("DNS resolution failed")

    for ip in ips:
        if ip_is_blocked(ip, policy):
            raise UrlSafetyError(f"resolved IP is blocked: {ip}")
