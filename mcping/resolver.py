# mcping - A Minecraft server list ping client
# Copyright (C) 2016-2023 Lloyd Dilley, Felix Ern (MindSolve)
# http://www.dilley.me/
#
# Secondary optimization and customization are carried out by @molanp.
#
# This program is free software; you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation; either version 3 of the License, or
# (at your option) any later version.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE. See the
# GNU General Public License for more details.
#
# You should have received a copy of the GNU General Public License along
# with this program; if not, write to the Free Software Foundation, Inc.,
# 51 Franklin Street, Fifth Floor, Boston, MA 02110-1301 USA.
"""
Turning a user supplied address into connectable targets.

Java edition servers may redirect clients with a `_minecraft._tcp` SRV record when
no port is given; Bedrock edition never does. A missing or broken SRV record is not
an error, the literal host and the default port are used instead.
"""
import asyncio
import ipaddress
import logging
import re
import socket
from typing import Iterable, NamedTuple

import dns.asyncresolver
import dns.exception
import dns.resolver
import idna

from .errors import ResolutionFailed

log = logging.getLogger("mcping.resolver")

DEFAULT_JAVA_PORT = 25565
"""default TCP port for Java edition servers"""
DEFAULT_BEDROCK_PORT = 19132
"""default UDP port for Bedrock/MCPE servers"""

_PORT_PATTERN = re.compile(r"\d{1,5}", re.ASCII)


class Address(NamedTuple):
    """A parsed user address."""

    host: str
    port: int
    explicit_port: bool
    """whether the port was part of the address or filled in from the default"""


class ResolvedTarget(NamedTuple):
    """A concrete endpoint a socket can connect to."""

    host: str
    """host name to announce to the server (the SRV target when SRV was used)"""
    ip: str
    port: int
    family: socket.AddressFamily
    sockaddr: tuple
    """address tuple as returned by getaddrinfo, ready for `connect()`"""
    srv: bool = False
    """whether the endpoint comes from a SRV record"""


def parse_address(address: str, default_port: int) -> Address:
    """
    Split `host`, `host:port`, `[ipv6]`, `[ipv6]:port` or a bare IPv6 literal.

    :param address: The address as typed by the user
    :param default_port: Port to use when the address has none
    """
    address = address.strip()
    port: str | None = None

    if address.startswith("["):
        host, closed, rest = address[1:].partition("]")
        if not closed or (rest and not rest.startswith(":")):
            raise ResolutionFailed(f"invalid address: {address!r}")
        if rest:
            port = rest[1:]
    elif address.count(":") == 1:
        host, port = address.split(":")
    else:
        # plain host, or an IPv6 literal without brackets (and thus without port)
        host = address

    if not host:
        raise ResolutionFailed(f"invalid address: {address!r}")

    if port is None:
        return Address(host, default_port, False)

    if not _PORT_PATTERN.fullmatch(port) or int(port) > 65535:
        raise ResolutionFailed(f"invalid port in address: {address!r}")

    return Address(host, int(port), True)


def is_ip_address(host: str) -> bool:
    try:
        ipaddress.ip_address(host)
    except ValueError:
        return False
    return True


def normalize_host(host: str) -> str:
    """Encode an (internationalized) host name to its ASCII form, leaving IP literals alone."""
    if is_ip_address(host):
        return host
    try:
        return idna.encode(host.rstrip("."), uts46=True).decode("ascii")
    except idna.IDNAError as e:
        raise ResolutionFailed(f"invalid host name {host!r}: {e}") from e


def srv_query_name(host: str) -> str:
    return f"_minecraft._tcp.{host}"


def _pick_srv_record(answer: Iterable) -> tuple[str, int] | None:
    # lowest priority first, heaviest weight first within a priority
    for rdata in sorted(answer, key=lambda r: (r.priority, -r.weight)):
        target = str(rdata.target).rstrip(".")
        # a target of "." means the service is explicitly not available
        if target:
            return target, rdata.port
    return None


def _log_srv_fallback(host: str, error: Exception) -> None:
    log.debug(
        "SRV lookup for %s failed (%s), falling back to %s:%d",
        srv_query_name(host),
        error.__class__.__name__,
        host,
        DEFAULT_JAVA_PORT,
    )


def lookup_srv(host: str, timeout: float | None = None) -> tuple[str, int] | None:
    """
    Look up the Minecraft SRV record of `host`.

    Returns `(target, port)` or None when there is no usable record. DNS errors of
    any kind count as "no record".
    """
    try:
        resolver = dns.resolver.Resolver()
        answer = resolver.resolve(srv_query_name(host), "SRV", lifetime=timeout)
    except dns.exception.DNSException as e:
        _log_srv_fallback(host, e)
        return None
    return _pick_srv_record(answer)


async def lookup_srv_async(host: str, timeout: float | None = None) -> tuple[str, int] | None:
    """Same as `lookup_srv()`, using the asyncio resolver."""
    try:
        resolver = dns.asyncresolver.Resolver()
        answer = await resolver.resolve(srv_query_name(host), "SRV", lifetime=timeout)
    except dns.exception.DNSException as e:
        _log_srv_fallback(host, e)
        return None
    return _pick_srv_record(answer)


def _build_targets(host: str, port: int, srv: bool, infos: list) -> list[ResolvedTarget]:
    targets: list[ResolvedTarget] = []
    for family, _, _, _, sockaddr in infos:
        if any(target.sockaddr == sockaddr for target in targets):
            continue
        targets.append(ResolvedTarget(host, sockaddr[0], port, family, sockaddr, srv))

    if not targets:
        raise ResolutionFailed(f"{host!r} did not resolve to any address")
    return targets


def _resolution_failed(host: str, error: Exception) -> ResolutionFailed:
    return ResolutionFailed(f"could not resolve {host!r}: {error}")


def _getaddrinfo(host: str, port: int, socktype: int) -> list:
    try:
        return socket.getaddrinfo(host, port, type=socktype)
    except (OSError, UnicodeError) as e:
        raise _resolution_failed(host, e) from e


async def _getaddrinfo_async(host: str, port: int, socktype: int) -> list:
    loop = asyncio.get_running_loop()
    try:
        return await loop.getaddrinfo(host, port, type=socktype)
    except (OSError, UnicodeError) as e:
        raise _resolution_failed(host, e) from e


def _java_needs_srv(address: Address, host: str) -> bool:
    return not address.explicit_port and not is_ip_address(host)


def resolve_java(address: str, timeout: float | None = None) -> list[ResolvedTarget]:
    """
    Resolve a Java edition server address.

    Without an explicit port, a `_minecraft._tcp` SRV record is tried first.

    :param address: Hostname or IP address, optionally followed by `:port`
    :param timeout: Upper bound in seconds for the SRV query
    :return: Candidate targets, in resolver order
    """
    parsed = parse_address(address, DEFAULT_JAVA_PORT)
    host, port, srv = normalize_host(parsed.host), parsed.port, False

    if _java_needs_srv(parsed, host):
        record = lookup_srv(host, timeout)
        if record is not None:
            (host, port), srv = record, True

    return _build_targets(host, port, srv, _getaddrinfo(host, port, socket.SOCK_STREAM))


async def resolve_java_async(address: str, timeout: float | None = None) -> list[ResolvedTarget]:
    """asyncio flavour of `resolve_java()`."""
    parsed = parse_address(address, DEFAULT_JAVA_PORT)
    host, port, srv = normalize_host(parsed.host), parsed.port, False

    if _java_needs_srv(parsed, host):
        record = await lookup_srv_async(host, timeout)
        if record is not None:
            (host, port), srv = record, True

    infos = await _getaddrinfo_async(host, port, socket.SOCK_STREAM)
    return _build_targets(host, port, srv, infos)


def resolve_bedrock(address: str) -> list[ResolvedTarget]:
    """Resolve a Bedrock edition server address. Bedrock has no SRV indirection."""
    parsed = parse_address(address, DEFAULT_BEDROCK_PORT)
    host = normalize_host(parsed.host)
    return _build_targets(host, parsed.port, False, _getaddrinfo(host, parsed.port, socket.SOCK_DGRAM))


async def resolve_bedrock_async(address: str) -> list[ResolvedTarget]:
    """asyncio flavour of `resolve_bedrock()`."""
    parsed = parse_address(address, DEFAULT_BEDROCK_PORT)
    host = normalize_host(parsed.host)
    infos = await _getaddrinfo_async(host, parsed.port, socket.SOCK_DGRAM)
    return _build_targets(host, parsed.port, False, infos)
