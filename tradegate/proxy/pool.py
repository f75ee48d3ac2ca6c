"""Registry of known egress proxies.

Proxies are registered explicitly or imported from a delimited proxy list
export (header row, then ``address;port;kind`` rows). Import is tolerant:
rows that cannot be parsed or whose host does not resolve are logged and
skipped, never fatal.
"""

from __future__ import annotations

import asyncio
import logging
import socket
import threading
from pathlib import Path

from tradegate.proxy.types import ProxyEndpoint, ProxyKind

logger = logging.getLogger(__name__)

_KIND_ALIASES: dict[str, ProxyKind] = {
    "socks4": ProxyKind.SOCKS4,
    "socks5": ProxyKind.SOCKS5,
    "transparent": ProxyKind.HTTP,
    "http": ProxyKind.HTTP,
    "https": ProxyKind.HTTP,
}


def parse_kind(text: str) -> ProxyKind | None:
    return _KIND_ALIASES.get(text.strip().lower())


class ProxyPool:
    """Thread-safe set of proxies keyed by socket address, in registration order."""

    def __init__(self) -> None:
        self._proxies: dict[tuple[str, int], ProxyEndpoint] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._proxies)

    def __contains__(self, proxy: object) -> bool:
        return isinstance(proxy, ProxyEndpoint) and proxy.address in self._proxies

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def add(self, proxy: ProxyEndpoint) -> ProxyEndpoint:
        """Register *proxy*; returns the already-known instance for a duplicate address."""
        with self._lock:
            existing = self._proxies.get(proxy.address)
            if existing is not None:
                return existing
            self._proxies[proxy.address] = proxy
        logger.debug("Registered proxy %s", proxy.url)
        return proxy

    def remove(self, proxy: ProxyEndpoint) -> bool:
        with self._lock:
            removed = self._proxies.pop(proxy.address, None)
        if removed is not None:
            logger.info("Deregistered proxy %s", removed.url)
        return removed is not None

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def find(self, host: str, port: int | None = None) -> ProxyEndpoint | None:
        with self._lock:
            if port is not None:
                return self._proxies.get((host, port))
            for proxy in self._proxies.values():
                if proxy.host == host:
                    return proxy
        return None

    def all(self) -> list[ProxyEndpoint]:
        with self._lock:
            return list(self._proxies.values())

    def active(self) -> list[ProxyEndpoint]:
        return [p for p in self.all() if p.active]

    def get_stats(self) -> dict:
        """Return proxy pool statistics for the health endpoint."""
        proxies = self.all()
        active = sum(1 for p in proxies if p.active)
        return {
            "total": len(proxies),
            "active": active,
            "inactive": len(proxies) - active,
            "proxies": [
                {
                    "url": p.url,
                    "kind": p.kind.value,
                    "active": p.active,
                    "rating": p.rating,
                }
                for p in proxies
            ],
        }

    # ------------------------------------------------------------------
    # Import
    # ------------------------------------------------------------------

    async def import_csv(
        self,
        path: str | Path,
        delimiter: str = ";",
        *,
        resolve: bool = True,
    ) -> list[ProxyEndpoint]:
        """Import a proxy list export and return the newly registered proxies.

        The first line is a column header and is skipped. Each following row
        must hold at least ``address``, ``port`` and ``kind``; further columns
        are ignored. With *resolve* set, hosts that do not resolve are skipped.
        """
        file_path = Path(path)
        try:
            lines = file_path.read_text(encoding="utf-8").splitlines()
        except OSError as exc:
            logger.error("Cannot read proxy list %s: %s", file_path, exc)
            return []

        imported: list[ProxyEndpoint] = []
        for line_number, line in enumerate(lines[1:], start=2):
            if not line.strip():
                continue
            candidate = self._parse_row(line, delimiter, line_number)
            if candidate is None:
                continue
            if resolve and not await _resolves(candidate.host):
                logger.info(
                    "Cannot resolve proxy host '%s' (line %d), skipping",
                    candidate.host,
                    line_number,
                )
                continue
            if candidate in self:
                continue
            imported.append(self.add(candidate))

        logger.info("Imported %d proxies from %s", len(imported), file_path)
        return imported

    @staticmethod
    def _parse_row(line: str, delimiter: str, line_number: int) -> ProxyEndpoint | None:
        fields = [f.strip() for f in line.split(delimiter)]
        if len(fields) < 3 or not fields[0]:
            logger.warning("Malformed proxy row at line %d, skipping", line_number)
            return None

        try:
            port = int(fields[1])
        except ValueError:
            logger.warning("Invalid proxy port '%s' at line %d, skipping", fields[1], line_number)
            return None
        if not 0 < port < 65536:
            logger.warning("Proxy port %d out of range at line %d, skipping", port, line_number)
            return None

        kind = parse_kind(fields[2])
        if kind is None:
            logger.warning("Unsupported proxy kind '%s' at line %d, skipping", fields[2], line_number)
            return None

        return ProxyEndpoint(host=fields[0], port=port, kind=kind)


async def _resolves(host: str) -> bool:
    loop = asyncio.get_running_loop()
    try:
        await loop.getaddrinfo(host, None, type=socket.SOCK_STREAM)
    except (socket.gaierror, UnicodeError):
        return False
    return True
