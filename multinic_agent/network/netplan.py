"""Netplan document generation and file placement.

``NetplanGenerator`` turns the ordered interface records of one node into a
netplan document. ``NetplanWriter`` puts that document on disk as
``99-multinic-<node>.yaml``, keeping a timestamped copy of the previous file.

Address policy: the host address is the network address plus a fixed offset
(10 by default) and the gateway is the network address plus 1. This is a
deterministic placeholder allocator; two nodes on the same subnet receive the
same address. Replace it with an externally supplied address or a checked
allocator before relying on it for more than one host per subnet.
"""

from __future__ import annotations

import ipaddress
import os
import shutil
import tempfile
import time
from pathlib import Path
from typing import Callable, NamedTuple, Sequence

import yaml

from multinic_agent.context import AgentContext
from multinic_agent.errors import NetplanWriteError
from multinic_agent.models import (
    EthernetSpec,
    InterfaceRecord,
    MatchSpec,
    NameserverSpec,
    NetplanDocument,
    NetworkSection,
    RouteSpec,
)

FILE_PREFIX = "99-multinic-"
FILE_MODE = 0o600
BACKUP_MODE = 0o644
BACKUP_DIR_MODE = 0o755

MANAGEMENT_MARKERS = ("mgmt", "management")

IPNetwork = ipaddress.IPv4Network | ipaddress.IPv6Network
IPAddress = ipaddress.IPv4Address | ipaddress.IPv6Address


def netplan_filename(node_name: str) -> str:
    """File name of the generated netplan document for a node."""
    return f"{FILE_PREFIX}{node_name}.yaml"


def interface_name(position: int) -> str:
    """Synthetic interface name for the record at 1-based ``position``."""
    return f"eth{position}"


def is_management_subnet(subnet_name: str) -> bool:
    lowered = subnet_name.lower()
    return any(marker in lowered for marker in MANAGEMENT_MARKERS)


def offset_address(network: IPNetwork, offset: int) -> IPAddress:
    """Network address plus ``offset``.

    Raises:
        ValueError: If the result is past the end of the address space
    """
    return network.network_address + offset


def render_yaml(document: NetplanDocument) -> str:
    """Serialize a document; identical documents give identical text."""
    return yaml.safe_dump(document.to_dict(), default_flow_style=False, sort_keys=False)


class _Candidate(NamedTuple):
    position: int
    record: InterfaceRecord
    network: IPNetwork
    host: IPAddress | None
    gateway: IPAddress | None


class NetplanGenerator:
    """Build a netplan document from ordered interface records."""

    def __init__(self, context: AgentContext):
        self._settings = context.settings.netplan
        self._logger = context.get_logger("netplan.generator")

    def generate(self, node_name: str, records: Sequence[InterfaceRecord]) -> NetplanDocument:
        """Generate the document for a node.

        Records with an unparseable CIDR, or whose derived host or gateway
        address falls outside the address space, are logged and left out;
        the remaining entries keep their relative order and their positional
        ``ethN`` names.

        Args:
            node_name: Node the document is for (used in log messages)
            records: Desired interfaces in repository order

        Returns:
            NetplanDocument with at most one default route
        """
        candidates: list[_Candidate] = []
        for position, record in enumerate(records, start=1):
            candidate = self._prepare(node_name, position, record)
            if candidate is not None:
                candidates.append(candidate)

        default_position = self._select_default_route(candidates)

        ethernets: dict[str, EthernetSpec] = {}
        for candidate in candidates:
            name = interface_name(candidate.position)
            ethernets[name] = self._build_ethernet(
                name, candidate, with_default_route=candidate.position == default_position
            )

        renderer = self._settings.renderer or None
        return NetplanDocument(
            network=NetworkSection(version=2, renderer=renderer, ethernets=ethernets)
        )

    def _prepare(self, node_name: str, position: int, record: InterfaceRecord) -> _Candidate | None:
        try:
            network = ipaddress.ip_network(record.cidr.strip(), strict=False)
        except (ValueError, AttributeError) as e:
            self._logger.error(
                f"Skipping interface with invalid CIDR {record.cidr!r}: {e}",
                extra={"port_id": record.port_id, "node_name": node_name},
            )
            return None

        if self._settings.address_mode == "dhcp":
            return _Candidate(position, record, network, None, None)

        try:
            host = offset_address(network, self._settings.host_offset)
            gateway = offset_address(network, self._settings.gateway_offset)
        except ValueError as e:
            self._logger.error(
                f"Skipping interface on {network}: cannot derive addresses ({e})",
                extra={"port_id": record.port_id, "node_name": node_name},
            )
            return None

        if host not in network:
            self._logger.warning(
                f"Host address {host} is outside {network} for {interface_name(position)}",
                extra={"port_id": record.port_id},
            )
        return _Candidate(position, record, network, host, gateway)

    def _select_default_route(self, candidates: list[_Candidate]) -> int | None:
        """Position of the interface that carries the default route.

        The first management subnet wins; otherwise the first interface.
        """
        if not candidates:
            return None
        for candidate in candidates:
            if is_management_subnet(candidate.record.subnet_name):
                return candidate.position
        return candidates[0].position

    def _build_ethernet(self, name: str, candidate: _Candidate, with_default_route: bool) -> EthernetSpec:
        record, network = candidate.record, candidate.network
        match = MatchSpec(macaddress=record.mac_address.strip().lower())

        if self._settings.address_mode == "dhcp":
            return EthernetSpec(match=match, set_name=name, dhcp4=True)

        routes = None
        nameservers = None
        if with_default_route:
            default_to = "0.0.0.0/0" if network.version == 4 else "::/0"
            routes = [
                RouteSpec(to=default_to, via=str(candidate.gateway), metric=self._settings.route_metric)
            ]
            if self._settings.nameservers:
                nameservers = NameserverSpec(addresses=list(self._settings.nameservers))
            self._logger.info(
                f"Configured default route for {name} via {candidate.gateway}",
                extra={"subnet_name": record.subnet_name},
            )

        return EthernetSpec(
            match=match,
            set_name=name,
            addresses=[f"{candidate.host}/{network.prefixlen}"],
            routes=routes,
            nameservers=nameservers,
        )


class NetplanWriter:
    """Write generated documents to the netplan directory."""

    def __init__(self, context: AgentContext, clock: Callable[[], float] = time.time):
        self._settings = context.settings.netplan
        self._simulate = context.simulate
        self._logger = context.get_logger("netplan.writer")
        self._clock = clock

    @property
    def config_dir(self) -> Path:
        return Path(self._settings.config_path)

    @property
    def backup_dir(self) -> Path:
        return Path(self._settings.backup_path)

    def path_for(self, node_name: str) -> Path:
        return self.config_dir / netplan_filename(node_name)

    def write(self, node_name: str, document: NetplanDocument) -> Path:
        """Back up any existing file for the node, then write the document.

        In simulate-only mode the content is logged and nothing on disk is
        touched.

        Returns:
            Path of the netplan file

        Raises:
            NetplanWriteError: If the file itself cannot be written
        """
        path = self.path_for(node_name)
        content = render_yaml(document)

        if self._simulate:
            self._logger.info(
                f"DRY RUN: would write netplan file {path}",
                extra={"content": content},
            )
            return path

        self._ensure_backup_dir()
        if path.exists():
            self._backup(path)

        self._atomic_write(path, content)
        self._logger.info(f"Wrote netplan file {path}")
        return path

    def _ensure_backup_dir(self) -> None:
        try:
            self.backup_dir.mkdir(mode=BACKUP_DIR_MODE, parents=True, exist_ok=True)
        except OSError as e:
            self._logger.error(f"Failed to create backup directory {self.backup_dir}: {e}")

    def _backup_path(self, path: Path) -> Path:
        base = self.backup_dir / f"{path.name}.{int(self._clock())}"
        candidate = base
        suffix = 1
        while candidate.exists():
            candidate = base.with_name(f"{base.name}-{suffix}")
            suffix += 1
        return candidate

    def _backup(self, path: Path) -> Path | None:
        backup = self._backup_path(path)
        try:
            shutil.copyfile(path, backup)
            os.chmod(backup, BACKUP_MODE)
        except OSError as e:
            self._logger.warning(f"Failed to back up {path} to {backup}: {e}")
            return None
        self._logger.info(f"Backed up existing netplan file to {backup}")
        return backup

    def _atomic_write(self, path: Path, content: str) -> None:
        # netplan only reads *.yaml, so the temporary name is never picked up
        try:
            fd, tmp_name = tempfile.mkstemp(
                dir=path.parent, prefix=f".{path.name}.", suffix=".tmp"
            )
        except OSError as e:
            raise NetplanWriteError(f"Failed to write netplan file {path}: {e}") from e

        try:
            with os.fdopen(fd, "w") as handle:
                handle.write(content)
                handle.flush()
                os.fsync(handle.fileno())
            os.chmod(tmp_name, FILE_MODE)
            os.replace(tmp_name, path)
        except OSError as e:
            try:
                os.unlink(tmp_name)
            except OSError:
                pass
            raise NetplanWriteError(f"Failed to write netplan file {path}: {e}") from e
