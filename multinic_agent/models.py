"""Data structures exchanged between the repository and the netplan layer.

``InterfaceRecord`` is one desired interface row as read from the control
plane database. The netplan models describe the generated declarative
document; they serialize to the YAML netplan expects via ``to_dict()``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


@dataclass(frozen=True)
class InterfaceRecord:
    """A desired virtual interface for a node."""

    port_id: str  # unique per cycle, update key for status reports
    mac_address: str
    subnet_name: str
    cidr: str
    network_id: str
    last_applied_success: bool = False


# --- Netplan document ---

class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)


class MatchSpec(_Frozen):
    """Hardware match clause."""
    macaddress: str


class RouteSpec(_Frozen):
    """Static route entry."""
    to: str
    via: str
    metric: int | None = None


class NameserverSpec(_Frozen):
    """Resolver configuration."""
    addresses: list[str] = Field(default_factory=list)


class EthernetSpec(_Frozen):
    """One ``network.ethernets`` entry.

    Either ``addresses`` (static) or ``dhcp4`` (dynamic) is set.
    """
    match: MatchSpec
    set_name: str = Field(alias="set-name")
    dhcp4: bool | None = None
    addresses: list[str] | None = None
    routes: list[RouteSpec] | None = None
    nameservers: NameserverSpec | None = None

    @property
    def has_default_route(self) -> bool:
        return bool(self.routes) and any(r.to in ("0.0.0.0/0", "::/0", "default") for r in self.routes)


class NetworkSection(_Frozen):
    """Top-level ``network`` mapping."""
    version: int = 2
    renderer: str | None = None
    ethernets: dict[str, EthernetSpec] = Field(default_factory=dict)


class NetplanDocument(_Frozen):
    """A complete generated netplan document."""
    network: NetworkSection

    @property
    def ethernets(self) -> dict[str, EthernetSpec]:
        return self.network.ethernets

    def to_dict(self) -> dict[str, Any]:
        """Plain mapping in netplan key spelling, unset keys omitted."""
        return self.model_dump(by_alias=True, exclude_none=True)
