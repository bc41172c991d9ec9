"""Sonde de connectivité réseau.

L'orchestrateur interroge `is_online()` avant tout appel au fournisseur; hors ligne, seul le
cache peut répondre.
"""

from typing import Protocol


class ConnectivityProbe(Protocol):
    def is_online(self) -> bool: ...


class StaticConnectivity:
    """Sonde pilotée par configuration (`OFFLINE_MODE`) ou par les tests."""

    def __init__(self, online: bool = True) -> None:
        self.online = online

    def is_online(self) -> bool:
        return self.online

    def set_online(self, online: bool) -> None:
        self.online = online
