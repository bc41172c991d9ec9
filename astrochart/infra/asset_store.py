"""
Cache disque des visuels de thèmes (SVG/PNG).

Ce module stocke un fichier par visuel, nommé `{asset_id}.{format}`, dans un répertoire dédié.
Chaque écriture passe par un fichier temporaire renommé atomiquement (`os.replace`): un lecteur
voit l'ancien contenu ou le nouveau, jamais un fichier partiel.
"""

from __future__ import annotations

import logging
import os
import re
import tempfile
from dataclasses import dataclass
from pathlib import Path

from astrochart.domain.entities import AssetReference

log = logging.getLogger(__name__)

ALLOWED_FORMATS = ("svg", "png")
DEFAULT_MAX_BYTES = 100 * 1024 * 1024
_ASSET_ID = re.compile(r"^[A-Za-z0-9_-]{1,128}$")


@dataclass
class StoredAsset:
    """Métadonnées d'un visuel présent sur disque."""

    id: str
    format: str
    size: int
    modified_at: float


def validate_asset(asset_id: str, fmt: str) -> None:
    """Refuse les identifiants hors `[A-Za-z0-9_-]` et les formats inconnus."""
    if not isinstance(asset_id, str) or not _ASSET_ID.match(asset_id):
        raise ValueError(f"invalid asset id: {asset_id!r}")
    if fmt not in ALLOWED_FORMATS:
        raise ValueError(f"unsupported asset format: {fmt!r}")


class FileAssetStore:
    """Dépôt de visuels sur le système de fichiers local."""

    def __init__(self, root: str | os.PathLike[str], max_bytes: int = DEFAULT_MAX_BYTES) -> None:
        self.root = Path(root)
        self.max_bytes = max_bytes
        self.root.mkdir(parents=True, exist_ok=True)

    def _path(self, asset_id: str, fmt: str) -> Path:
        validate_asset(asset_id, fmt)
        return self.root / f"{asset_id}.{fmt}"

    def save_asset(self, asset_id: str, fmt: str, data: bytes) -> AssetReference:
        """Écrit le visuel de façon atomique (temp + rename) et renvoie sa référence."""
        target = self._path(asset_id, fmt)
        fd, tmp_name = tempfile.mkstemp(dir=self.root, prefix=f".{asset_id}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "wb") as fh:
                fh.write(data)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp_name, target)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        log.debug("Chart asset saved", extra={"asset_id": asset_id, "size": len(data)})
        return AssetReference(id=asset_id, format=fmt)

    def load_asset(self, asset_id: str, fmt: str) -> bytes | None:
        try:
            return self._path(asset_id, fmt).read_bytes()
        except FileNotFoundError:
            return None

    def exists(self, asset_id: str, fmt: str) -> bool:
        return self._path(asset_id, fmt).is_file()

    def delete_asset(self, asset_id: str, fmt: str) -> bool:
        """Supprime le visuel; False s'il était absent."""
        try:
            self._path(asset_id, fmt).unlink()
        except FileNotFoundError:
            return False
        return True

    def list_assets(self) -> list[StoredAsset]:
        """Visuels présents, du plus ancien au plus récent."""
        assets: list[StoredAsset] = []
        for path in self.root.iterdir():
            fmt = path.suffix.lstrip(".")
            if path.name.startswith(".") or fmt not in ALLOWED_FORMATS or not path.is_file():
                continue
            try:
                stat = path.stat()
            except FileNotFoundError:
                continue
            assets.append(
                StoredAsset(id=path.stem, format=fmt, size=stat.st_size, modified_at=stat.st_mtime)
            )
        assets.sort(key=lambda a: (a.modified_at, a.id))
        return assets

    def total_size(self) -> int:
        return sum(a.size for a in self.list_assets())

    def clear(self) -> int:
        """Supprime tous les visuels; renvoie le nombre de fichiers supprimés."""
        removed = 0
        for asset in self.list_assets():
            if self.delete_asset(asset.id, asset.format):
                removed += 1
        return removed

    def enforce_storage_limit(self, max_bytes: int | None = None) -> list[StoredAsset]:
        """Supprime les visuels les plus anciens jusqu'à repasser sous la limite."""
        limit = self.max_bytes if max_bytes is None else max_bytes
        assets = self.list_assets()
        total = sum(a.size for a in assets)
        removed: list[StoredAsset] = []
        for asset in assets:
            if total <= limit:
                break
            if self.delete_asset(asset.id, asset.format):
                total -= asset.size
                removed.append(asset)
        if removed:
            log.info(
                "Chart asset cache trimmed",
                extra={"removed": len(removed), "total_bytes": total, "limit": limit},
            )
        return removed
