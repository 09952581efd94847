# assetflow/collaborators.py
"""
Interfaces naar externe partijen: identiteit/autorisatie en de catalogus
(licenties, groepen). Alleen de grens wordt hier vastgelegd.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional, Protocol, Set, Tuple

import httpx

from assetflow.logging_config import get_logger

logger = get_logger(__name__)

ADMIN_ROLE = "admin"


@dataclass(frozen=True)
class Identity:
    id: str
    role: str = "user"

    @property
    def is_admin(self) -> bool:
        return self.role == ADMIN_ROLE


class Authorizer(Protocol):
    def authorize(self, identity: Identity, owner_id: str, action: str) -> bool: ...


class OwnerOrAdminAuthorizer:
    """Default policy: the owner may do anything with their asset, admins may do everything."""

    def authorize(self, identity: Identity, owner_id: str, action: str) -> bool:
        return identity.is_admin or identity.id == owner_id


class Catalog(Protocol):
    def has_active_licenses(self, asset_id: str) -> bool: ...

    def grants_access(self, asset_id: str, identity: Identity) -> bool: ...

    def validate_group(self, identity: Identity, group_ref: str) -> bool: ...


class InMemoryCatalog:
    """Catalog for tests and single-process deployments."""

    def __init__(self, allow_any_group: bool = True):
        self.licensed: Set[str] = set()
        self.grants: Set[Tuple[str, str]] = set()
        self.groups: Dict[str, Set[str]] = {}
        self.allow_any_group = allow_any_group

    def add_license(self, asset_id: str, identity_id: Optional[str] = None) -> None:
        self.licensed.add(asset_id)
        if identity_id:
            self.grants.add((asset_id, identity_id))

    def revoke_licenses(self, asset_id: str) -> None:
        self.licensed.discard(asset_id)
        self.grants = {g for g in self.grants if g[0] != asset_id}

    def add_group_member(self, group_ref: str, identity_id: str) -> None:
        self.groups.setdefault(group_ref, set()).add(identity_id)

    def has_active_licenses(self, asset_id: str) -> bool:
        return asset_id in self.licensed

    def grants_access(self, asset_id: str, identity: Identity) -> bool:
        return (asset_id, identity.id) in self.grants

    def validate_group(self, identity: Identity, group_ref: str) -> bool:
        members = self.groups.get(group_ref)
        if members is None:
            return self.allow_any_group
        return identity.id in members


class HttpCatalog:
    """
    Catalog over HTTP.

    GET {base}/assets/{id}/licenses          -> {"active": bool}
    GET {base}/assets/{id}/grants/{identity} -> {"granted": bool}
    GET {base}/groups/{ref}/members/{identity} -> {"member": bool}

    Bij storingen faalt de check gesloten (False); alleen has_active_licenses
    faalt "open" naar True zodat een delete niet per ongeluk doorgaat.
    """

    def __init__(self, base_url: str, timeout: float = 5.0, client: Optional[httpx.Client] = None):
        self.base_url = base_url.rstrip("/")
        self.client = client or httpx.Client(timeout=timeout)

    def _get_flag(self, path: str, field: str, on_error: bool) -> bool:
        try:
            resp = self.client.get(f"{self.base_url}{path}")
            if resp.status_code == 404:
                return False
            resp.raise_for_status()
            return bool(resp.json().get(field, False))
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("catalog_unavailable", path=path, error=str(e))
            return on_error

    def has_active_licenses(self, asset_id: str) -> bool:
        return self._get_flag(f"/assets/{asset_id}/licenses", "active", on_error=True)

    def grants_access(self, asset_id: str, identity: Identity) -> bool:
        return self._get_flag(f"/assets/{asset_id}/grants/{identity.id}", "granted", on_error=False)

    def validate_group(self, identity: Identity, group_ref: str) -> bool:
        return self._get_flag(f"/groups/{group_ref}/members/{identity.id}", "member", on_error=False)
