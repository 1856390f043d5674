from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from typing import Any, Mapping, Optional

from zonemap.auth.identity import Identity, IdToken, with_rotated_refresh_token
from zonemap.common.errors import MissingTenantScope


@dataclass(frozen=True, slots=True)
class SessionContext:
    """
    Signed-in session scope, passed explicitly to tenant-scoped operations.

    - identity: the signed-in principal
    - id_token: current bearer token (None until the first fetch completes)
    - tenant_id: `tenantId` claim read from that same token
    - session_id: stable for the session; a new sign-in yields a new one
    """

    identity: Identity
    id_token: Optional[str] = field(default=None, repr=False)
    tenant_id: Optional[str] = None
    claims: Mapping[str, Any] = field(default_factory=dict)
    session_id: str = field(default_factory=lambda: uuid.uuid4().hex)

    @property
    def uid(self) -> str:
        return self.identity.uid

    def with_token(self, token: IdToken) -> "SessionContext":
        tenant_id = token.claims.get("tenantId")
        return replace(
            self,
            identity=with_rotated_refresh_token(self.identity, token),
            id_token=token.token,
            tenant_id=str(tenant_id) if tenant_id else None,
            claims=dict(token.claims),
        )

    def require_tenant_id(self) -> str:
        if not self.tenant_id:
            raise MissingTenantScope()
        return self.tenant_id
