"""Declarative description of what provisioning must leave behind on the backend.

The fetch client depends on this layout:

- a PKI mount at ``pki/{domain}`` holding a generated root CA
- an issuance role ``cert`` tagged with the component's OU
- a policy ``{domain}/cert`` granting write on ``pki/{domain}/issue/cert`` only
- token roles ``services`` and ``users`` restricted to that policy

Nothing here talks to the backend. The payloads are what an operator
procedure submits; the paths are what the fetch client requests.
"""

from dataclasses import dataclass, field
from typing import Any

ROLE_NAME = "cert"
TOKEN_AUDIENCES = ("services", "users")


@dataclass(frozen=True)
class TokenRoleTTL:
    default_ttl: str
    max_ttl: str


DEFAULT_TOKEN_TTLS = {
    "services": TokenRoleTTL(default_ttl="8760h", max_ttl="87600h"),
    "users": TokenRoleTTL(default_ttl="720h", max_ttl="8760h"),
}


@dataclass(frozen=True)
class ProvisioningContract:
    """Backend layout for one domain/component pair."""

    domain: str
    component: str
    ca_ttl: str = "87600h"
    role_max_ttl: str = "8760h"
    token_ttls: dict[str, TokenRoleTTL] = field(default_factory=lambda: dict(DEFAULT_TOKEN_TTLS))

    @property
    def mount_path(self) -> str:
        return f"pki/{self.domain}"

    @property
    def ca_pem_path(self) -> str:
        return f"{self.mount_path}/ca/pem"

    @property
    def issue_path(self) -> str:
        return f"{self.mount_path}/issue/{ROLE_NAME}"

    @property
    def policy_name(self) -> str:
        return f"{self.domain}/{ROLE_NAME}"

    def mount_payload(self) -> dict[str, Any]:
        return {
            "type": "pki",
            "description": f"PKI for {self.domain}",
            "config": {"max_lease_ttl": self.ca_ttl},
        }

    def root_ca_payload(self) -> dict[str, Any]:
        return {"common_name": self.domain, "ttl": self.ca_ttl}

    def role_payload(self) -> dict[str, Any]:
        return {
            "allow_any_name": True,
            "allow_bare_domains": True,
            "allow_subdomains": True,
            "allow_glob_domains": True,
            "allow_localhost": True,
            "allow_ip_sans": True,
            "ou": [self.component],
            "max_ttl": self.role_max_ttl,
        }

    def policy_hcl(self) -> str:
        return f'path "{self.issue_path}" {{\n  capabilities = ["create", "update"]\n}}\n'

    def token_role_payload(self, audience: str) -> dict[str, Any]:
        if audience not in TOKEN_AUDIENCES:
            raise ValueError(f"Unknown token audience: {audience}")

        ttls = self.token_ttls[audience]
        return {
            "allowed_policies": [self.policy_name],
            "orphan": True,
            "renewable": True,
            "token_explicit_max_ttl": ttls.max_ttl,
            "token_period": ttls.default_ttl,
        }

    def as_dict(self) -> dict[str, Any]:
        """Everything an operator procedure needs, keyed by backend API path."""
        return {
            f"sys/mounts/{self.mount_path}": self.mount_payload(),
            f"{self.mount_path}/root/generate/internal": self.root_ca_payload(),
            f"{self.mount_path}/roles/{ROLE_NAME}": self.role_payload(),
            f"sys/policies/acl/{self.policy_name}": {"policy": self.policy_hcl()},
            **{
                f"auth/token/roles/{audience}": self.token_role_payload(audience)
                for audience in TOKEN_AUDIENCES
            },
        }
