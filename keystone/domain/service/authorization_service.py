"""Authorization policy domain service.

Access is decided by an ordered list of rules. The first rule that
matches decides; when none match the request is denied. Each rule is data,
so the ordering and scope can be read (and tested) directly.
"""

from typing import Literal

import logfire

from keystone.domain.error import AuthorizationDeniedError
from keystone.domain.model import Identity
from keystone.domain.value import PolicyDecision
from keystone.domain.value.common import ValueObject

from .base import Service

SUPER_ADMIN_ROLE = "super_admin"
FULL_ACCESS = "full"


class PolicyRule(ValueObject):
    """One authorization rule.

    Attributes:
        name: Rule name reported in the decision
        effect: Outcome when the rule matches
        roles: Rule applies only to these roles (empty = any role)
        resources: Rule applies only to these resources (empty = any)
        grant_source: Where the matching permission must be found, if anywhere
        grant: Which permission string must be present ("full" or the exact action)
    """

    name: str
    effect: Literal["allow", "deny"]
    roles: tuple[str, ...] = ()
    resources: tuple[str, ...] = ()
    grant_source: Literal["none", "identity", "role"] = "none"
    grant: Literal["full", "exact"] = "exact"


DEFAULT_RULES: tuple[PolicyRule, ...] = (
    PolicyRule(name="super_admin", effect="allow", roles=(SUPER_ADMIN_ROLE,)),
    PolicyRule(name="settings_restricted", effect="deny", resources=("settings",)),
    PolicyRule(
        name="identity_full_access",
        effect="allow",
        grant_source="identity",
        grant="full",
    ),
    PolicyRule(name="identity_permission", effect="allow", grant_source="identity"),
    PolicyRule(
        name="role_full_access", effect="allow", grant_source="role", grant="full"
    ),
    PolicyRule(name="role_permission", effect="allow", grant_source="role"),
)


class AuthorizationService(Service):
    """Evaluates the ordered policy for an identity, resource and action."""

    def __init__(
        self,
        role_permissions: dict[str, list[str]],
        rules: tuple[PolicyRule, ...] = DEFAULT_RULES,
    ) -> None:
        """Initialize authorization service.

        Args:
            role_permissions: Permissions ("resource:action") granted per role
            rules: Ordered rules, first match wins
        """
        self.role_permissions = role_permissions
        self.rules = rules

    def evaluate(self, identity: Identity, resource: str, action: str) -> PolicyDecision:
        """Return the decision of the first matching rule, else deny."""
        for rule in self.rules:
            if self._matches(rule, identity, resource, action):
                return PolicyDecision(allowed=rule.effect == "allow", rule=rule.name)
        return PolicyDecision(allowed=False, rule="default_deny")

    def authorize(self, identity: Identity, resource: str, action: str) -> None:
        """Raise unless the policy allows the action.

        Raises:
            AuthorizationDeniedError: If denied
        """
        decision = self.evaluate(identity, resource, action)
        if not decision.allowed:
            logfire.warn(
                "Authorization denied",
                identity_id=str(identity.id),
                resource=resource,
                action=action,
                rule=decision.rule,
            )
            raise AuthorizationDeniedError(resource, action)

    def _matches(
        self, rule: PolicyRule, identity: Identity, resource: str, action: str
    ) -> bool:
        if rule.roles and identity.role not in rule.roles:
            return False
        if rule.resources and resource not in rule.resources:
            return False
        if rule.grant_source == "none":
            return True

        if rule.grant_source == "identity":
            grants = identity.permissions
        else:
            grants = self.role_permissions.get(identity.role, [])
        wanted = FULL_ACCESS if rule.grant == "full" else action
        return f"{resource}:{wanted}" in grants
