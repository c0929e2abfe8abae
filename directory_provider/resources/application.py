"""Application registration resource.

Typed desired-state records, the mapping to and from the Graph wire shape,
and the adapter plugging both into the reconciliation engine.
"""
from __future__ import annotations
import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from ..core import validators
from ..core.errors import ValidationError
from ..core.graph import ApplicationsClient, odata_equals
from ..core.reconciler import OperationContext, ResourceAdapter

logger = logging.getLogger(__name__)

APPLICATION_RESOURCE_NAME = "azuread_application"

SIGN_IN_AUDIENCES = ("AzureADMyOrg", "AzureADMultipleOrgs", "AzureADandPersonalMicrosoftAccount",
                     "PersonalMicrosoftAccount")
GROUP_MEMBERSHIP_CLAIMS = ("None", "SecurityGroup", "DirectoryRole", "ApplicationGroup", "All")
APP_ROLE_MEMBER_TYPES = ("User", "Application")
PERMISSION_SCOPE_TYPES = ("Admin", "User")
RESOURCE_ACCESS_TYPES = ("Role", "Scope")


# ─────────────────────────────────────────────────────────────────────────────
# Typed records
# ─────────────────────────────────────────────────────────────────────────────

@dataclass
class AppRole:
    id: str
    allowed_member_types: List[str]
    description: str
    display_name: str
    enabled: bool = True
    value: Optional[str] = None

    def __post_init__(self):
        self.allowed_member_types = sorted(self.allowed_member_types or [])

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AppRole":
        return cls(
            id=data.get("id", ""),
            allowed_member_types=list(data.get("allowed_member_types") or []),
            description=data.get("description", ""),
            display_name=data.get("display_name", ""),
            enabled=data.get("enabled", True),
            value=data.get("value"),
        )


@dataclass
class PermissionScope:
    id: str
    admin_consent_description: Optional[str] = None
    admin_consent_display_name: Optional[str] = None
    enabled: bool = True
    type: str = "User"
    user_consent_description: Optional[str] = None
    user_consent_display_name: Optional[str] = None
    value: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PermissionScope":
        return cls(**{k: v for k, v in data.items() if k in cls.__dataclass_fields__})


@dataclass
class ApiSettings:
    oauth2_permission_scopes: List[PermissionScope] = field(default_factory=list)

    def __post_init__(self):
        self.oauth2_permission_scopes = sorted(self.oauth2_permission_scopes, key=lambda s: s.id)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> Optional["ApiSettings"]:
        if not data:
            return None
        scopes = data.get("oauth2_permission_scopes") or data.get("oauth2_permission_scope") or []
        return cls([PermissionScope.from_dict(s) for s in scopes])


@dataclass
class ImplicitGrant:
    access_token_issuance_enabled: bool = False
    id_token_issuance_enabled: bool = False


@dataclass
class WebSettings:
    homepage_url: Optional[str] = None
    logout_url: Optional[str] = None
    redirect_uris: List[str] = field(default_factory=list)
    implicit_grant: Optional[ImplicitGrant] = None

    def __post_init__(self):
        self.redirect_uris = sorted(self.redirect_uris or [])

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> Optional["WebSettings"]:
        if not data:
            return None
        grant = data.get("implicit_grant")
        return cls(
            homepage_url=data.get("homepage_url"),
            logout_url=data.get("logout_url"),
            redirect_uris=list(data.get("redirect_uris") or []),
            implicit_grant=ImplicitGrant(**grant) if grant else None,
        )


@dataclass
class ResourceAccess:
    id: str
    type: str


@dataclass
class RequiredResourceAccess:
    resource_app_id: str
    resource_access: List[ResourceAccess] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RequiredResourceAccess":
        return cls(
            resource_app_id=data.get("resource_app_id", ""),
            resource_access=[ResourceAccess(**a) for a in data.get("resource_access") or []],
        )


@dataclass
class OptionalClaim:
    name: str
    source: Optional[str] = None
    essential: bool = False
    additional_properties: List[str] = field(default_factory=list)


@dataclass
class OptionalClaims:
    access_token: List[OptionalClaim] = field(default_factory=list)
    id_token: List[OptionalClaim] = field(default_factory=list)
    saml2_token: List[OptionalClaim] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> Optional["OptionalClaims"]:
        if not data:
            return None
        return cls(**{
            key: [OptionalClaim(**c) for c in data.get(key) or []]
            for key in ("access_token", "id_token", "saml2_token")
        })


@dataclass
class Application:
    """Desired state of an application registration."""
    display_name: str
    app_roles: List[AppRole] = field(default_factory=list)
    api: Optional[ApiSettings] = None
    fallback_public_client_enabled: bool = False
    group_membership_claims: List[str] = field(default_factory=list)
    identifier_uris: List[str] = field(default_factory=list)
    optional_claims: Optional[OptionalClaims] = None
    owners: List[str] = field(default_factory=list)
    required_resource_access: List[RequiredResourceAccess] = field(default_factory=list)
    sign_in_audience: str = "AzureADMyOrg"
    web: Optional[WebSettings] = None
    prevent_duplicate_names: bool = False

    def __post_init__(self):
        self.app_roles = sorted(self.app_roles, key=lambda r: r.id)
        self.group_membership_claims = sorted(self.group_membership_claims or [])
        self.owners = sorted(self.owners or [])
        self.required_resource_access = sorted(self.required_resource_access, key=lambda r: r.resource_app_id)

    @property
    def permission_scopes(self) -> List[PermissionScope]:
        return self.api.oauth2_permission_scopes if self.api else []

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Application":
        return cls(
            display_name=data.get("display_name", ""),
            app_roles=[AppRole.from_dict(r) for r in data.get("app_roles") or data.get("app_role") or []],
            api=ApiSettings.from_dict(data.get("api")),
            fallback_public_client_enabled=bool(data.get("fallback_public_client_enabled", False)),
            group_membership_claims=list(data.get("group_membership_claims") or []),
            identifier_uris=list(data.get("identifier_uris") or []),
            optional_claims=OptionalClaims.from_dict(data.get("optional_claims")),
            owners=list(data.get("owners") or []),
            required_resource_access=[
                RequiredResourceAccess.from_dict(r) for r in data.get("required_resource_access") or []
            ],
            sign_in_audience=data.get("sign_in_audience", "AzureADMyOrg"),
            web=WebSettings.from_dict(data.get("web")),
            prevent_duplicate_names=bool(data.get("prevent_duplicate_names", False)),
        )


# ─────────────────────────────────────────────────────────────────────────────
# Wire mapping (expand: typed -> Graph, flatten: Graph -> typed)
# ─────────────────────────────────────────────────────────────────────────────

def expand_app_role(role: AppRole) -> dict:
    return {
        "id": role.id,
        "allowedMemberTypes": list(role.allowed_member_types),
        "description": role.description,
        "displayName": role.display_name,
        "isEnabled": role.enabled,
        "value": role.value,
    }


def flatten_app_role(raw: dict) -> AppRole:
    return AppRole(
        id=raw.get("id", ""),
        allowed_member_types=list(raw.get("allowedMemberTypes") or []),
        description=raw.get("description") or "",
        display_name=raw.get("displayName") or "",
        enabled=bool(raw.get("isEnabled", True)),
        value=raw.get("value") or None,
    )


def expand_permission_scope(scope: PermissionScope) -> dict:
    return {
        "id": scope.id,
        "adminConsentDescription": scope.admin_consent_description,
        "adminConsentDisplayName": scope.admin_consent_display_name,
        "isEnabled": scope.enabled,
        "type": scope.type,
        "userConsentDescription": scope.user_consent_description,
        "userConsentDisplayName": scope.user_consent_display_name,
        "value": scope.value,
    }


def flatten_permission_scope(raw: dict) -> PermissionScope:
    return PermissionScope(
        id=raw.get("id", ""),
        admin_consent_description=raw.get("adminConsentDescription") or None,
        admin_consent_display_name=raw.get("adminConsentDisplayName") or None,
        enabled=bool(raw.get("isEnabled", True)),
        type=raw.get("type") or "User",
        user_consent_description=raw.get("userConsentDescription") or None,
        user_consent_display_name=raw.get("userConsentDisplayName") or None,
        value=raw.get("value") or None,
    )


def expand_api(api: Optional[ApiSettings]) -> dict:
    scopes = api.oauth2_permission_scopes if api else []
    return {"oauth2PermissionScopes": [expand_permission_scope(s) for s in scopes]}


def flatten_api(raw: Optional[dict]) -> Optional[ApiSettings]:
    scopes = (raw or {}).get("oauth2PermissionScopes") or []
    if not scopes:
        return None
    return ApiSettings([flatten_permission_scope(s) for s in scopes])


def expand_web(web: Optional[WebSettings]) -> dict:
    web = web or WebSettings()
    grant = web.implicit_grant or ImplicitGrant()
    return {
        "homepageUrl": web.homepage_url,
        "logoutUrl": web.logout_url,
        "redirectUris": list(web.redirect_uris),
        "implicitGrantSettings": {
            "enableAccessTokenIssuance": grant.access_token_issuance_enabled,
            "enableIdTokenIssuance": grant.id_token_issuance_enabled,
        },
    }


def flatten_web(raw: Optional[dict]) -> Optional[WebSettings]:
    """Map web settings; an all-default block flattens to None."""
    raw = raw or {}
    grant_raw = raw.get("implicitGrantSettings") or {}
    grant = ImplicitGrant(
        access_token_issuance_enabled=bool(grant_raw.get("enableAccessTokenIssuance", False)),
        id_token_issuance_enabled=bool(grant_raw.get("enableIdTokenIssuance", False)),
    )
    web = WebSettings(
        homepage_url=raw.get("homepageUrl") or None,
        logout_url=raw.get("logoutUrl") or None,
        redirect_uris=list(raw.get("redirectUris") or []),
        implicit_grant=grant if grant != ImplicitGrant() else None,
    )
    return normalize_web(web)


def normalize_web(web: Optional[WebSettings]) -> Optional[WebSettings]:
    if web is None:
        return None
    if web.implicit_grant == ImplicitGrant():
        web = WebSettings(web.homepage_url, web.logout_url, web.redirect_uris, None)
    if web == WebSettings():
        return None
    return web


def expand_group_membership_claims(claims: Sequence[str]) -> Optional[str]:
    return ",".join(claims) if claims else None


def flatten_group_membership_claims(raw: Optional[str]) -> List[str]:
    if not raw:
        return []
    return sorted(c.strip() for c in raw.split(",") if c.strip())


def expand_optional_claims(claims: Optional[OptionalClaims]) -> dict:
    claims = claims or OptionalClaims()

    def _expand(items: List[OptionalClaim]) -> List[dict]:
        return [
            {
                "name": c.name,
                "source": c.source,
                "essential": c.essential,
                "additionalProperties": list(c.additional_properties),
            }
            for c in items
        ]

    return {
        "accessToken": _expand(claims.access_token),
        "idToken": _expand(claims.id_token),
        "saml2Token": _expand(claims.saml2_token),
    }


def flatten_optional_claims(raw: Optional[dict]) -> Optional[OptionalClaims]:
    raw = raw or {}

    def _flatten(items: Optional[List[dict]]) -> List[OptionalClaim]:
        return [
            OptionalClaim(
                name=c.get("name", ""),
                source=c.get("source") or None,
                essential=bool(c.get("essential", False)),
                additional_properties=list(c.get("additionalProperties") or []),
            )
            for c in items or []
        ]

    claims = OptionalClaims(
        access_token=_flatten(raw.get("accessToken")),
        id_token=_flatten(raw.get("idToken")),
        saml2_token=_flatten(raw.get("saml2Token")),
    )
    return None if claims == OptionalClaims() else claims


def expand_required_resource_access(items: Sequence[RequiredResourceAccess]) -> List[dict]:
    return [
        {
            "resourceAppId": r.resource_app_id,
            "resourceAccess": [{"id": a.id, "type": a.type} for a in r.resource_access],
        }
        for r in items
    ]


def flatten_required_resource_access(raw: Optional[List[dict]]) -> List[RequiredResourceAccess]:
    result = [
        RequiredResourceAccess(
            resource_app_id=r.get("resourceAppId", ""),
            resource_access=[ResourceAccess(a.get("id", ""), a.get("type", "")) for a in r.get("resourceAccess") or []],
        )
        for r in raw or []
    ]
    return sorted(result, key=lambda r: r.resource_app_id)


# Attribute name -> (wire key, expand function)
_WIRE_FIELDS = {
    "display_name": ("displayName", lambda app: app.display_name),
    "app_roles": ("appRoles", lambda app: [expand_app_role(r) for r in app.app_roles]),
    "api": ("api", lambda app: expand_api(app.api)),
    "fallback_public_client_enabled": ("isFallbackPublicClient", lambda app: app.fallback_public_client_enabled),
    "group_membership_claims": (
        "groupMembershipClaims", lambda app: expand_group_membership_claims(app.group_membership_claims)
    ),
    "identifier_uris": ("identifierUris", lambda app: list(app.identifier_uris)),
    "optional_claims": ("optionalClaims", lambda app: expand_optional_claims(app.optional_claims)),
    "required_resource_access": (
        "requiredResourceAccess", lambda app: expand_required_resource_access(app.required_resource_access)
    ),
    "sign_in_audience": ("signInAudience", lambda app: app.sign_in_audience),
    "web": ("web", lambda app: expand_web(app.web)),
}


def expand_application(app: Application, fields: Optional[Sequence[str]] = None) -> dict:
    """Build the Graph payload, optionally restricted to ``fields``."""
    names = _WIRE_FIELDS.keys() if fields is None else [f for f in fields if f in _WIRE_FIELDS]
    payload = {}
    for name in names:
        wire_key, expand = _WIRE_FIELDS[name]
        payload[wire_key] = expand(app)
    return payload


def flatten_application(raw: dict, owners: Sequence[str]) -> Dict[str, Any]:
    """Map a Graph application to state attributes."""
    app = Application(
        display_name=raw.get("displayName") or "",
        app_roles=[flatten_app_role(r) for r in raw.get("appRoles") or []],
        api=flatten_api(raw.get("api")),
        fallback_public_client_enabled=bool(raw.get("isFallbackPublicClient") or False),
        group_membership_claims=flatten_group_membership_claims(raw.get("groupMembershipClaims")),
        identifier_uris=list(raw.get("identifierUris") or []),
        optional_claims=flatten_optional_claims(raw.get("optionalClaims")),
        owners=list(owners),
        required_resource_access=flatten_required_resource_access(raw.get("requiredResourceAccess")),
        sign_in_audience=raw.get("signInAudience") or "AzureADMyOrg",
        web=flatten_web(raw.get("web")),
    )
    attributes = application_attributes(app)
    del attributes["prevent_duplicate_names"]
    attributes["application_id"] = raw.get("appId")
    attributes["object_id"] = raw.get("id")
    return attributes


def application_attributes(app: Application) -> Dict[str, Any]:
    """State attribute shape of a typed application."""
    normalized = Application(**{**app.__dict__, "web": normalize_web(app.web)})
    if normalized.api is not None and not normalized.api.oauth2_permission_scopes:
        normalized.api = None
    if normalized.optional_claims == OptionalClaims():
        normalized.optional_claims = None
    return asdict(normalized)


# ─────────────────────────────────────────────────────────────────────────────
# Validation
# ─────────────────────────────────────────────────────────────────────────────

def validate_application(app: Application) -> None:
    """Local pre-flight checks for an application's desired state."""
    validators.required_string(app.display_name, "display_name")
    validators.one_of(app.sign_in_audience, SIGN_IN_AUDIENCES, "sign_in_audience")
    for claim in app.group_membership_claims:
        validators.one_of(claim, GROUP_MEMBERSHIP_CLAIMS, "group_membership_claims")

    for i, role in enumerate(app.app_roles):
        path = f"app_role.{i}"
        validators.is_uuid(role.id, f"{path}.id")
        if not role.allowed_member_types:
            raise ValidationError(
                f"{path}.allowed_member_types needs at least one entry", field=f"{path}.allowed_member_types"
            )
        for member_type in role.allowed_member_types:
            validators.one_of(member_type, APP_ROLE_MEMBER_TYPES, f"{path}.allowed_member_types")
        validators.required_string(role.description, f"{path}.description")
        validators.required_string(role.display_name, f"{path}.display_name")
        validators.role_scope_claim_value(role.value, f"{path}.value")

    for i, scope in enumerate(app.permission_scopes):
        path = f"api.0.oauth2_permission_scope.{i}"
        validators.is_uuid(scope.id, f"{path}.id")
        validators.one_of(scope.type, PERMISSION_SCOPE_TYPES, f"{path}.type")
        for attr in ("admin_consent_description", "admin_consent_display_name",
                     "user_consent_description", "user_consent_display_name"):
            validators.no_empty_string(getattr(scope, attr), f"{path}.{attr}")
        validators.role_scope_claim_value(scope.value, f"{path}.value")

    validators.unique_values({
        "app_role": app.app_roles,
        "api.0.oauth2_permission_scope": app.permission_scopes,
    })

    for i, uri in enumerate(app.identifier_uris):
        validators.is_app_uri(uri, f"identifier_uris.{i}")

    for i, access in enumerate(app.required_resource_access):
        validators.required_string(access.resource_app_id, f"required_resource_access.{i}.resource_app_id")
        for j, item in enumerate(access.resource_access):
            validators.is_uuid(item.id, f"required_resource_access.{i}.resource_access.{j}.id")
            validators.one_of(item.type, RESOURCE_ACCESS_TYPES, f"required_resource_access.{i}.resource_access.{j}.type")

    if app.web is not None:
        validators.is_http_url(app.web.homepage_url, "web.0.homepage_url")
        validators.is_http_url(app.web.logout_url, "web.0.logout_url")
        for uri in app.web.redirect_uris:
            validators.no_empty_string(uri, "web.0.redirect_uris")

    for owner in app.owners:
        validators.no_empty_string(owner, "owners")


# ─────────────────────────────────────────────────────────────────────────────
# Adapter
# ─────────────────────────────────────────────────────────────────────────────

class ApplicationAdapter(ResourceAdapter[Application]):
    """Reconciles application registrations, their owners, roles and scopes."""

    resource_type = APPLICATION_RESOURCE_NAME
    write_only_fields = ("prevent_duplicate_names",)

    def __init__(self, client: ApplicationsClient):
        self.client = client

    def validate(self, spec: Application) -> None:
        validate_application(spec)

    def duplicate_guard(self, spec: Application) -> bool:
        return spec.prevent_duplicate_names

    def display_name(self, spec: Application) -> str:
        return spec.display_name

    def find_by_name(self, name: str, ctx: OperationContext) -> List[dict]:
        apps, _ = self.client.list(odata_equals("displayName", name))
        # Filters are case-insensitive; duplicates must match exactly.
        return [a for a in apps if a.get("displayName") == name]

    def desired_attributes(self, spec: Application) -> Dict[str, Any]:
        return application_attributes(spec)

    def create(self, spec: Application, ctx: OperationContext) -> dict:
        app, _ = self.client.create(expand_application(spec))
        return app

    def after_create(self, identity: str, spec: Application, record: dict, ctx: OperationContext) -> None:
        with ctx.lock(APPLICATION_RESOURCE_NAME, identity):
            self.set_owners(identity, spec.owners)

    def read(self, identity: str, ctx: OperationContext) -> dict:
        app, _ = self.client.get(identity)
        return app

    def flatten(self, identity: str, record: dict, ctx: OperationContext) -> Dict[str, Any]:
        owners, _ = self.client.list_owners(record.get("id") or identity)
        return flatten_application(record, sorted(owners))

    def update(self, identity: str, spec: Application, changed: Sequence[str], ctx: OperationContext) -> None:
        with ctx.lock(APPLICATION_RESOURCE_NAME, identity):
            if "app_roles" in changed:
                self.disable_removed_app_roles(identity, spec.app_roles)
            if "api" in changed:
                self.disable_removed_permission_scopes(identity, spec.permission_scopes)

            payload = expand_application(spec, changed)
            if payload:
                payload["id"] = identity
                self.client.update(payload)

            if "owners" in changed:
                self.set_owners(identity, spec.owners)

    def delete(self, identity: str, record: dict, ctx: OperationContext) -> None:
        self.client.delete(identity)

    def set_owners(self, identity: str, desired: Sequence[str]) -> None:
        """Add missing owners and remove extra ones."""
        existing, _ = self.client.list_owners(identity)
        to_add = sorted(set(desired) - set(existing))
        to_remove = sorted(set(existing) - set(desired))
        if to_add:
            self.client.add_owners(identity, to_add)
        if to_remove:
            self.client.remove_owners(identity, to_remove)
        if to_add or to_remove:
            logger.debug("[application] Owners of %r: +%s -%s", identity, to_add, to_remove)

    def disable_removed_app_roles(self, identity: str, desired: Sequence[AppRole]) -> bool:
        """Disable roles that are about to be removed or changed.

        The service rejects removing an enabled role, so those roles are
        disabled in a separate update first.

        Returns:
            True when a disabling update was sent
        """
        existing, _ = self.client.get(identity)
        roles = [dict(r) for r in existing.get("appRoles") or []]
        wanted = {r.id: r for r in desired}
        doomed = [
            r for r in roles
            if r.get("isEnabled", True) and wanted.get(r.get("id")) != flatten_app_role(r)
        ]
        if not doomed:
            return False
        for role in doomed:
            role["isEnabled"] = False
        logger.debug("[application] Disabling %d app role(s) on %r before removal", len(doomed), identity)
        self.client.update({"id": identity, "appRoles": roles})
        return True

    def disable_removed_permission_scopes(self, identity: str, desired: Sequence[PermissionScope]) -> bool:
        """Disable permission scopes that are about to be removed or changed."""
        existing, _ = self.client.get(identity)
        api = dict(existing.get("api") or {})
        scopes = [dict(s) for s in api.get("oauth2PermissionScopes") or []]
        wanted = {s.id: s for s in desired}
        doomed = [
            s for s in scopes
            if s.get("isEnabled", True) and wanted.get(s.get("id")) != flatten_permission_scope(s)
        ]
        if not doomed:
            return False
        for scope in doomed:
            scope["isEnabled"] = False
        api["oauth2PermissionScopes"] = scopes
        logger.debug("[application] Disabling %d permission scope(s) on %r before removal", len(doomed), identity)
        self.client.update({"id": identity, "api": api})
        return True
