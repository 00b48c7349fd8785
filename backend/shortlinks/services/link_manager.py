"""Link lifecycle orchestration: creation, lookup, URL building, passwords.

The manager owns no global state. Configuration arrives as plain dataclasses
(``ManagerConfig`` for system behaviour, ``LinkDefaults`` for the per-owner
tracking flags merged into new links) and every collaborator is injected.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Protocol
from urllib.parse import urlencode

from sqlalchemy.orm.attributes import set_committed_value

from shortlinks.core.config import Settings
from shortlinks.core.exceptions import (
    CredentialError,
    DuplicateKeyError,
    KeyExhaustionError,
    NotFoundError,
)
from shortlinks.models.link import ShortLink
from shortlinks.services import access
from shortlinks.services.clock import Clock, SystemClock
from shortlinks.services.credentials import CredentialHasher
from shortlinks.services.keys import KeyGenerator, kebab
from shortlinks.services.link_cache import LinkCache
from shortlinks.services.qr_code import QrCodeRenderer, QrOptions
from shortlinks.services.store import SqlAlchemyStore

logger = logging.getLogger(__name__)

# Inserts retried when a freshly generated key is claimed by a concurrent creation.
INSERT_ATTEMPTS = 3

UPDATABLE_FIELDS = frozenset(
    {
        "destination_url",
        "title",
        "description",
        "is_active",
        "activated_at",
        "expires_at",
        "click_limit",
        "utm_parameters",
        "utm_hidden",
        "redirect_status_code",
        "tags",
        "group",
        "metadata_",
    }
)


@dataclass(frozen=True)
class EntityRef:
    """Tagged reference to an entity outside this service (owner, attached model)."""

    kind: str
    id: str


class Linkable(Protocol):
    def get_key_seed(self) -> str: ...

    def get_default_destination(self) -> str: ...


class QrStorage(Protocol):
    def save(self, link_key: str, fmt: str, body: bytes) -> str: ...

    def url(self, key: str) -> str: ...


@dataclass(frozen=True)
class LinkDefaults:
    track_visits: bool = True
    track_ip_address: bool = True
    track_user_agent: bool = True
    track_referer: bool = True
    track_geo: bool = False
    redirect_status_code: int = 302
    utm_hidden: bool = True

    @classmethod
    def from_settings(cls, settings: Settings) -> "LinkDefaults":
        return cls(
            track_visits=settings.TRACK_VISITS,
            track_ip_address=settings.TRACK_IP_ADDRESS,
            track_user_agent=settings.TRACK_USER_AGENT,
            track_referer=settings.TRACK_REFERER,
            track_geo=settings.TRACK_GEO,
            redirect_status_code=settings.REDIRECT_STATUS_CODE,
            utm_hidden=settings.UTM_HIDDEN,
        )


@dataclass(frozen=True)
class UtmConfig:
    enabled: bool = True
    hidden: bool = True
    source: str = "url-shortener"
    medium: str = "short-link"


@dataclass(frozen=True)
class ManagerConfig:
    domain: str = "http://localhost:8000"
    prefix: str = "s"
    key_chars: str = "abcdefghijkmnopqrstuvwxyzABCDEFGHJKLMNPQRSTUVWXYZ23456789"
    key_length: int = 6
    model_key_length: int = 4
    default_expiry_days: int | None = None
    utm: UtmConfig = field(default_factory=UtmConfig)
    qr_enabled: bool = True
    qr: QrOptions = field(default_factory=QrOptions)
    qr_timeout: float = 5.0

    @classmethod
    def from_settings(cls, settings: Settings) -> "ManagerConfig":
        return cls(
            domain=settings.short_domain,
            prefix=settings.SHORT_PREFIX,
            key_chars=settings.KEY_CHARS,
            key_length=settings.KEY_LENGTH,
            model_key_length=settings.MODEL_KEY_LENGTH,
            default_expiry_days=settings.DEFAULT_EXPIRY_DAYS,
            utm=UtmConfig(
                enabled=settings.UTM_ENABLED,
                hidden=settings.UTM_HIDDEN,
                source=settings.UTM_SOURCE,
                medium=settings.UTM_MEDIUM,
            ),
            qr_enabled=settings.QR_ENABLED,
            qr=QrOptions(
                size=settings.QR_SIZE,
                format=settings.QR_FORMAT,
                margin=settings.QR_MARGIN,
                error_correction=settings.QR_ERROR_CORRECTION,
            ),
            qr_timeout=settings.QR_TIMEOUT_SECONDS,
        )


@dataclass
class LinkSpec:
    """Everything a caller may say about a new link. Unset fields fall back to defaults."""

    destination_url: str
    key: str | None = None
    title: str | None = None
    description: str | None = None
    password: str | None = None
    expires_at: datetime | None = None
    expires_in_days: int | None = None
    activated_at: datetime | None = None
    is_active: bool | None = None
    click_limit: int | None = None
    track_visits: bool | None = None
    track_ip_address: bool | None = None
    track_user_agent: bool | None = None
    track_referer: bool | None = None
    track_geo: bool | None = None
    utm_parameters: dict[str, str] | None = None
    utm_hidden: bool | None = None
    redirect_status_code: int | None = None
    custom_domain: str | None = None
    owner: EntityRef | None = None
    attached: EntityRef | None = None
    metadata: dict | None = None
    tags: list[str] | None = None
    group: str | None = None


def _pick(value, default):
    return default if value is None else value


class LinkManager:
    def __init__(
        self,
        store: SqlAlchemyStore,
        link_cache: LinkCache,
        hasher: CredentialHasher,
        *,
        config: ManagerConfig | None = None,
        defaults: LinkDefaults | None = None,
        clock: Clock | None = None,
        keys: KeyGenerator | None = None,
        qr_renderer: QrCodeRenderer | None = None,
        qr_storage: QrStorage | None = None,
    ):
        self.store = store
        self.link_cache = link_cache
        self.hasher = hasher
        self.config = config or ManagerConfig()
        self.defaults = defaults or LinkDefaults()
        self.clock = clock or SystemClock()
        self.keys = keys or KeyGenerator(
            store,
            charset=self.config.key_chars,
            length=self.config.key_length,
            model_key_length=self.config.model_key_length,
        )
        self.qr_renderer = qr_renderer
        self.qr_storage = qr_storage

    # ── Creation ─────────────────────────────────────────────────────────

    async def create(self, spec: LinkSpec, defaults: LinkDefaults | None = None) -> ShortLink:
        return await self._create(spec, defaults or self.defaults)

    async def create_for(
        self,
        linkable: Linkable,
        attached: EntityRef,
        spec: LinkSpec | None = None,
        defaults: LinkDefaults | None = None,
    ) -> ShortLink:
        """Create (or return the existing) link for an entity.

        Generated keys look like ``{kebab(seed)}-{random code}``.
        """
        existing = await self.store.find_link_by_attachment(attached.kind, attached.id)
        if existing is not None:
            return existing

        spec = spec or LinkSpec(destination_url=linkable.get_default_destination())
        if not spec.destination_url:
            spec.destination_url = linkable.get_default_destination()
        spec.attached = attached
        key_prefix = None if spec.key else kebab(linkable.get_key_seed())
        return await self._create(spec, defaults or self.defaults, key_prefix=key_prefix)

    async def _create(
        self, spec: LinkSpec, defaults: LinkDefaults, key_prefix: str | None = None
    ) -> ShortLink:
        now = self.clock.now()

        expires_at = spec.expires_at
        if spec.expires_in_days:
            expires_at = now + timedelta(days=spec.expires_in_days)
        elif expires_at is None and self.config.default_expiry_days:
            expires_at = now + timedelta(days=self.config.default_expiry_days)

        fields: dict[str, Any] = {
            "destination_url": spec.destination_url,
            "title": spec.title,
            "description": spec.description,
            "password": None,
            "password_protected": False,
            "is_active": _pick(spec.is_active, True),
            "activated_at": spec.activated_at or now,
            "expires_at": expires_at,
            "click_limit": spec.click_limit,
            "clicks_count": 0,
            "track_visits": _pick(spec.track_visits, defaults.track_visits),
            "track_ip_address": _pick(spec.track_ip_address, defaults.track_ip_address),
            "track_user_agent": _pick(spec.track_user_agent, defaults.track_user_agent),
            "track_referer": _pick(spec.track_referer, defaults.track_referer),
            "track_geo": _pick(spec.track_geo, defaults.track_geo),
            "utm_parameters": spec.utm_parameters or None,
            "utm_hidden": _pick(spec.utm_hidden, defaults.utm_hidden),
            "redirect_status_code": _pick(
                spec.redirect_status_code, defaults.redirect_status_code
            ),
            "custom_domain": spec.custom_domain,
            "owner_kind": spec.owner.kind if spec.owner else None,
            "owner_id": spec.owner.id if spec.owner else None,
            "attached_kind": spec.attached.kind if spec.attached else None,
            "attached_id": spec.attached.id if spec.attached else None,
            "metadata_": spec.metadata,
            "tags": sorted(set(spec.tags)) if spec.tags else None,
            "group": spec.group,
            "created_at": now,
        }
        if spec.password:
            fields["password"] = self.hasher.hash(spec.password)
            fields["password_protected"] = True

        link = await self._insert(fields, custom_key=spec.key, key_prefix=key_prefix)

        if self.config.qr_enabled:
            await self.generate_qr_code(link)

        # A tombstoned predecessor can never share the key, but a stale entry could.
        await self._drop_cached(link.key)
        return link

    async def _insert(
        self, fields: dict[str, Any], custom_key: str | None, key_prefix: str | None
    ) -> ShortLink:
        for _ in range(INSERT_ATTEMPTS):
            if key_prefix and not custom_key:
                key = await self.keys.generate_prefixed(key_prefix)
            else:
                key = await self.keys.generate(custom_key)
            try:
                return await self.store.insert_link({**fields, "key": key})
            except DuplicateKeyError:
                if custom_key:
                    raise
                logger.info("Key %s was claimed concurrently; drawing another", key)
        logger.error("Could not claim a key after %d inserts", INSERT_ATTEMPTS)
        raise KeyExhaustionError(INSERT_ATTEMPTS)

    # ── Lookup ───────────────────────────────────────────────────────────

    async def find_by_key(self, key: str) -> ShortLink | None:
        link = await self.link_cache.get(key)
        if link is not None:
            return link
        link = await self.store.find_link_by_key(key)
        if link is not None:
            await self.link_cache.put(link)
        return link

    async def get_by_key(self, key: str) -> ShortLink:
        link = await self.find_by_key(key)
        if link is None:
            raise NotFoundError(key)
        return link

    async def resolve(self, key: str) -> ShortLink:
        """Look up ``key`` and apply the access gate."""
        link = await self.get_by_key(key)
        access.ensure_accessible(link, self.clock.now())
        return link

    def is_accessible(self, link: ShortLink) -> bool:
        return access.is_accessible(link, self.clock.now())

    def is_expired(self, link: ShortLink) -> bool:
        return access.is_expired(link, self.clock.now())

    # ── URLs ─────────────────────────────────────────────────────────────

    def get_short_url(self, link: ShortLink) -> str:
        domain = (link.custom_domain or self.config.domain).rstrip("/")
        prefix = self.config.prefix.lstrip("/")
        return f"{domain}/{prefix}/{link.key}"

    def get_destination_url(
        self, link: ShortLink, extra_params: dict[str, str] | None = None
    ) -> str:
        url = link.destination_url
        params: dict[str, Any] = dict(extra_params or {})
        utm = self.config.utm

        if utm.enabled and link.utm_parameters:
            params = {**link.utm_parameters, **params}

        if utm.enabled and utm.hidden:
            if params.get("utm_source") is None:
                params["utm_source"] = utm.source
            if params.get("utm_medium") is None:
                params["utm_medium"] = utm.medium

        params = {k: v for k, v in params.items() if v is not None}
        if params:
            separator = "&" if "?" in url else "?"
            url = f"{url}{separator}{urlencode(params)}"
        return url

    # ── Passwords ────────────────────────────────────────────────────────

    def verify_password(self, link: ShortLink, candidate: str | None) -> bool:
        if not link.password_protected or not link.password:
            return True
        if not candidate:
            return False
        return self.hasher.verify(candidate, link.password)

    def check_password(self, link: ShortLink, candidate: str | None) -> None:
        if not self.verify_password(link, candidate):
            raise CredentialError("Invalid password" if candidate else "Password required")

    # ── Mutation ─────────────────────────────────────────────────────────

    async def update(self, link: ShortLink, changes: dict[str, Any]) -> ShortLink:
        fields = {name: value for name, value in changes.items() if name in UPDATABLE_FIELDS}
        if "password" in changes:
            password = changes["password"]
            fields["password"] = self.hasher.hash(password) if password else None
            fields["password_protected"] = bool(password)
        if changes.get("expires_in_days"):
            fields["expires_at"] = self.clock.now() + timedelta(days=changes["expires_in_days"])
        if "tags" in fields and fields["tags"]:
            fields["tags"] = sorted(set(fields["tags"]))

        await self.store.update_link(link.id, fields)
        await self._drop_cached(link.key)
        updated = await self.store.find_link_by_key(link.key)
        if updated is None:
            raise NotFoundError(link.key)
        return updated

    async def delete(self, link: ShortLink) -> None:
        """Soft delete. The key stays claimed forever."""
        await self.store.soft_delete_link(link.id, self.clock.now())
        await self._drop_cached(link.key)

    async def _drop_cached(self, key: str) -> None:
        await self.link_cache.invalidate(key)
        # Again after commit, in case a concurrent miss re-cached the old row.
        self.store.mark_stale(key)

    # ── QR codes ─────────────────────────────────────────────────────────

    async def generate_qr_code(self, link: ShortLink) -> str | None:
        """Render and store a QR code for the short URL. Never raises.

        Returns a URL for the stored image, or None when rendering is not
        configured or failed.
        """
        if self.qr_renderer is None or self.qr_storage is None:
            return None

        options = self.config.qr
        short_url = self.get_short_url(link)
        try:
            body = await asyncio.wait_for(
                asyncio.to_thread(self.qr_renderer.render, short_url, options),
                self.config.qr_timeout,
            )
            path = await asyncio.wait_for(
                asyncio.to_thread(self.qr_storage.save, link.key, options.format, body),
                self.config.qr_timeout,
            )
            await self.store.update_link(link.id, {"qr_code_path": path})
            set_committed_value(link, "qr_code_path", path)
            return self.qr_storage.url(path)
        except Exception:
            logger.warning("QR code generation failed for link %s", link.key, exc_info=True)
            return None
