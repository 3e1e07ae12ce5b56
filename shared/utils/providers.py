"""
shared/utils/providers.py
Provider tagged union. A booking, service or review targets exactly one
of two disjoint provider kinds; this module turns the stored
(provider_id, provider_type) pair into a concrete Organizer/Supplier row.
"""

from dataclasses import dataclass
from typing import Optional, Union

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from shared.models.models import Organizer, ProviderType, Supplier, User, UserRole
from shared.utils.errors import DomainValidationError

ProviderRecord = Union[Organizer, Supplier]

PROVIDER_MODELS = {
    ProviderType.ORGANIZER: Organizer,
    ProviderType.SUPPLIER: Supplier,
}

ROLE_PROVIDER_TYPES = {
    UserRole.ORGANIZER: ProviderType.ORGANIZER,
    UserRole.SUPPLIER: ProviderType.SUPPLIER,
}


@dataclass(frozen=True)
class ProviderRef:
    provider_type: ProviderType
    provider_id: int

    @classmethod
    def organizer(cls, provider_id: int) -> "ProviderRef":
        return cls(ProviderType.ORGANIZER, provider_id)

    @classmethod
    def supplier(cls, provider_id: int) -> "ProviderRef":
        return cls(ProviderType.SUPPLIER, provider_id)

    @classmethod
    def parse(cls, provider_type: str, provider_id: int) -> "ProviderRef":
        """From a URL segment such as 'organizer' or 'Supplier'."""
        try:
            return cls(ProviderType(provider_type.capitalize()), provider_id)
        except ValueError:
            raise DomainValidationError(f"Unknown provider type: {provider_type}")

    @classmethod
    def of(cls, row) -> "ProviderRef":
        """Build from any row carrying provider_id/provider_type (Booking, Service)."""
        return cls(ProviderType(row.provider_type), row.provider_id)

    @property
    def model(self):
        return PROVIDER_MODELS[self.provider_type]

    @property
    def slug(self) -> str:
        """URL segment for the provider's dashboard, e.g. 'organizer'."""
        return self.provider_type.value.lower()

    def __str__(self) -> str:
        return f"{self.provider_type.value}#{self.provider_id}"


async def resolve_provider(
    db: AsyncSession,
    ref: ProviderRef,
    active_only: bool = False,
) -> Optional[ProviderRecord]:
    query = select(ref.model).where(ref.model.id == ref.provider_id)
    if active_only:
        query = query.where(ref.model.is_active == True)  # noqa: E712
    result = await db.execute(query)
    return result.scalar_one_or_none()


async def provider_for_user(db: AsyncSession, user: User) -> Optional[ProviderRef]:
    """The ProviderRef owned by this user, or None for clients/admins."""
    provider_type = ROLE_PROVIDER_TYPES.get(UserRole(user.role))
    if provider_type is None:
        return None
    model = PROVIDER_MODELS[provider_type]
    provider_id = await db.scalar(select(model.id).where(model.user_id == user.id))
    if provider_id is None:
        return None
    return ProviderRef(provider_type, provider_id)


async def provider_user(db: AsyncSession, ref: ProviderRef) -> Optional[User]:
    """The login account behind a provider, used as notification target."""
    result = await db.execute(
        select(User)
        .join(ref.model, ref.model.user_id == User.id)
        .where(ref.model.id == ref.provider_id)
    )
    return result.scalar_one_or_none()


async def provider_display_name(db: AsyncSession, ref: ProviderRef) -> str:
    provider = await resolve_provider(db, ref)
    if provider and provider.business_name:
        return provider.business_name
    user = await provider_user(db, ref)
    return user.full_name if user else str(ref)
