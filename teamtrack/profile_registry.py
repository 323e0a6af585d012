import logging
from typing import Dict, Iterable, Optional

from .errors import NotFoundError, ValidationError
from .identity import IdentityProvider
from .models import USER_PROFILES, UserProfile, encode_datetime, pick_changes, utcnow
from .store import DocumentStore, eq

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = ('first_name', 'last_name', 'phone_number', 'date_of_birth')


class ProfileRegistry:
    """User profile documents, keyed by the id of the identity behind them."""

    def __init__(self, store: DocumentStore, identity: IdentityProvider):
        self.store = store
        self.identity = identity

    async def register_user(
        self,
        email: str,
        password: str,
        first_name: str = None,
        last_name: str = None,
        phone_number: str = None,
        date_of_birth: str = None
    ) -> UserProfile:
        """
        Create the login identity, then the profile document for it.
        If the profile cannot be written the identity is deleted again.
        """
        if not email or not email.strip():
            raise ValidationError("Email is required")
        email = email.strip().lower()

        if await self.find_by_email(email):
            raise ValidationError(f"An account already exists for {email}")

        identity_id = await self.identity.create_identity(email, password)

        profile = UserProfile(
            id=identity_id,
            email=email,
            first_name=first_name,
            last_name=last_name,
            phone_number=phone_number,
            date_of_birth=date_of_birth
        )
        try:
            await self.store.set(USER_PROFILES, profile.id, profile.to_document())
        except Exception as e:
            logger.error(f"Failed to store profile for {identity_id}, removing its identity: {e}")
            await self.identity.delete_identity(identity_id)
            raise

        logger.info(f"Registered user {profile.id}")
        return profile

    async def find_profile(self, user_id: str) -> Optional[UserProfile]:
        doc = await self.store.get(USER_PROFILES, user_id)
        return UserProfile.from_document(doc) if doc else None

    async def get_profile(self, user_id: str) -> UserProfile:
        profile = await self.find_profile(user_id)
        if profile is None:
            raise NotFoundError('user', user_id)
        return profile

    async def find_by_email(self, email: str) -> Optional[UserProfile]:
        if not email:
            return None
        docs = await self.store.query(
            USER_PROFILES,
            [eq('email', email.strip().lower())],
            limit=1
        )
        return UserProfile.from_document(docs[0]) if docs else None

    async def get_profiles(self, user_ids: Iterable[str]) -> Dict[str, UserProfile]:
        """Batch lookup; ids without a profile are simply absent from the result."""
        profiles = {}
        for user_id in dict.fromkeys(user_ids):
            doc = await self.store.get(USER_PROFILES, user_id)
            if doc is not None:
                profiles[user_id] = UserProfile.from_document(doc)
        return profiles

    async def update_profile(self, user_id: str, changes: dict) -> UserProfile:
        """Change personal details. The email is the login and stays with the identity."""
        profile = await self.get_profile(user_id)
        if not profile.is_active:
            raise ValidationError(f"Account {user_id} is being deleted")

        updates = pick_changes(changes, EDITABLE_FIELDS)
        updates['updated_at'] = encode_datetime(utcnow())
        doc = await self.store.update(USER_PROFILES, user_id, updates)
        return UserProfile.from_document(doc)

    async def deactivate_profile(self, user_id: str) -> UserProfile:
        doc = await self.store.update(USER_PROFILES, user_id, {
            'is_active': False,
            'updated_at': encode_datetime(utcnow()),
        })
        return UserProfile.from_document(doc)

    async def delete_profile(self, user_id: str) -> bool:
        return await self.store.delete(USER_PROFILES, user_id)
