import asyncio
import logging
import uuid
from typing import Dict

import requests
from werkzeug.security import generate_password_hash, check_password_hash

from .errors import NotFoundError, StoreUnavailableError, ValidationError

logger = logging.getLogger(__name__)


class IdentityProvider:
    """Credential store that owns the login identity behind a user profile."""

    async def create_identity(self, email: str, password: str) -> str:
        raise NotImplementedError

    async def delete_identity(self, identity_id: str) -> None:
        raise NotImplementedError

    async def authenticate(self, email: str, password: str) -> str:
        raise NotImplementedError

    async def close(self) -> None:
        return None


def _validate_credentials(email: str, password: str):
    if not email or '@' not in email:
        raise ValidationError("A valid email is required")
    if not password:
        raise ValidationError("Password is required")


class InMemoryIdentityProvider(IdentityProvider):
    def __init__(self):
        self._identities: Dict[str, dict] = {}

    def _find_by_email(self, email: str):
        email = email.strip().lower()
        for identity_id, record in self._identities.items():
            if record['email'] == email:
                return identity_id, record
        return None, None

    async def create_identity(self, email: str, password: str) -> str:
        _validate_credentials(email, password)
        existing_id, _ = self._find_by_email(email)
        if existing_id:
            raise ValidationError(f"An account already exists for {email}")

        identity_id = uuid.uuid4().hex
        self._identities[identity_id] = {
            'email': email.strip().lower(),
            'password_hash': generate_password_hash(password),
        }
        return identity_id

    async def delete_identity(self, identity_id: str) -> None:
        if self._identities.pop(identity_id, None) is None:
            raise NotFoundError('identity', identity_id)

    async def authenticate(self, email: str, password: str) -> str:
        _validate_credentials(email, password)
        identity_id, record = self._find_by_email(email)
        if not record or not check_password_hash(record['password_hash'], password):
            raise ValidationError("Invalid email or password")
        return identity_id

    def exists(self, identity_id: str) -> bool:
        return identity_id in self._identities


class HttpIdentityProvider(IdentityProvider):
    """
    Talks JSON to an external identity service:
    - POST   {base}/identities          -> {"id": ...}
    - DELETE {base}/identities/{id}
    - POST   {base}/identities/verify   -> {"id": ...}
    Blocking requests calls run in a worker thread.
    """

    def __init__(self, base_url: str, timeout: float = 10):
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout

    def _request(self, method: str, path: str, payload: dict = None) -> requests.Response:
        url = f"{self.base_url}{path}"
        try:
            return requests.request(method, url, json=payload, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            logger.error(f"Identity service unreachable at {url}: {e}")
            raise StoreUnavailableError(f"Identity service unavailable: {e}") from e

    async def create_identity(self, email: str, password: str) -> str:
        _validate_credentials(email, password)
        resp = await asyncio.to_thread(
            self._request, 'POST', '/identities', {'email': email, 'password': password}
        )
        _raise_for_server_error(resp)
        if resp.status_code >= 400:
            raise ValidationError(_error_message(resp, 'Identity rejected'))
        return _identity_id(resp)

    async def delete_identity(self, identity_id: str) -> None:
        resp = await asyncio.to_thread(self._request, 'DELETE', f'/identities/{identity_id}')
        if resp.status_code == 404:
            raise NotFoundError('identity', identity_id)
        _raise_for_server_error(resp)
        if resp.status_code >= 400:
            raise ValidationError(_error_message(resp, f"Identity {identity_id} could not be deleted"))

    async def authenticate(self, email: str, password: str) -> str:
        _validate_credentials(email, password)
        resp = await asyncio.to_thread(
            self._request, 'POST', '/identities/verify', {'email': email, 'password': password}
        )
        _raise_for_server_error(resp)
        if resp.status_code >= 400:
            raise ValidationError("Invalid email or password")
        return _identity_id(resp)


def _raise_for_server_error(resp: requests.Response):
    if resp.status_code >= 500:
        raise StoreUnavailableError(f"Identity service error: {resp.status_code}")


def _error_message(resp: requests.Response, default: str) -> str:
    try:
        return resp.json().get('error') or default
    except (ValueError, AttributeError):
        return default


def _identity_id(resp: requests.Response) -> str:
    try:
        return resp.json()['id']
    except (ValueError, KeyError, TypeError) as e:
        logger.error(f"Identity service answered {resp.status_code} without an identity id")
        raise StoreUnavailableError("Identity service returned no identity id") from e


def build_identity_provider(config) -> IdentityProvider:
    backend = config.get('IDENTITY_BACKEND', 'memory')

    if backend == 'memory':
        return InMemoryIdentityProvider()
    if backend == 'http':
        return HttpIdentityProvider(
            config['IDENTITY_SERVICE_URL'],
            timeout=config.get('IDENTITY_SERVICE_TIMEOUT', 10)
        )

    raise ValueError(f"Unknown IDENTITY_BACKEND: {backend}")
