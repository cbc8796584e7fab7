# © 2024–2025 Harnisch LLC. All Rights Reserved.
# Licensed exclusively for use by St. Edward Church & School (Nashville, TN).
# Unauthorized use, distribution, or modification is prohibited.

"""
Account Resolver - finds the scheduling account for a shift holder, or
creates one with collision-safe identifier and username candidates
"""
import logging
import re
import secrets
import string
from dataclasses import asdict
from threading import Lock
from typing import Callable, Dict, Optional, Set

import config
from errors import AccountCreationError, SchedulingAPIError
from models import Identity
from utils.cache import TTLCache
from utils.tasks import BestEffortTasks

logger = logging.getLogger(__name__)

COLLISION_FIELD_RE = re.compile(r'\b(IDENTIFIER|USERNAME)\b', re.IGNORECASE)
EMAIL_RE = re.compile(r'^[^@\s]+@[^@\s]+\.[^@\s]+$')


def sanitize_name(value: Optional[str]) -> str:
    """Keep letters, digits and spaces only"""
    return re.sub(r'[^A-Za-z0-9 ]', '', value or '').strip()


def collision_field(message: Optional[str]) -> Optional[str]:
    """'IDENTIFIER' or 'USERNAME' when an error message names one, else None"""
    match = COLLISION_FIELD_RE.search(message or '')
    return match.group(1).upper() if match else None


def generate_password(length: int = 12) -> str:
    alphabet = string.ascii_letters + string.digits
    return ''.join(secrets.choice(alphabet) for _ in range(length))


class AccountResolver:
    """Search-or-create identity lookup against the scheduling system"""

    def __init__(self, client, cache: Optional[TTLCache] = None, tasks: Optional[BestEffortTasks] = None,
                 max_attempts: Optional[int] = None, username_start: Optional[int] = None,
                 password_factory: Callable[[], str] = generate_password):
        self.client = client
        self.cache = cache or TTLCache()
        self.tasks = tasks or BestEffortTasks()
        self.max_attempts = max_attempts or config.ACCOUNT_CREATE_MAX_ATTEMPTS
        self.username_start = config.USERNAME_START_SUFFIX if username_start is None else username_start
        self.password_factory = password_factory

        self._keys_by_identity: Dict[int, Set[str]] = {}
        self._keys_lock = Lock()
        self._create_lock = Lock()

    # ------------------------------------------------------------------
    # cache helpers
    # ------------------------------------------------------------------

    @staticmethod
    def cache_key(first_name: str, last_name: str, email: Optional[str] = None,
                  external_id: Optional[str] = None) -> str:
        if external_id:
            return f"ext:{external_id}"
        return f"{first_name}_{last_name}_{email or ''}"

    def _remember(self, key: str, identity: Identity):
        self.cache.set(key, asdict(identity))
        with self._keys_lock:
            self._keys_by_identity.setdefault(identity.id, set()).add(key)

    def _cached(self, key: str) -> Optional[Identity]:
        data = self.cache.get(key)
        return Identity(**data) if data else None

    # ------------------------------------------------------------------
    # search
    # ------------------------------------------------------------------

    def find(self, first_name: str, last_name: str, email: Optional[str] = None,
             external_id: Optional[str] = None) -> Optional[Identity]:
        """
        Search by external id, then email, then name; the first hit wins

        Search errors propagate to the caller.
        """
        key = self.cache_key(first_name, last_name, email, external_id)
        cached = self._cached(key)
        if cached:
            logger.debug(f"Using cached identity for {first_name} {last_name}")
            return cached

        identity = None
        if external_id:
            identity = self.client.search_by_external_id(external_id)
        if identity is None and email:
            identity = self.client.search_by_email(email)
        if identity is None:
            identity = self.client.search_by_name(first_name, last_name)
        if identity is None:
            return None

        self._remember(key, identity)
        self._backfill(identity, email, external_id)
        return identity

    def _backfill(self, identity: Identity, email: Optional[str], external_id: Optional[str]):
        """Copy a missing external id or email onto the account, best-effort"""
        needs_external = bool(external_id) and identity.external_user_id != external_id
        needs_email = bool(email) and identity.email != email
        if not (needs_external or needs_email):
            return

        self.tasks.dispatch(
            f"update_identity:{identity.id}",
            self.client.update_identity,
            identity.id,
            external_user_id=external_id if needs_external else None,
            email=email if needs_email else None,
        )

    # ------------------------------------------------------------------
    # create
    # ------------------------------------------------------------------

    def create(self, first_name: str, last_name: str, email: Optional[str],
               external_id: Optional[str]) -> Identity:
        """
        Create an account, walking identifier and username suffixes on collisions

        Raises AccountCreationError for unusable names or email (before any
        network call), for non-collision rejections, and once every attempt
        is used up.
        """
        given = sanitize_name(first_name)
        surname = sanitize_name(last_name)
        if not given or not surname:
            raise AccountCreationError(
                f"Invalid name after removing special characters: {first_name!r} {last_name!r}"
            )
        if not email or not EMAIL_RE.match(email):
            raise AccountCreationError(f"Invalid email for {given} {surname}: {email!r}")

        prefix = given[0] + surname[0]
        base_username = (given[0] + surname[:2]).upper()
        identifier_suffix = self.client.count_identifier_prefix(prefix) + 1
        username_suffix = self.username_start
        password = self.password_factory()

        logger.info(f"Creating scheduling account for {given} {surname} (max {self.max_attempts} attempts)")

        for attempt in range(1, self.max_attempts + 1):
            identifier = f"{prefix}{identifier_suffix}"
            username = f"{base_username}{username_suffix}"
            body = {
                'IDENTIFIER': identifier,
                'GIVEN_NAME': given,
                'SURNAME': surname,
                'USER_TYPE': 1,
                'USERNAME': username,
                'PASSWORD': password,
                'EMAIL_ADDRESS': email,
                'IS_ADMINISTRATOR': False,
                'USE_APPBOOK': True,
                'IS_ROAMING_USER': True,
                'EXTERNAL_USER_ID': external_id,
            }

            try:
                result = self.client.create_user(body)
            except SchedulingAPIError as e:
                raise AccountCreationError(f"Account creation for {given} {surname} failed: {e}") from e

            if result.get('success'):
                logger.info(f"✅ Created account {username} ({identifier}) -> {result['id']}")
                return Identity(id=result['id'], external_user_id=external_id, email=email,
                                username=username, created=True)

            field = collision_field(result.get('error'))
            if field == 'IDENTIFIER':
                identifier_suffix += 1
            elif field == 'USERNAME':
                username_suffix += 1
            else:
                raise AccountCreationError(
                    f"Account creation for {given} {surname} rejected: {result.get('error')}"
                )
            logger.info(f"Attempt {attempt}: {field} {identifier if field == 'IDENTIFIER' else username} taken")

        raise AccountCreationError(
            f"Failed to create account for {given} {surname} after {self.max_attempts} attempts"
        )

    # ------------------------------------------------------------------
    # public entry points
    # ------------------------------------------------------------------

    def resolve(self, first_name: str, last_name: str, email: Optional[str] = None,
                external_id: Optional[str] = None) -> Identity:
        """Find the account for a shift holder, creating it on a total miss"""
        identity = self.find(first_name, last_name, email, external_id)
        if identity:
            return identity

        with self._create_lock:
            # Another worker may have created it while we waited
            key = self.cache_key(first_name, last_name, email, external_id)
            identity = self._cached(key)
            if identity:
                return identity

            identity = self.create(first_name, last_name, email, external_id)
            self._remember(key, identity)
            return identity

    def record_work(self, identity: Identity, branch_code: str) -> bool:
        """
        Record a first shift at a branch, best-effort

        Returns True when the work history was updated.
        """
        if branch_code in identity.work_history:
            return False

        outcome = self.tasks.dispatch(
            f"work_history:{identity.id}:{branch_code}",
            self.client.add_work_history,
            identity.id,
            branch_code,
        )
        if not (outcome.ok and outcome.result):
            return False

        identity.work_history.append(branch_code)
        with self._keys_lock:
            keys = list(self._keys_by_identity.get(identity.id, ()))
        for key in keys:
            cached = self._cached(key)
            if cached and branch_code not in cached.work_history:
                cached.work_history.append(branch_code)
                self._remember(key, cached)
        return True
