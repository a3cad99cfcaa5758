"""JSON-backed storage of registered principals."""

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

import structlog

from ..config import AutomationConfig, get_config
from ..errors import DuplicateKey, StoreCorrupt


logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class Principal:
    """A registered identity with credentials and a notification address."""
    display_name: str
    login_id: str
    secret: str
    notify_address: str

    @property
    def is_schedulable(self) -> bool:
        """True when every field needed for an automated run is present."""
        return bool(self.login_id and self.secret and self.notify_address)

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "Principal":
        """Build a principal from a persisted ``{name, username, password, email}`` record."""
        return cls(
            display_name=str(record.get("name") or "").strip(),
            login_id=str(record.get("username") or "").strip(),
            secret=str(record.get("password") or ""),
            notify_address=str(record.get("email") or "").strip(),
        )

    def to_record(self) -> Dict[str, str]:
        return {
            "name": self.display_name,
            "username": self.login_id,
            "password": self.secret,
            "email": self.notify_address,
        }

    def __repr__(self) -> str:
        return f"Principal(login_id={self.login_id!r}, notify_address={self.notify_address!r})"


class PrincipalStore:
    """Loads, saves and de-duplicates the principal list."""

    def __init__(self, users_file: Optional[str] = None, config: Optional[AutomationConfig] = None):
        self.config = config or get_config()
        self.path = Path(users_file or self.config.users_file)
        self._principals: List[Principal] = []
        self.last_error: Optional[StoreCorrupt] = None

    @property
    def principals(self) -> List[Principal]:
        return list(self._principals)

    def get(self, login_id: str) -> Optional[Principal]:
        for principal in self._principals:
            if principal.login_id == login_id:
                return principal
        return None

    def load(self, strict: bool = False) -> List[Principal]:
        """Read the persisted principal list.

        Missing or malformed data yields an empty list and records a
        ``StoreCorrupt`` error on ``last_error``. With ``strict=True`` the
        error is raised instead.
        """
        try:
            records = self.read_raw()
            if not isinstance(records, list):
                raise StoreCorrupt(f"Expected a list of principals in {self.path}")
        except StoreCorrupt as e:
            self._principals = []
            self.last_error = e
            logger.warning("Principal store unavailable, continuing with no principals",
                           path=str(self.path), error=str(e))
            if strict:
                raise
            return []

        principals: List[Principal] = []
        seen = set()
        for index, record in enumerate(records):
            if not isinstance(record, dict):
                logger.warning("Skipping malformed principal record", index=index)
                continue
            principal = Principal.from_record(record)
            if principal.login_id in seen:
                logger.warning("Skipping duplicate principal record", login_id=principal.login_id, index=index)
                continue
            seen.add(principal.login_id)
            principals.append(principal)

        self._principals = principals
        self.last_error = None
        logger.info("Loaded principals", count=len(principals), path=str(self.path))
        return list(principals)

    def read_raw(self) -> Any:
        """Return the persisted payload as stored on disk."""
        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                return json.load(f)
        except FileNotFoundError as e:
            raise StoreCorrupt(f"Principal file not found: {self.path}") from e
        except (OSError, ValueError) as e:
            raise StoreCorrupt(f"Could not read principal file {self.path}: {e}") from e

    def save(self, principals: Optional[List[Principal]] = None):
        """Persist the full principal list, replacing the previous content."""
        if principals is not None:
            self._principals = list(principals)

        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, 'w', encoding='utf-8') as f:
            json.dump([p.to_record() for p in self._principals], f, indent=2)

        logger.debug("Saved principals", count=len(self._principals), path=str(self.path))

    def add(self, candidate: Principal) -> Principal:
        """Register a new principal, rejecting duplicate login ids."""
        if self.get(candidate.login_id) is not None:
            logger.info("Rejected duplicate principal", login_id=candidate.login_id)
            raise DuplicateKey(candidate.login_id)

        self._principals.append(candidate)
        try:
            self.save()
        except OSError:
            self._principals.remove(candidate)
            raise

        logger.info("Added principal", login_id=candidate.login_id)
        return candidate
