"""
Process-wide session state for the signed-in user.

Holds a read-only ProfileSnapshot (home location + children) for callers
such as the place list and the child-info prompt.  Authentication itself is
the hosting provider's job: initialize() receives an already-issued user id.

The scoring functions never read this module; callers pass
snapshot.children into them explicitly.

Usage:
    session = get_session()
    session.initialize(client, user_id)
    ...
    expected_rating(suitability, session.snapshot.children)
    ...
    session.teardown()
"""

import logging
import threading
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Optional, Tuple

from age_calculator import Child, is_valid_birth_date
from location_calculator import Coordinate
from supabase_client import SupabaseClient

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProfileSnapshot:
    """Immutable view of a user's profile at load time."""
    user_id: str
    home: Optional[Coordinate] = None
    home_address: Optional[str] = None
    children: Tuple[Child, ...] = field(default_factory=tuple)
    needs_child_info: bool = False

    @property
    def has_location(self) -> bool:
        return self.home is not None

    @classmethod
    def from_profile(cls, user_id: str, profile: Dict[str, Any]) -> "ProfileSnapshot":
        home = None
        lat, lng = profile.get("home_lat"), profile.get("home_lng")
        if lat is not None and lng is not None:
            try:
                home = Coordinate(float(lat), float(lng))
            except (TypeError, ValueError):
                logger.warning("Ignoring invalid home location for %s: (%r, %r)", user_id, lat, lng)
        children = tuple(Child.from_row(r) for r in profile.get("user_children") or [])
        return cls(
            user_id=user_id,
            home=home,
            home_address=profile.get("home_address"),
            children=children,
            needs_child_info=not children,
        )


def load_profile_snapshot(client: SupabaseClient, user_id: str) -> ProfileSnapshot:
    """Load a user's profile, creating an empty one on first sign-in.

    A brand-new profile has no children, so needs_child_info is set.
    Raises BackendError if the empty profile cannot be created.
    """
    profile = client.get_user_profile(user_id)
    if profile is None:
        logger.info("No profile for %s, creating one", user_id)
        created = client.upsert_user_profile(user_id, {
            "home_lat": None,
            "home_lng": None,
            "home_address": None,
        }) or {}
        profile = {**created, "user_children": []}
    return ProfileSnapshot.from_profile(user_id, profile)


class SessionState:
    """The signed-in user's session.  One instance per process."""

    def __init__(self):
        self._lock = threading.Lock()
        self._client: Optional[SupabaseClient] = None
        self._snapshot: Optional[ProfileSnapshot] = None

    @property
    def snapshot(self) -> Optional[ProfileSnapshot]:
        return self._snapshot

    @property
    def is_active(self) -> bool:
        return self._snapshot is not None

    def initialize(self, client: SupabaseClient, user_id: str) -> ProfileSnapshot:
        snapshot = load_profile_snapshot(client, user_id)
        with self._lock:
            self._client = client
            self._snapshot = snapshot
        logger.info(
            "Session started for %s (children=%d, has_location=%s)",
            user_id, len(snapshot.children), snapshot.has_location,
        )
        return snapshot

    def _require(self) -> Tuple[SupabaseClient, ProfileSnapshot]:
        if self._client is None or self._snapshot is None:
            raise RuntimeError("session is not initialized")
        return self._client, self._snapshot

    def refresh(self) -> ProfileSnapshot:
        client, current = self._require()
        snapshot = load_profile_snapshot(client, current.user_id)
        with self._lock:
            self._snapshot = snapshot
        return snapshot

    def add_child(self, nickname: str, birth_year: int, birth_month: int) -> Dict[str, Any]:
        """Register a child and reload the profile.

        Raises ValueError for a blank nickname or an implausible birth date,
        BackendError if the backend rejects the insert.
        """
        client, current = self._require()
        nickname = (nickname or "").strip()
        if not nickname:
            raise ValueError("nickname is required")
        if not is_valid_birth_date(birth_year, birth_month):
            raise ValueError(f"invalid birth date: {birth_year}-{birth_month}")

        row = client.add_child(current.user_id, {
            "nickname": nickname,
            "birth_year": birth_year,
            "birth_month": birth_month,
        })
        self.refresh()
        return row

    def skip_child_info(self):
        """Dismiss the child-info prompt for this session."""
        _, current = self._require()
        with self._lock:
            self._snapshot = replace(current, needs_child_info=False)

    def teardown(self):
        with self._lock:
            user_id = self._snapshot.user_id if self._snapshot else None
            self._client = None
            self._snapshot = None
        if user_id:
            logger.info("Session ended for %s", user_id)


_session = SessionState()


def get_session() -> SessionState:
    return _session
