"""
TibiaData API client used to confirm that a party member's character exists.

Lookups are external facts, not authoritative storage: a failed or timed
out call is reported as None and the caller decides what to do with it.
"""

import logging
import time
from dataclasses import dataclass
from typing import Dict, Optional, Tuple
from urllib.parse import quote

import httpx

from huntschedule.utils.constants import CHARACTER_CACHE_SECONDS, TIBIADATA_API_URL

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CharacterLookup:
    name: str
    exists: bool
    world: Optional[str] = None
    vocation: Optional[str] = None
    level: int = 0


class TibiaDataValidator:
    """Looks characters up on TibiaData and caches answers for a few minutes."""

    def __init__(
        self,
        base_url: str = TIBIADATA_API_URL,
        cache_seconds: int = CHARACTER_CACHE_SECONDS,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.cache_seconds = cache_seconds
        self.timeout = timeout
        self._transport = transport
        self._cache: Dict[str, Tuple[float, CharacterLookup]] = {}

    def _cached(self, key: str) -> Optional[CharacterLookup]:
        entry = self._cache.get(key)
        if entry is None:
            return None
        stored_at, lookup = entry
        if time.monotonic() - stored_at > self.cache_seconds:
            del self._cache[key]
            return None
        return lookup

    def _store(self, key: str, lookup: CharacterLookup) -> None:
        now = time.monotonic()
        expired = [k for k, (stored_at, _) in self._cache.items() if now - stored_at > self.cache_seconds]
        for k in expired:
            del self._cache[k]
        self._cache[key] = (now, lookup)

    def clear_cache(self) -> None:
        self._cache.clear()

    async def validate_character(self, name: str) -> Optional[CharacterLookup]:
        """
        Look a character up by name.

        Args:
            name: Character name as typed by the user

        Returns:
            CharacterLookup (exists=False when the API knows no such character),
            or None if the API could not be reached
        """
        key = name.strip().lower()
        cached = self._cached(key)
        if cached is not None:
            return cached

        url = f"{self.base_url}/character/{quote(name.strip())}"
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                resp = await client.get(url)
                resp.raise_for_status()
                data = resp.json()
        except httpx.HTTPStatusError as e:
            logger.warning(f"TibiaData returned {e.response.status_code} for character {name}")
            return None
        except httpx.RequestError as e:
            logger.error(f"Error validating character {name} with TibiaData: {e}")
            return None
        except ValueError as e:
            logger.warning(f"TibiaData sent an unreadable body for character {name}: {e}")
            return None

        try:
            lookup = _parse_character(name, data)
        except (AttributeError, TypeError, ValueError) as e:
            logger.warning(f"TibiaData sent an unexpected payload for character {name}: {e}")
            return None

        self._store(key, lookup)
        return lookup


def _parse_character(name: str, data: Dict) -> CharacterLookup:
    character = ((data.get("character") or {}).get("character")) or {}
    if not character.get("name"):
        return CharacterLookup(name=name, exists=False)
    return CharacterLookup(
        name=character["name"],
        exists=True,
        world=character.get("world"),
        vocation=character.get("vocation"),
        level=int(character.get("level") or 0),
    )


_validator: Optional[TibiaDataValidator] = None


def get_character_validator() -> TibiaDataValidator:
    """Get the process-wide validator instance."""
    global _validator
    if _validator is None:
        _validator = TibiaDataValidator()
    return _validator
