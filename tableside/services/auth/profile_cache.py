"""Local persistence of the signed-in profile between app loads."""
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional, Union

from pydantic import ValidationError as SchemaValidationError

from tableside.models.principal import CachedProfile

logger = logging.getLogger(__name__)


class ProfileCache(ABC):
    """Where the last resolved profile is remembered."""

    @abstractmethod
    def load(self) -> Optional[CachedProfile]:
        """Return the cached profile, or None."""

    @abstractmethod
    def save(self, profile: CachedProfile) -> None:
        """Replace the cached profile. Storage failures raise OSError."""

    @abstractmethod
    def clear(self) -> None:
        """Forget the cached profile."""


class MemoryProfileCache(ProfileCache):
    """Cache that lives as long as the process."""

    def __init__(self, profile: Optional[CachedProfile] = None):
        self._profile = profile

    def load(self) -> Optional[CachedProfile]:
        return self._profile

    def save(self, profile: CachedProfile) -> None:
        self._profile = profile

    def clear(self) -> None:
        self._profile = None


class FileProfileCache(ProfileCache):
    """Cache persisted as a JSON document."""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)

    def load(self) -> Optional[CachedProfile]:
        if not self.path.exists():
            return None
        try:
            return CachedProfile.model_validate_json(self.path.read_text(encoding="utf-8"))
        except (OSError, SchemaValidationError) as e:
            # An unreadable cache is the same as no cache; drop it
            logger.warning(f"Discarding unreadable profile cache {self.path}: {e}")
            self.clear()
            return None

    def save(self, profile: CachedProfile) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp_path.write_text(profile.model_dump_json(), encoding="utf-8")
        tmp_path.replace(self.path)

    def clear(self) -> None:
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Could not remove profile cache {self.path}: {e}")
