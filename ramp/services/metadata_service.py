"""Feature display-name metadata store."""
import json
from pathlib import Path
from typing import Dict, Union

from ramp.constants import CONFIG_DIR, FEATURE_METADATA_FILE
from ramp.logging_config import get_logger
from ramp.utils.locking import exclusive_lock, write_json_atomic

logger = get_logger(__name__)


class MetadataStore:
    """Persists optional per-feature metadata in ``.ramp/feature_metadata.json``.

    Metadata has its own lifecycle: a feature without an entry is normal, and
    a broken file degrades to empty metadata rather than blocking an operation.
    """

    def __init__(self, project_dir: Union[str, Path]):
        self.project_dir = Path(project_dir)
        self.metadata_file = self.project_dir / CONFIG_DIR / FEATURE_METADATA_FILE
        self.lock_file = self.metadata_file.with_suffix(".lock")

    def _load(self) -> Dict[str, Dict]:
        if not self.metadata_file.exists():
            return {}
        try:
            with open(self.metadata_file) as f:
                data = json.load(f)
        except (json.JSONDecodeError, OSError) as e:
            logger.warning(f"Failed to read feature metadata: {e}")
            return {}
        if not isinstance(data, dict):
            logger.warning("Feature metadata is not a JSON object, ignoring it")
            return {}
        return {k: v for k, v in data.items() if isinstance(v, dict)}

    def _save(self, data: Dict[str, Dict]) -> None:
        self.metadata_file.parent.mkdir(parents=True, exist_ok=True)
        write_json_atomic(self.metadata_file, data)

    def get_display_name(self, feature_name: str) -> str:
        with exclusive_lock(self.lock_file):
            return self._load().get(feature_name, {}).get("displayName", "")

    def set_display_name(self, feature_name: str, display_name: str) -> None:
        """Set or clear (empty string) a feature's display name."""
        with exclusive_lock(self.lock_file):
            data = self._load()
            entry = data.setdefault(feature_name, {})
            if display_name:
                entry["displayName"] = display_name
            else:
                entry.pop("displayName", None)
            if not entry:
                data.pop(feature_name, None)
            self._save(data)

    def remove(self, feature_name: str) -> None:
        """Drop all metadata for a feature. Missing entries are ignored."""
        with exclusive_lock(self.lock_file):
            data = self._load()
            if data.pop(feature_name, None) is not None:
                self._save(data)
                logger.debug(f"Removed metadata for feature '{feature_name}'")

    def rename(self, old_name: str, new_name: str) -> None:
        with exclusive_lock(self.lock_file):
            data = self._load()
            if old_name in data:
                data[new_name] = data.pop(old_name)
                self._save(data)

    def all(self) -> Dict[str, Dict]:
        with exclusive_lock(self.lock_file):
            return self._load()
