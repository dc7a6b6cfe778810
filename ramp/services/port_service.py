"""Port allocation table for a project."""
import json
from pathlib import Path
from typing import Dict, List, Union

from ramp.constants import CONFIG_DIR, PORT_ALLOCATIONS_FILE
from ramp.exceptions import PortAllocationError, PortExhaustedError
from ramp.logging_config import get_logger
from ramp.utils.locking import exclusive_lock, write_json_atomic

logger = get_logger(__name__)


class PortAllocator:
    """Persisted mapping from feature name to reserved ports.

    The JSON file under ``.ramp/`` is the single source of truth: every call
    re-reads it under an exclusive lock, mutates it, and writes it back
    atomically. Nothing is cached between calls.
    """

    def __init__(self, project_dir: Union[str, Path], base_port: int, max_ports: int):
        """Initialize the allocator.

        Args:
            project_dir: Project root containing ``.ramp/``
            base_port: First port of the range
            max_ports: Size of the range, ports are ``[base_port, base_port + max_ports)``
        """
        if base_port <= 0 or max_ports <= 0:
            raise PortAllocationError("init", f"invalid port range {base_port}+{max_ports}")
        self.project_dir = Path(project_dir)
        self.base_port = base_port
        self.max_ports = max_ports
        self.allocations_file = self.project_dir / CONFIG_DIR / PORT_ALLOCATIONS_FILE
        self.lock_file = self.allocations_file.with_suffix(".lock")

    def _in_range(self, port: int) -> bool:
        return self.base_port <= port < self.base_port + self.max_ports

    def _load(self) -> Dict[str, List[int]]:
        """Read the allocation table. Caller must hold the lock."""
        if not self.allocations_file.exists():
            return {}

        try:
            with open(self.allocations_file) as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise PortAllocationError("load", f"invalid JSON in {self.allocations_file}: {e}") from e

        if not isinstance(data, dict):
            raise PortAllocationError("load", f"{self.allocations_file} is not a JSON object")

        if "allocations" in data and isinstance(data["allocations"], dict):
            raw = data["allocations"]
            stored_base = data.get("base_port")
            if stored_base and stored_base != self.base_port:
                logger.warning(
                    f"Port table was written for base port {stored_base}, "
                    f"configuration now uses {self.base_port}"
                )
        else:
            # Legacy flat format: {"feature": port}
            raw = data

        allocations: Dict[str, List[int]] = {}
        for feature, ports in raw.items():
            if isinstance(ports, int):
                ports = [ports]
            if not isinstance(ports, list) or not all(isinstance(p, int) for p in ports):
                logger.warning(f"Ignoring malformed port entry for '{feature}': {ports!r}")
                continue
            allocations[feature] = ports
        return allocations

    def _save(self, allocations: Dict[str, List[int]]) -> None:
        """Write the allocation table. Caller must hold the lock."""
        self.allocations_file.parent.mkdir(parents=True, exist_ok=True)
        write_json_atomic(
            self.allocations_file,
            {
                "base_port": self.base_port,
                "max_ports": self.max_ports,
                "allocations": allocations,
            },
        )

    def allocate(self, feature_name: str, count: int = 1) -> List[int]:
        """Reserve ``count`` ports for a feature.

        Idempotent: a feature that already holds ports gets them back unchanged.

        Raises:
            PortExhaustedError: fewer than ``count`` ports are free in the range
        """
        if count <= 0:
            raise PortAllocationError("allocate", f"port count must be positive, got {count}")

        with exclusive_lock(self.lock_file):
            allocations = self._load()

            existing = allocations.get(feature_name)
            if existing:
                logger.debug(f"Feature '{feature_name}' already holds ports {existing}")
                return list(existing)

            used = {port for ports in allocations.values() for port in ports}
            free: List[int] = []
            for port in range(self.base_port, self.base_port + self.max_ports):
                if port not in used:
                    free.append(port)
                    if len(free) == count:
                        break

            if len(free) < count:
                raise PortExhaustedError(feature_name, self.base_port, self.max_ports, count)

            allocations[feature_name] = free
            self._save(allocations)

        logger.info(f"Allocated port(s) {free} for feature '{feature_name}'")
        return list(free)

    def allocate_port(self, feature_name: str) -> int:
        """Single-port convenience wrapper around :meth:`allocate`."""
        return self.allocate(feature_name, 1)[0]

    def release(self, feature_name: str) -> List[int]:
        """Release a feature's ports. Releasing an unallocated feature is a no-op.

        Returns:
            The ports that were released (empty when none were held)
        """
        with exclusive_lock(self.lock_file):
            allocations = self._load()
            released = allocations.pop(feature_name, None)
            if released is None:
                logger.debug(f"No ports allocated for feature '{feature_name}'")
                return []
            self._save(allocations)

        logger.info(f"Released port(s) {released} for feature '{feature_name}'")
        return released

    def rename(self, old_name: str, new_name: str) -> None:
        """Move an allocation to a new feature name."""
        with exclusive_lock(self.lock_file):
            allocations = self._load()
            if old_name not in allocations:
                return
            if new_name in allocations:
                raise PortAllocationError("rename", f"feature '{new_name}' already holds ports")
            allocations[new_name] = allocations.pop(old_name)
            self._save(allocations)

    def get_ports(self, feature_name: str) -> tuple[List[int], bool]:
        """Return ``(ports, exists)`` for a feature."""
        with exclusive_lock(self.lock_file):
            ports = self._load().get(feature_name)
        if ports is None:
            return [], False
        return list(ports), True

    def list_allocations(self) -> Dict[str, List[int]]:
        with exclusive_lock(self.lock_file):
            return self._load()

    def out_of_range(self) -> Dict[str, List[int]]:
        """Allocations holding ports outside the configured range."""
        return {
            feature: [p for p in ports if not self._in_range(p)]
            for feature, ports in self.list_allocations().items()
            if any(not self._in_range(p) for p in ports)
        }
