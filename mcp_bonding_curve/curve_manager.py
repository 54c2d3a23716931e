import json
import threading
from pathlib import Path
from typing import Dict, List, Optional

from pydantic import ValidationError

from mcp_bonding_curve.config import CURVE_CONFIG_DIR
from mcp_bonding_curve.errors import (
    CurveNotFoundError,
    InvalidCurveConfigError,
    MigrationCompleteError,
)
from mcp_bonding_curve.ledger import VaultAuthority
from mcp_bonding_curve.pricing import validate_curve
from mcp_bonding_curve.schemas import CurveConfigModel, MigrationStatus
from mcp.server.fastmcp.utilities.logging import get_logger

logger = get_logger(__name__)

# Determine the absolute path to the directory containing this file
MODULE_DIR = Path(__file__).parent.resolve()

_ALLOWED_TRANSITIONS = {
    MigrationStatus.active: {MigrationStatus.migrated, MigrationStatus.failed},
    MigrationStatus.migrated: set(),
    MigrationStatus.failed: set(),
}


def parse_curve_config(config_data: dict) -> CurveConfigModel:
    """Validate raw configuration data, raising InvalidCurveConfigError on any problem."""
    try:
        curve = CurveConfigModel.model_validate(config_data)
    except ValidationError as e:
        raise InvalidCurveConfigError(f"Invalid curve configuration: {e}")
    validate_curve(curve)
    if curve.curve.migration_status != MigrationStatus.active and curve.vault_address is None:
        raise InvalidCurveConfigError("A new curve must start in the active state")
    return curve


class CurveManager:
    """
    Registry of curve configurations.

    Configs are held in memory, keyed by curve id (the token mint address), and optionally
    persisted as one JSON file per curve. Configs are replaced, never mutated in place, so
    the engine can restore the previous object if the operation that changed it aborts.
    """

    def __init__(self, config_dir: Optional[Path] = None, persist: bool = True):
        self.config_dir = Path(config_dir) if config_dir else MODULE_DIR / CURVE_CONFIG_DIR
        self.persist = persist
        self._curves: Dict[str, CurveConfigModel] = {}
        self._authorities: Dict[str, VaultAuthority] = {}
        self._lock = threading.Lock()

    def load_curves_from_config_files(self) -> List[CurveConfigModel]:
        """
        Loads curve configurations from JSON files in the config directory.

        Files whose name does not match the curve id inside them, or that fail validation,
        are skipped with an error logged.

        Returns:
            The configurations that were loaded. They still need a vault before trading.
        """
        loaded: List[CurveConfigModel] = []
        if not self.config_dir.is_dir():
            logger.warning(f"Curve configuration directory not found: {self.config_dir}. No curves loaded.")
            return loaded

        logger.info(f"Loading curve configurations from: {self.config_dir}")
        for file_path in sorted(self.config_dir.glob("*.json")):
            try:
                with open(file_path, "r") as f:
                    curve = parse_curve_config(json.load(f))
            except json.JSONDecodeError:
                logger.error(f"Error decoding JSON from file: {file_path}")
                continue
            except InvalidCurveConfigError as e:
                logger.error(f"Invalid curve configuration in file {file_path}: {e}")
                continue

            if curve.curve_id != file_path.stem:
                logger.warning(f"Curve ID mismatch in {file_path}: found '{curve.curve_id}'. Skipping.")
                continue
            if curve.vault_address is None:
                logger.warning(f"Curve '{curve.curve_id}' in {file_path} has no vault address. Skipping.")
                continue
            loaded.append(curve)
            logger.info(f"Successfully loaded curve config: {curve.curve_id}")

        logger.info(f"Finished loading curves. Total loaded: {len(loaded)}")
        return loaded

    def register(self, curve: CurveConfigModel, authority: VaultAuthority) -> CurveConfigModel:
        with self._lock:
            if curve.curve_id in self._curves:
                raise InvalidCurveConfigError(f"Curve '{curve.curve_id}' already exists")
            curve = curve.model_copy(update={"vault_address": authority.vault_address})
            self._curves[curve.curve_id] = curve
            self._authorities[curve.curve_id] = authority
        self.save(curve)
        return curve

    def get_curve(self, curve_id: str) -> CurveConfigModel:
        try:
            return self._curves[curve_id]
        except KeyError:
            raise CurveNotFoundError(f"Curve with id {curve_id} not found.")

    def has_curve(self, curve_id: str) -> bool:
        return curve_id in self._curves

    def get_authority(self, curve_id: str) -> VaultAuthority:
        try:
            return self._authorities[curve_id]
        except KeyError:
            raise CurveNotFoundError(f"Curve with id {curve_id} not found.")

    def list_curves(self) -> List[CurveConfigModel]:
        return list(self._curves.values())

    def set_migration_status(self, curve_id: str, status: MigrationStatus) -> CurveConfigModel:
        """Move a curve to a terminal state. Leaving a terminal state is rejected."""
        curve = self.get_curve(curve_id)
        current = curve.curve.migration_status
        if status not in _ALLOWED_TRANSITIONS[current]:
            raise MigrationCompleteError(
                f"Curve '{curve_id}' cannot move from {current.value} to {status.value}"
            )
        updated = curve.model_copy(
            update={"curve": curve.curve.model_copy(update={"migration_status": status})}
        )
        self.replace(updated)
        logger.info(f"Curve '{curve_id}' status: {current.value} -> {status.value}")
        return updated

    def mark_failed(self, curve_id: str) -> CurveConfigModel:
        updated = self.set_migration_status(curve_id, MigrationStatus.failed)
        self.save(updated)
        return updated

    def replace(self, curve: CurveConfigModel) -> None:
        with self._lock:
            self._curves[curve.curve_id] = curve

    def save(self, curve: CurveConfigModel) -> bool:
        """Persist one curve's configuration. Returns False if writing failed."""
        if not self.persist:
            return True
        self.config_dir.mkdir(parents=True, exist_ok=True)
        file_path = self.config_dir / f"{curve.curve_id}.json"
        try:
            with open(file_path, "w") as f:
                json.dump(curve.model_dump(mode="json"), f, indent=4)
            logger.debug(f"Saved curve configuration to {file_path}")
            return True
        except OSError as e:
            logger.error(f"Error saving curve configuration to {file_path}: {e}")
            return False
