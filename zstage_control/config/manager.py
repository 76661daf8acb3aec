"""
Configuration Manager for Z-stage focus control.
Handles loading, saving, and accessing focus-control configurations
stored as YAML files.
"""

import yaml
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Any, Optional, List
from copy import deepcopy
import logging

from zstage_control.acquisition.buffer import DEFAULT_CAPACITY
from zstage_control.acquisition.loop import DEFAULT_PERIOD_S
from zstage_control.autofocus.metrics import Metric, resolve_metric
from zstage_control.connection.manager import RetryPolicy
from zstage_control.errors import ConfigurationError
from zstage_control.hardware.base import ZLimits, Z_AXIS

logger = logging.getLogger(__name__)


DEFAULT_CONFIG: Dict[str, Any] = {
    "microscope": {"name": "Z-stage", "type": "generic"},
    "stage": {
        "axis": Z_AXIS,
        "z_stage": None,
        "limits": {"z_um": {"low": 0.0, "high": 100.0}},
    },
    "connection": {
        "retry": {
            "max_retries": 3,
            "initial_delay_s": 1.0,
            "max_delay_s": 30.0,
            "multiplier": 2.0,
        },
        "handshake_timeout_s": 30.0,
        "call_timeout_s": 5.0,
    },
    "acquisition": {
        "period_s": DEFAULT_PERIOD_S,
        "buffer_capacity": DEFAULT_CAPACITY,
        "default_metric": "mean",
    },
    "scan": {
        "step_size_um": 5.0,
        "pause_time_s": 0.5,
        "auto_move_on_complete": False,
    },
    "simulation": {
        "frame_shape": [128, 128],
        "focal_plane_um": 50.0,
        "depth_of_field_um": 10.0,
        "noise_level": 0.02,
        "seed": None,
    },
}


@dataclass(frozen=True)
class FocusSettings:
    """Immutable settings consumed by the focus-control components."""

    z_limits: ZLimits
    retry_policy: RetryPolicy = field(default_factory=RetryPolicy)
    axis: str = Z_AXIS
    z_stage_device: Optional[str] = None
    handshake_timeout_s: float = 30.0
    call_timeout_s: float = 5.0
    acquisition_period_s: float = DEFAULT_PERIOD_S
    buffer_capacity: int = DEFAULT_CAPACITY
    default_metric: Metric = Metric.MEAN
    scan_step_size_um: float = 5.0
    scan_pause_time_s: float = 0.5
    auto_move_on_complete: bool = False
    simulation_options: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_config(cls, config: Optional[Dict[str, Any]] = None) -> "FocusSettings":
        """
        Build settings from a configuration dictionary.

        Missing keys fall back to DEFAULT_CONFIG.

        Raises:
            ConfigurationError: If the merged configuration is invalid
        """
        merged = ConfigManager._merge_settings(DEFAULT_CONFIG, config or {})
        errors = ConfigManager.validate_config(merged)
        if errors:
            raise ConfigurationError("Invalid configuration: " + "; ".join(errors))

        stage = merged["stage"]
        z_limits = stage["limits"]["z_um"]
        connection = merged["connection"]
        retry = connection["retry"]
        acquisition = merged["acquisition"]
        scan = merged["scan"]
        simulation = deepcopy(merged["simulation"])
        simulation["frame_shape"] = tuple(simulation["frame_shape"])

        return cls(
            z_limits=ZLimits(float(z_limits["low"]), float(z_limits["high"])),
            retry_policy=RetryPolicy(
                max_retries=int(retry["max_retries"]),
                initial_delay=float(retry["initial_delay_s"]),
                max_delay=float(retry["max_delay_s"]),
                multiplier=float(retry["multiplier"]),
            ),
            axis=stage["axis"],
            z_stage_device=stage.get("z_stage"),
            handshake_timeout_s=float(connection["handshake_timeout_s"]),
            call_timeout_s=float(connection["call_timeout_s"]),
            acquisition_period_s=float(acquisition["period_s"]),
            buffer_capacity=int(acquisition["buffer_capacity"]),
            default_metric=resolve_metric(acquisition["default_metric"]),
            scan_step_size_um=float(scan["step_size_um"]),
            scan_pause_time_s=float(scan["pause_time_s"]),
            auto_move_on_complete=bool(scan["auto_move_on_complete"]),
            simulation_options=simulation,
        )


class ConfigManager:
    """
    Manages focus-control configurations.
    Works directly with YAML configuration files; FocusSettings is built on
    request from the merged dictionary.
    """

    def __init__(self, config_dir: Optional[str] = None):
        """
        Initialize ConfigManager with configuration directory.

        Args:
            config_dir: Path to configuration directory. If None, uses the
                       'configurations' directory shipped with the package.
        """
        if config_dir is None:
            package_dir = Path(__file__).parent.parent  # zstage_control/
            self.config_dir = package_dir / "configurations"
        else:
            self.config_dir = Path(config_dir)

        self._configs: Dict[str, Dict[str, Any]] = {}
        self._current_config_name: Optional[str] = None
        self._load_configs()
        logger.info(f"ConfigManager initialized with directory: {self.config_dir}")

    def _load_configs(self) -> None:
        """Load all configuration files from config directory."""
        if not self.config_dir.exists():
            logger.warning(f"Configuration directory not found: {self.config_dir}")
            return

        for file in sorted(self.config_dir.glob("*.yml")):
            try:
                config_name = file.stem
                self._configs[config_name] = self.load_config_file(str(file)) or {}
                logger.info(f"Loaded configuration: {config_name}")
            except (OSError, yaml.YAMLError) as e:
                logger.error(f"Failed to load config {file}: {e}")

    def load_config_file(self, config_path: str) -> Dict[str, Any]:
        """
        Load a single configuration file.

        Args:
            config_path: Path to YAML configuration file

        Returns:
            Dictionary containing configuration data
        """
        with open(config_path, "r") as file:
            data = yaml.safe_load(file)
        return data

    def get_config(self, name: Optional[str] = None) -> Optional[Dict[str, Any]]:
        """
        Get configuration by name or return current config.

        Args:
            name: Configuration name. If None, returns current config.

        Returns:
            Configuration dictionary or None if not found
        """
        if name is None:
            name = self._current_config_name
        if name is None:
            return None
        return deepcopy(self._configs.get(name))

    def set_current_config(self, name: str) -> bool:
        """
        Set the current active configuration.

        Args:
            name: Name of configuration to set as current

        Returns:
            True if successful, False if config not found
        """
        if name in self._configs:
            self._current_config_name = name
            logger.info(f"Current config set to: {name}")
            return True
        logger.error(f"Configuration not found: {name}")
        return False

    def save_config(self, name: str, config: Dict[str, Any]) -> None:
        """
        Save configuration to file.

        Args:
            name: Name for the configuration
            config: Configuration dictionary to save
        """
        self.config_dir.mkdir(parents=True, exist_ok=True)
        config_path = self.config_dir / f"{name}.yml"
        with open(config_path, "w") as f:
            yaml.dump(config, f, default_flow_style=False, sort_keys=False)
        self._configs[name] = deepcopy(config)
        logger.info(f"Saved configuration: {name}")

    def list_configs(self) -> List[str]:
        """List all available configurations."""
        return list(self._configs.keys())

    @staticmethod
    def _merge_settings(defaults: Dict[str, Any], specific: Dict[str, Any]) -> Dict[str, Any]:
        """
        Merge default settings with specific settings.
        Specific settings override defaults.
        """
        result = deepcopy(defaults)
        for key, value in specific.items():
            if isinstance(value, dict) and key in result and isinstance(result[key], dict):
                result[key] = ConfigManager._merge_settings(result[key], value)
            else:
                result[key] = deepcopy(value)
        return result

    def get_stage_limits(self, config_name: Optional[str] = None) -> Optional[ZLimits]:
        """Get Z soft limits, or None if the config or its limits are missing."""
        config = self.get_config(config_name)
        if not config:
            return None

        z_limits = config.get("stage", {}).get("limits", {}).get("z_um")
        if not z_limits or z_limits.get("low") is None or z_limits.get("high") is None:
            logger.warning(f"Z limits not found in configuration: {config_name}")
            return None
        return ZLimits(float(z_limits["low"]), float(z_limits["high"]))

    def get_focus_settings(self, config_name: Optional[str] = None) -> FocusSettings:
        """
        Build FocusSettings from a named config merged over the defaults.

        Args:
            config_name: Configuration name (uses current if None). If no
                config is selected, the defaults alone are used.

        Raises:
            ConfigurationError: If the config is unknown or invalid
        """
        name = config_name or self._current_config_name
        if name is not None and name not in self._configs:
            raise ConfigurationError(f"Configuration not found: {name}")

        config = self.get_config(name) if name is not None else {}
        return FocusSettings.from_config(config)

    @staticmethod
    def validate_config(config: Dict[str, Any]) -> List[str]:
        """
        Validate configuration structure and return list of errors.

        Args:
            config: Configuration dictionary to validate

        Returns:
            List of error messages (empty if valid)
        """
        errors = []

        required_keys = ["microscope", "stage"]
        for key in required_keys:
            if key not in config:
                errors.append(f"Missing required key: {key}")

        if "microscope" in config:
            microscope = config["microscope"]
            if not isinstance(microscope, dict):
                errors.append("'microscope' must be a dictionary")
            elif "name" not in microscope:
                errors.append("'microscope' must have a 'name' field")

        # Z limits
        stage = config.get("stage")
        if isinstance(stage, dict):
            z_limits = stage.get("limits", {}).get("z_um") if isinstance(stage.get("limits"), dict) else None
            if not isinstance(z_limits, dict):
                errors.append("'stage.limits.z_um' must be a dictionary with 'low' and 'high'")
            else:
                low, high = z_limits.get("low"), z_limits.get("high")
                if not _is_number(low) or not _is_number(high):
                    errors.append(f"Z limit values are not properly defined: {z_limits}")
                elif low >= high:
                    errors.append(f"Z limits must satisfy low < high, got [{low}, {high}]")
        elif "stage" in config:
            errors.append("'stage' must be a dictionary")

        # Retry policy
        retry = config.get("connection", {}).get("retry", {})
        if retry:
            max_retries = retry.get("max_retries")
            if not isinstance(max_retries, int) or isinstance(max_retries, bool) or max_retries < 1:
                errors.append(f"'max_retries' must be a positive integer, got {max_retries}")
            initial, maximum = retry.get("initial_delay_s"), retry.get("max_delay_s")
            if not _is_number(initial) or initial < 0:
                errors.append(f"'initial_delay_s' must be >= 0, got {initial}")
            elif not _is_number(maximum) or maximum < initial:
                errors.append(f"'max_delay_s' must be >= initial_delay_s, got {maximum}")
            multiplier = retry.get("multiplier")
            if not _is_number(multiplier) or multiplier < 1:
                errors.append(f"'multiplier' must be >= 1, got {multiplier}")

        for key in ("handshake_timeout_s", "call_timeout_s"):
            value = config.get("connection", {}).get(key)
            if value is not None and (not _is_number(value) or value <= 0):
                errors.append(f"'{key}' must be positive, got {value}")

        # Acquisition
        acquisition = config.get("acquisition", {})
        if acquisition:
            period = acquisition.get("period_s")
            if not _is_number(period) or period <= 0:
                errors.append(f"'period_s' must be positive, got {period}")
            capacity = acquisition.get("buffer_capacity")
            if not isinstance(capacity, int) or isinstance(capacity, bool) or capacity < 1:
                errors.append(f"'buffer_capacity' must be a positive integer, got {capacity}")
            metric = acquisition.get("default_metric")
            try:
                resolve_metric(metric)
            except ConfigurationError as e:
                errors.append(str(e))

        # Scan defaults
        scan = config.get("scan", {})
        if scan:
            step = scan.get("step_size_um")
            if not _is_number(step) or step == 0:
                errors.append(f"'step_size_um' must be a nonzero number, got {step}")
            pause = scan.get("pause_time_s")
            if not _is_number(pause) or pause < 0:
                errors.append(f"'pause_time_s' must be >= 0, got {pause}")

        return errors

    def create_empty_config(self, microscope_name: str, microscope_type: str) -> Dict[str, Any]:
        """
        Create a configuration template filled with the defaults.

        Args:
            microscope_name: Name of the microscope
            microscope_type: Type of microscope

        Returns:
            Configuration dictionary
        """
        config = deepcopy(DEFAULT_CONFIG)
        config["microscope"] = {"name": microscope_name, "type": microscope_type}
        return config


def _is_number(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


# Example usage and testing
if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)

    cm = ConfigManager()
    print("Available configurations:", cm.list_configs())

    if "config_default" in cm.list_configs():
        cm.set_current_config("config_default")
        settings = cm.get_focus_settings()
        print(f"\nZ limits: [{settings.z_limits.low}, {settings.z_limits.high}] um")
        print(f"Retry policy: {settings.retry_policy}")
        print(f"Acquisition period: {settings.acquisition_period_s}s")
        print(f"Default metric: {settings.default_metric.name}")
