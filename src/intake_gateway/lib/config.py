"""
Configuration management and validation for the intake gateway.

Provides configuration loading, validation, and management for the
routing engine, workflow orchestrator, session state store and the
surrounding pipeline.
"""

import os
import yaml
from pathlib import Path
from typing import Dict, Any, Optional, List

from pydantic import BaseModel, Field, field_validator, ValidationError

from intake_gateway.models.classification import Category


class ObservabilityConfig(BaseModel):
    """Configuration for observability settings."""
    enabled: bool = False
    service_name: str = "intake-gateway"
    service_version: str = "1.0.0"
    environment: str = "development"
    otlp_endpoint: str = "http://localhost:4317"
    trace_sampling_ratio: float = Field(default=1.0, ge=0.0, le=1.0)
    export_timeout: int = Field(default=30, gt=0)
    resource_attributes: Dict[str, str] = Field(default_factory=dict)


class LoggingConfig(BaseModel):
    """Configuration for logging settings."""
    level: str = Field(default="INFO", pattern="^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$")
    format: str = Field(default="structured", pattern="^(structured|simple)$")
    directory: str = "~/.intake/logs"
    max_file_size: int = Field(default=10 * 1024 * 1024, gt=0)  # 10MB
    backup_count: int = Field(default=5, ge=1)
    include_trace: bool = True
    environment: str = "development"


class InferenceConfig(BaseModel):
    """Configuration for the external inference capability."""
    endpoint: Optional[str] = None
    model: str = "llama-3.1-8b-instruct"
    fallback_model: Optional[str] = None
    api_key_env: str = "INTAKE_INFERENCE_API_KEY"
    timeout_seconds: float = Field(default=8.0, gt=0)
    max_output_tokens: int = Field(default=512, ge=16)
    # One inline retry at most
    max_attempts: int = Field(default=2, ge=1, le=2)


class RouteTarget(BaseModel):
    """Primary destination and ordered fallbacks for one category."""
    primary: str = Field(..., min_length=1)
    fallbacks: List[str] = Field(default_factory=list)


def default_routes() -> Dict[str, RouteTarget]:
    """Static category to destination table."""
    return {
        Category.LAWSUIT.value: RouteTarget(
            primary="case-management@example.com",
            fallbacks=["partners@example.com", "intake@example.com"]
        ),
        Category.DOCUMENT_SUBMISSION.value: RouteTarget(
            primary="documents@example.com",
            fallbacks=["case-management@example.com", "intake@example.com"]
        ),
        Category.EMERGENCY.value: RouteTarget(
            primary="emergency@example.com",
            fallbacks=["partners@example.com", "intake@example.com"]
        ),
        Category.COURT_NOTICE.value: RouteTarget(
            primary="emergency@example.com",
            fallbacks=["case-management@example.com", "intake@example.com"]
        ),
        Category.INQUIRY.value: RouteTarget(
            primary="intake@example.com",
            fallbacks=["case-management@example.com"]
        ),
        Category.APPOINTMENT.value: RouteTarget(
            primary="calendar@example.com",
            fallbacks=["intake@example.com"]
        ),
        Category.BILLING.value: RouteTarget(
            primary="billing@example.com",
            fallbacks=["intake@example.com"]
        ),
        Category.CLIENT_COMMUNICATION.value: RouteTarget(
            primary="case-management@example.com",
            fallbacks=["intake@example.com"]
        ),
    }


class RoutingConfig(BaseModel):
    """Configuration for the classification and routing engine."""
    confidence_threshold: float = Field(default=0.7, ge=0.0, le=1.0)
    budget_seconds: float = Field(default=10.0, gt=0)
    body_excerpt_chars: int = Field(default=800, ge=50)
    default_destination: str = "intake@example.com"
    emergency_destination: str = "emergency@example.com"
    case_destination: str = "case-management@example.com"
    routes: Dict[str, RouteTarget] = Field(default_factory=default_routes)

    @field_validator('routes')
    @classmethod
    def validate_routes(cls, v):
        """Ensure every route key is a known category."""
        known = {category.value for category in Category}
        unknown = set(v) - known
        if unknown:
            raise ValueError(f"Unknown categories in routing table: {sorted(unknown)}")
        return v


class OrchestratorConfig(BaseModel):
    """Configuration for the multi-agent workflow orchestrator."""
    max_concurrency: int = Field(default=4, ge=1, le=64)
    default_step_timeout_seconds: float = Field(default=30.0, gt=0)
    disabled_capabilities: List[str] = Field(default_factory=list)


class SessionConfig(BaseModel):
    """Configuration for vector-clock guarded session state."""
    node_id: str = Field(default_factory=lambda: os.getenv("HOSTNAME", "node-1"))
    max_write_attempts: int = Field(default=3, ge=1, le=10)
    conflict_policy: str = Field(default="field_merge", pattern="^(field_merge|flag_only)$")
    state_ttl_seconds: Optional[int] = Field(default=60 * 60 * 24 * 30, gt=0)
    history_limit: int = Field(default=50, ge=1)


class StorageConfig(BaseModel):
    """Configuration for the storage adapter."""
    backend: str = Field(default="memory", pattern="^(memory|file)$")
    directory: str = "~/.intake/storage"
    dedupe_ttl_seconds: int = Field(default=60 * 60 * 24 * 7, gt=0)


class PipelineConfig(BaseModel):
    """Configuration for the intake pipeline composition."""
    send_acknowledgements: bool = True
    run_workflows: bool = True
    workflow_categories: Dict[str, str] = Field(default_factory=lambda: {
        Category.LAWSUIT.value: "case_analysis",
        Category.EMERGENCY.value: "case_analysis",
        Category.COURT_NOTICE.value: "case_analysis",
        Category.DOCUMENT_SUBMISSION.value: "document_review",
        Category.CLIENT_COMMUNICATION.value: "client_communication",
    })
    identity_timeout_seconds: float = Field(default=2.0, gt=0)


class BatchConfig(BaseModel):
    """Configuration for the batch/queue consumer."""
    max_attempts: int = Field(default=3, ge=1, le=10)
    concurrency: int = Field(default=8, ge=1)
    metrics_ttl_seconds: int = Field(default=60 * 60 * 24 * 30, gt=0)


class EventChannelConfig(BaseModel):
    """Configuration for the bounded telemetry event channel."""
    capacity: int = Field(default=1000, ge=1)
    batch_size: int = Field(default=50, ge=1)
    flush_interval_seconds: float = Field(default=5.0, gt=0)


class ServerConfig(BaseModel):
    """Configuration for the HTTP server."""
    host: str = "localhost"
    port: int = Field(default=8000, ge=1, le=65535)
    workers: int = Field(default=1, ge=1)


class IntakeConfig(BaseModel):
    """Main intake gateway configuration."""
    observability: ObservabilityConfig = Field(default_factory=ObservabilityConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    inference: InferenceConfig = Field(default_factory=InferenceConfig)
    routing: RoutingConfig = Field(default_factory=RoutingConfig)
    orchestrator: OrchestratorConfig = Field(default_factory=OrchestratorConfig)
    session: SessionConfig = Field(default_factory=SessionConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    pipeline: PipelineConfig = Field(default_factory=PipelineConfig)
    batch: BatchConfig = Field(default_factory=BatchConfig)
    events: EventChannelConfig = Field(default_factory=EventChannelConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)

    # Global settings
    debug: bool = False
    config_file_path: Optional[str] = None


class ConfigurationManager:
    """Manages intake gateway configuration loading and validation."""

    def __init__(self, config_path: Optional[str] = None):
        self.config_path = config_path or self._get_default_config_path()
        self.config: Optional[IntakeConfig] = None

    def _get_default_config_path(self) -> str:
        """Get the default configuration file path."""
        if "INTAKE_CONFIG_PATH" in os.environ:
            return os.environ["INTAKE_CONFIG_PATH"]

        candidates = [
            "~/.intake/config/config.yaml",
            "./config/config.yaml",
            "./config.yaml"
        ]

        for candidate in candidates:
            path = Path(candidate).expanduser()
            if path.exists():
                return str(path)

        return "~/.intake/config/config.yaml"

    def load_config(self, config_path: Optional[str] = None) -> IntakeConfig:
        """Load and validate configuration from file."""
        if config_path:
            self.config_path = config_path

        config_file = Path(self.config_path).expanduser()

        if not config_file.exists():
            self._create_default_config(config_file)

        try:
            with open(config_file, 'r') as f:
                config_data = yaml.safe_load(f) or {}

            config_data = self._merge_environment_config(config_data)

            self.config = IntakeConfig(**config_data)
            self.config.config_file_path = str(config_file)

            return self.config

        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in config file {config_file}: {e}")
        except ValidationError as e:
            raise ConfigurationError(f"Configuration validation failed: {e}")
        except OSError as e:
            raise ConfigurationError(f"Error loading configuration: {e}")

    def init_config_file(self, force: bool = False) -> Path:
        """Write the default configuration to config_path; returns the file written."""
        config_file = Path(self.config_path).expanduser()
        if config_file.exists() and not force:
            raise ConfigurationError(f"Configuration file already exists: {config_file}")
        try:
            self._create_default_config(config_file)
        except OSError as e:
            raise ConfigurationError(f"Error writing configuration: {e}")
        return config_file

    def _create_default_config(self, config_file: Path) -> None:
        """Create a default configuration file."""
        config_file.parent.mkdir(parents=True, exist_ok=True)

        default_config = {
            "observability": {
                "enabled": False,
                "service_name": "intake-gateway",
                "environment": "development",
                "otlp_endpoint": os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT", "http://localhost:4317")
            },
            "logging": {
                "level": os.getenv("INTAKE_LOG_LEVEL", "INFO"),
                "directory": "~/.intake/logs"
            },
            "inference": {
                "endpoint": os.getenv("INTAKE_INFERENCE_ENDPOINT"),
                "model": "llama-3.1-8b-instruct",
                "timeout_seconds": 8.0,
                "max_attempts": 2
            },
            "routing": {
                "confidence_threshold": 0.7,
                "budget_seconds": 10.0,
                "default_destination": "intake@example.com",
                "emergency_destination": "emergency@example.com",
                "case_destination": "case-management@example.com"
            },
            "orchestrator": {
                "max_concurrency": 4,
                "default_step_timeout_seconds": 30.0
            },
            "session": {
                "max_write_attempts": 3,
                "conflict_policy": "field_merge"
            },
            "storage": {
                "backend": "memory",
                "directory": "~/.intake/storage"
            },
            "server": {
                "host": os.getenv("INTAKE_HOST", "localhost"),
                "port": int(os.getenv("INTAKE_PORT", "8000"))
            }
        }

        with open(config_file, 'w') as f:
            yaml.dump(default_config, f, default_flow_style=False, indent=2)

    def _merge_environment_config(self, config_data: Dict[str, Any]) -> Dict[str, Any]:
        """Merge configuration with environment variables."""
        env_mappings = {
            "INTAKE_LOG_LEVEL": ["logging", "level"],
            "INTAKE_NODE_ID": ["session", "node_id"],
            "INTAKE_INFERENCE_ENDPOINT": ["inference", "endpoint"],
            "INTAKE_INFERENCE_MODEL": ["inference", "model"],
            "INTAKE_CONFIDENCE_THRESHOLD": ["routing", "confidence_threshold"],
            "INTAKE_HOST": ["server", "host"],
            "INTAKE_PORT": ["server", "port"],
            "INTAKE_DEBUG": ["debug"],
            "OTEL_EXPORTER_OTLP_ENDPOINT": ["observability", "otlp_endpoint"]
        }

        for env_var, config_path in env_mappings.items():
            if env_var in os.environ:
                value = os.environ[env_var]

                if env_var == "INTAKE_PORT":
                    value = int(value)
                elif env_var == "INTAKE_CONFIDENCE_THRESHOLD":
                    value = float(value)
                elif env_var == "INTAKE_DEBUG":
                    value = value.lower() in ("true", "1", "yes")

                current = config_data
                for key in config_path[:-1]:
                    if not isinstance(current.get(key), dict):
                        current[key] = {}
                    current = current[key]
                current[config_path[-1]] = value

        return config_data

    def get_config(self) -> IntakeConfig:
        """Get the loaded configuration."""
        if self.config is None:
            raise ConfigurationError("Configuration not loaded. Call load_config() first.")
        return self.config

    def validate_config(self) -> List[str]:
        """Validate the current configuration and return any warnings."""
        warnings = []
        config = self.get_config()

        if config.debug and config.observability.environment == "production":
            warnings.append("Debug mode enabled in production environment")

        if config.inference.endpoint is None:
            warnings.append("No inference endpoint configured; routing will use rule-based fallback only")

        if config.inference.timeout_seconds >= config.routing.budget_seconds:
            warnings.append("Inference timeout is not below the routing budget; the budget bounds it")

        missing = {category.value for category in Category} - set(config.routing.routes)
        for category in sorted(missing):
            warnings.append(f"No route configured for category {category}; default destination will be used")

        return warnings

    def reload_config(self) -> IntakeConfig:
        """Reload configuration from file."""
        return self.load_config()


class ConfigurationError(Exception):
    """Exception raised for configuration-related errors."""
    pass


# Global configuration manager instance
_config_manager: Optional[ConfigurationManager] = None


def initialize_config(config_path: Optional[str] = None) -> ConfigurationManager:
    """Initialize global configuration manager."""
    global _config_manager
    _config_manager = ConfigurationManager(config_path)
    _config_manager.load_config()
    return _config_manager


def get_config_manager() -> ConfigurationManager:
    """Get the global configuration manager instance."""
    if _config_manager is None:
        raise ConfigurationError("Configuration not initialized. Call initialize_config() first.")
    return _config_manager


def get_config() -> IntakeConfig:
    """Get the global configuration."""
    return get_config_manager().get_config()
