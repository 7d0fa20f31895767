"""
Configuration management for the LLM engine.
Supports YAML configuration loading with environment variable substitution.
"""

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Literal

import yaml


class ConfigError(Exception):
    """Configuration related errors"""
    pass


ConcurrencyPolicy = Literal["queue", "reject"]
FallbackCondition = Literal["on-error", "on-rate-limit", "on-timeout"]

CONCURRENCY_POLICIES = ("queue", "reject")
FALLBACK_CONDITIONS = ("on-error", "on-rate-limit", "on-timeout")


@dataclass
class CacheConfig:
    """Response cache settings"""
    enabled: bool = True
    max_size_mb: float = 100.0
    ttl_ms: int = 3_600_000


@dataclass
class FallbackTarget:
    """Alternate provider/model tried after the primary gives up"""
    provider: str
    model: str
    condition: FallbackCondition = "on-error"


@dataclass
class FallbackConfig:
    """Retry and fallback-chain settings"""
    enabled: bool = True
    max_attempts: int = 3
    chain: list[FallbackTarget] = field(default_factory=list)


@dataclass
class ProviderConfig:
    """Configuration for a single provider"""
    api_key: str | None = None
    base_url: str | None = None
    organization: str | None = None
    timeout_ms: int | None = None
    max_retries: int | None = None
    headers: dict[str, str] = field(default_factory=dict)
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class RequestLogConfig:
    """JSONL request log settings"""
    enabled: bool = False
    dir: str = "logs"


@dataclass
class HttpClientConfig:
    """HTTP client connection pool configuration"""
    max_connections: int = 100
    max_keepalive_connections: int = 20


@dataclass
class EngineConfig:
    """Complete engine configuration"""
    default_provider: str = "deepseek"
    default_model: str = "deepseek-chat"
    request_timeout_ms: int = 60_000
    max_concurrent_requests: int = 10
    concurrency_policy: ConcurrencyPolicy = "queue"
    cache: CacheConfig = field(default_factory=CacheConfig)
    fallback: FallbackConfig = field(default_factory=FallbackConfig)
    providers: dict[str, ProviderConfig] = field(default_factory=dict)
    pricing: dict[str, dict[str, tuple[float, float]]] = field(default_factory=dict)
    request_log: RequestLogConfig = field(default_factory=RequestLogConfig)
    http_client: HttpClientConfig = field(default_factory=HttpClientConfig)

    def validate(self) -> list[str]:
        """Return a list of configuration problems (empty when valid)."""
        errors = []
        if not self.default_model:
            errors.append("engine.default_model is required")
        if self.request_timeout_ms <= 0:
            errors.append("engine.request_timeout_ms must be positive")
        if self.max_concurrent_requests < 1:
            errors.append("engine.max_concurrent_requests must be at least 1")
        if self.concurrency_policy not in CONCURRENCY_POLICIES:
            errors.append(
                f"engine.concurrency_policy must be one of: {', '.join(CONCURRENCY_POLICIES)}"
            )
        if self.cache.max_size_mb <= 0:
            errors.append("cache.max_size_mb must be positive")
        if self.cache.ttl_ms <= 0:
            errors.append("cache.ttl_ms must be positive")
        if self.fallback.max_attempts < 1:
            errors.append("fallback.max_attempts must be at least 1")
        for target in self.fallback.chain:
            if target.condition not in FALLBACK_CONDITIONS:
                errors.append(
                    f"fallback.chain condition must be one of: {', '.join(FALLBACK_CONDITIONS)}"
                )
        return errors


class ConfigManager:
    """
    Configuration manager for the LLM engine.

    Supports:
    - Loading configuration from YAML files
    - Environment variable substitution (${VAR_NAME} syntax)
    - Optional .env file next to (or above) the config file
    - Per-model pricing overrides
    """

    ENV_VAR_PATTERN = re.compile(r'\$\{([^}]+)\}')

    def __init__(
        self,
        config_path: str | Path | None = None,
        config: EngineConfig | None = None,
    ):
        """
        Initialize ConfigManager.

        Args:
            config_path: Path to YAML configuration file. If None, uses config.yaml
            config: Pre-built configuration; skips file loading entirely
        """
        self._config: EngineConfig | None = config
        self._config_path = Path(config_path) if config_path else Path("config.yaml")

    @property
    def config(self) -> EngineConfig:
        """Get the loaded configuration, loading it if necessary."""
        if self._config is None:
            self._config = self.load()
        return self._config

    def load(self, config_path: str | Path | None = None) -> EngineConfig:
        """
        Load configuration from YAML file.

        Args:
            config_path: Optional path to override the default config path

        Returns:
            Loaded EngineConfig object

        Raises:
            ConfigError: If configuration file is invalid or cannot be loaded
        """
        path = Path(config_path) if config_path else self._config_path

        self._load_env_file_if_present(path)

        if not path.exists():
            raise ConfigError(f"Configuration file not found: {path}")

        try:
            with open(path, 'r', encoding='utf-8') as f:
                raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML format: {e}")
        except OSError as e:
            raise ConfigError(f"Failed to read configuration file: {e}")

        if raw_config is None:
            raise ConfigError("Configuration file is empty")

        if not isinstance(raw_config, dict):
            raise ConfigError("Configuration must be a YAML mapping")

        config = self.parse(raw_config)
        self._config = config
        return config

    def parse(self, raw: dict) -> EngineConfig:
        """
        Parse a raw configuration mapping (already loaded from YAML).

        Raises:
            ConfigError: If any section is malformed or values are invalid
        """
        providers_raw = raw.get('providers')
        rest = {k: v for k, v in raw.items() if k != 'providers'}
        rest = self._substitute_env_vars(rest)
        config = self._parse_config(rest, providers_raw)

        errors = config.validate()
        if errors:
            raise ConfigError("; ".join(errors))
        return config

    def _load_env_file_if_present(self, config_path: Path) -> None:
        search_root = config_path if config_path.is_dir() else config_path.parent
        env_path: Path | None = None
        for candidate_dir in [search_root, *search_root.parents]:
            candidate = candidate_dir / ".env"
            if candidate.exists():
                env_path = candidate
                break

        if env_path is None:
            return

        try:
            lines = env_path.read_text(encoding="utf-8").splitlines()
        except OSError:
            return

        for raw_line in lines:
            line = raw_line.strip()
            if not line or line.startswith("#") or "=" not in line:
                continue
            key, value = line.split("=", 1)
            key = key.strip()
            value = value.strip().strip('"').strip("'")
            if not key:
                continue
            if key not in os.environ or os.environ.get(key, "") == "":
                os.environ[key] = value

    def get_env_vars_used(self, config_path: str | Path | None = None) -> set[str]:
        """
        Scan the config file and return all referenced environment variables.

        Args:
            config_path: Optional path to override the default config path

        Returns:
            Set of environment variable names referenced via ${VAR_NAME}
        """
        path = Path(config_path) if config_path else self._config_path
        if not path.exists():
            raise ConfigError(f"Configuration file not found: {path}")
        raw_text = path.read_text(encoding="utf-8")
        return {match.group(1) for match in self.ENV_VAR_PATTERN.finditer(raw_text)}

    def _substitute_env_vars(self, obj: Any, skip_missing: bool = False) -> Any:
        """
        Recursively substitute environment variables in configuration.

        Supports ${VAR_NAME} syntax. If environment variable is not set,
        returns None when skip_missing=True, otherwise raises ConfigError.

        Args:
            obj: Object to process
            skip_missing: If True, return None for missing env vars instead of raising
        """
        if isinstance(obj, str):
            def replace_env_var(match: re.Match) -> str:
                var_name = match.group(1)
                value = os.environ.get(var_name)
                if value is None:
                    if skip_missing:
                        return ""
                    raise ConfigError(f"Environment variable not set: {var_name}")
                return value

            result = self.ENV_VAR_PATTERN.sub(replace_env_var, obj)
            # An unset variable that was the whole value becomes None
            if skip_missing and result == "" and self.ENV_VAR_PATTERN.search(obj):
                return None
            return result
        elif isinstance(obj, dict):
            return {k: self._substitute_env_vars(v, skip_missing) for k, v in obj.items()}
        elif isinstance(obj, list):
            return [self._substitute_env_vars(item, skip_missing) for item in obj]
        return obj

    @staticmethod
    def _section(raw: dict, name: str) -> dict:
        section = raw.get(name, {})
        if section is None:
            return {}
        if not isinstance(section, dict):
            raise ConfigError(f"'{name}' section must be a mapping")
        return section

    def _parse_config(self, raw: dict, providers_raw: Any) -> EngineConfig:
        """Parse raw configuration dictionary into EngineConfig object."""
        config = EngineConfig()

        try:
            engine_raw = self._section(raw, 'engine')
            config.default_provider = engine_raw.get('default_provider', config.default_provider)
            config.default_model = engine_raw.get('default_model', config.default_model)
            config.request_timeout_ms = int(
                engine_raw.get('request_timeout_ms', config.request_timeout_ms)
            )
            config.max_concurrent_requests = int(
                engine_raw.get('max_concurrent_requests', config.max_concurrent_requests)
            )
            config.concurrency_policy = engine_raw.get(
                'concurrency_policy', config.concurrency_policy
            )

            cache_raw = self._section(raw, 'cache')
            config.cache = CacheConfig(
                enabled=bool(cache_raw.get('enabled', True)),
                max_size_mb=float(cache_raw.get('max_size_mb', 100.0)),
                ttl_ms=int(cache_raw.get('ttl_ms', 3_600_000)),
            )

            fallback_raw = self._section(raw, 'fallback')
            chain = []
            for item in fallback_raw.get('chain') or []:
                if not isinstance(item, dict) or 'provider' not in item or 'model' not in item:
                    raise ConfigError("fallback.chain entries need 'provider' and 'model'")
                chain.append(FallbackTarget(
                    provider=item['provider'],
                    model=item['model'],
                    condition=item.get('condition', 'on-error'),
                ))
            config.fallback = FallbackConfig(
                enabled=bool(fallback_raw.get('enabled', True)),
                max_attempts=int(fallback_raw.get('max_attempts', 3)),
                chain=chain,
            )

            log_raw = self._section(raw, 'request_log')
            config.request_log = RequestLogConfig(
                enabled=bool(log_raw.get('enabled', False)),
                dir=str(log_raw.get('dir', 'logs')),
            )

            http_raw = self._section(raw, 'http_client')
            config.http_client = HttpClientConfig(
                max_connections=int(http_raw.get('max_connections', 100)),
                max_keepalive_connections=int(http_raw.get('max_keepalive_connections', 20)),
            )
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Invalid configuration value: {e}")

        config.providers = self._parse_providers(providers_raw)
        config.pricing = self._parse_pricing(self._section(raw, 'pricing'))
        return config

    def _parse_providers(self, providers_raw: Any) -> dict[str, ProviderConfig]:
        """Parse providers, skipping those whose api_key resolves empty."""
        providers: dict[str, ProviderConfig] = {}
        if providers_raw is None:
            return providers
        if not isinstance(providers_raw, dict):
            raise ConfigError("'providers' section must be a mapping")

        for provider_name, provider_data in providers_raw.items():
            if not isinstance(provider_data, dict):
                raise ConfigError(f"Provider '{provider_name}' configuration must be a mapping")

            provider_data = self._substitute_env_vars(provider_data, skip_missing=True)

            api_key = provider_data.get('api_key')
            requires_key = provider_data.get('requires_api_key', True)
            if requires_key and (not api_key or not str(api_key).strip()):
                continue

            headers = provider_data.get('headers') or {}
            if not isinstance(headers, dict):
                raise ConfigError(f"Provider '{provider_name}' headers must be a mapping")

            timeout_ms = provider_data.get('timeout_ms')
            max_retries = provider_data.get('max_retries')
            try:
                providers[provider_name] = ProviderConfig(
                    api_key=api_key,
                    base_url=provider_data.get('base_url'),
                    organization=provider_data.get('organization'),
                    timeout_ms=int(timeout_ms) if timeout_ms is not None else None,
                    max_retries=int(max_retries) if max_retries is not None else None,
                    headers={str(k): str(v) for k, v in headers.items()},
                    metadata=provider_data.get('metadata') or {},
                )
            except (TypeError, ValueError) as e:
                raise ConfigError(f"Invalid value for provider '{provider_name}': {e}")
        return providers

    def _parse_pricing(self, pricing_raw: dict) -> dict[str, dict[str, tuple[float, float]]]:
        pricing: dict[str, dict[str, tuple[float, float]]] = {}
        for provider_name, models_pricing in pricing_raw.items():
            if not isinstance(models_pricing, dict):
                raise ConfigError(f"Pricing for '{provider_name}' must be a mapping")

            pricing[provider_name] = {}
            for model_name, pricing_data in models_pricing.items():
                if not isinstance(pricing_data, dict):
                    raise ConfigError(f"Pricing for '{provider_name}/{model_name}' must be a mapping")
                try:
                    input_cost = float(pricing_data.get('input_cost_per_1m', 0))
                    output_cost = float(pricing_data.get('output_cost_per_1m', 0))
                except (TypeError, ValueError):
                    raise ConfigError(f"Pricing for '{provider_name}/{model_name}' must be numeric")
                if input_cost < 0 or output_cost < 0:
                    raise ConfigError(f"Pricing for '{provider_name}/{model_name}' cannot be negative")
                pricing[provider_name][model_name] = (input_cost, output_cost)
        return pricing

    def get_provider_config(self, provider: str) -> ProviderConfig:
        """
        Get configuration for a specific provider.

        Args:
            provider: Provider name (e.g., 'deepseek', 'openai')

        Returns:
            ProviderConfig for the specified provider

        Raises:
            ConfigError: If provider is not configured
        """
        if provider not in self.config.providers:
            raise ConfigError(f"Provider not configured: {provider}")
        return self.config.providers[provider]

    def get_pricing_override(self, provider: str, model: str) -> tuple[float, float] | None:
        """Return (input_cost_per_1m, output_cost_per_1m) from config, if any."""
        return self.config.pricing.get(provider, {}).get(model)

    def get_default_provider(self) -> str:
        """Get the default provider name."""
        return self.config.default_provider

    def get_default_model(self) -> str:
        """Get the default model id."""
        return self.config.default_model

    def get_configured_providers(self) -> list[str]:
        """
        Get list of all configured providers.

        Returns:
            List of provider names that have valid API keys configured
        """
        return list(self.config.providers.keys())
