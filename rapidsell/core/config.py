"""
Configuration Manager for the rapid-sell engine
Loads configuration from YAML files with environment variable support
"""

import os
import re
import yaml
from typing import Dict, Any, Optional
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

from rapidsell.core.priority_fees import PriorityFeeTier, DEFAULT_TIER_LAMPORTS


@dataclass
class RPCConfig:
    """Solana RPC endpoint and its request budget"""
    url: str
    provider_rps: float = 50.0
    safety_margin_rps: float = 5.0
    timeout_s: float = 10.0
    commitment: str = "processed"

    @property
    def ceiling_rps(self) -> float:
        """Requests per second actually dispatched"""
        return self.provider_rps - self.safety_margin_rps


@dataclass
class JupiterConfig:
    """Quote/swap aggregator endpoints"""
    quote_url: str = "https://lite-api.jup.ag/swap/v1/quote"
    swap_url: str = "https://lite-api.jup.ag/swap/v1/swap"
    slippage_bps: int = 1000
    timeout_s: float = 5.0


@dataclass
class BackoffConfig:
    """Sleep durations keyed by error class (seconds)"""
    base_delay_s: float = 0.02
    rate_limited_factor: float = 2.0
    rate_limited_max_s: float = 0.3
    network_delay_s: float = 0.1


@dataclass
class SellConfig:
    """Per-run engine settings"""
    max_retries: int = 500
    stagger_ms: int = 0
    initial_delay_ms: int = 0
    priority_first: bool = True
    poll_interval_s: float = 0.1
    poll_max_checks: int = 100
    progress_log_every: int = 20


@dataclass
class PriorityFeeConfig:
    """Priority fee tier selection and lamport amounts"""
    tier: PriorityFeeTier = PriorityFeeTier.MEDIUM
    tier_lamports: Dict[PriorityFeeTier, int] = field(
        default_factory=lambda: dict(DEFAULT_TIER_LAMPORTS)
    )
    randomize: bool = True


@dataclass
class LogConfig:
    """Logging configuration"""
    level: str = "INFO"
    format: str = "console"
    output_file: Optional[str] = None


@dataclass
class MetricsConfig:
    """Metrics configuration"""
    enable_histogram: bool = True


@dataclass
class EngineConfig:
    """Complete engine configuration"""
    rpc_config: RPCConfig
    jupiter_config: JupiterConfig = field(default_factory=JupiterConfig)
    sell_config: SellConfig = field(default_factory=SellConfig)
    backoff_config: BackoffConfig = field(default_factory=BackoffConfig)
    fee_config: PriorityFeeConfig = field(default_factory=PriorityFeeConfig)
    log_config: LogConfig = field(default_factory=LogConfig)
    metrics_config: MetricsConfig = field(default_factory=MetricsConfig)


class ConfigurationManager:
    """Manages engine configuration from YAML files and environment variables"""

    def __init__(self, config_path: str, env_file: Optional[str] = None):
        """
        Initialize configuration manager

        Args:
            config_path: Path to YAML configuration file
            env_file: Optional .env file loaded before substitution
        """
        self.config_path = Path(config_path)
        self.env_file = env_file
        self._config_data: Optional[Dict[str, Any]] = None
        self._engine_config: Optional[EngineConfig] = None

    def load_config(self) -> EngineConfig:
        """
        Load and validate configuration from file

        Returns:
            EngineConfig: Validated configuration object

        Raises:
            FileNotFoundError: If config file doesn't exist
            ValueError: If config is invalid
        """
        if not self.config_path.exists():
            raise FileNotFoundError(
                f"Configuration file not found: {self.config_path}"
            )

        load_dotenv(self.env_file)

        with open(self.config_path, 'r', encoding='utf-8') as f:
            raw_config = yaml.safe_load(f) or {}

        self._config_data = self._substitute_env_vars(raw_config)
        self._engine_config = self._parse_config(self._config_data)

        return self._engine_config

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get configuration value by dot-notation key

        Args:
            key: Dot-notation key (e.g., "sell.max_retries")
            default: Default value if key not found
        """
        if self._config_data is None:
            raise RuntimeError("Configuration not loaded. Call load_config() first.")

        value = self._config_data
        for k in key.split('.'):
            if isinstance(value, dict):
                value = value.get(k)
                if value is None:
                    return default
            else:
                return default

        return value

    def _substitute_env_vars(self, config: Any) -> Any:
        """
        Recursively substitute ${VAR_NAME} patterns with environment values

        Raises:
            ValueError: If a referenced variable is not set
        """
        if isinstance(config, dict):
            return {k: self._substitute_env_vars(v) for k, v in config.items()}
        elif isinstance(config, list):
            return [self._substitute_env_vars(item) for item in config]
        elif isinstance(config, str):
            def replace_var(match):
                var_name = match.group(1)
                value = os.getenv(var_name)
                if value is None:
                    raise ValueError(
                        f"Environment variable {var_name} not found"
                    )
                return value

            return re.sub(r'\$\{([^}]+)\}', replace_var, config)
        else:
            return config

    def _parse_config(self, config: Dict[str, Any]) -> EngineConfig:
        """
        Parse raw configuration into typed objects

        Raises:
            ValueError: If configuration is invalid
        """
        rpc_data = config.get('rpc', {})
        if not rpc_data.get('url'):
            raise ValueError("No RPC url configured")

        rpc_config = RPCConfig(
            url=rpc_data['url'],
            provider_rps=float(rpc_data.get('provider_rps', 50.0)),
            safety_margin_rps=float(rpc_data.get('safety_margin_rps', 5.0)),
            timeout_s=float(rpc_data.get('timeout_s', 10.0)),
            commitment=rpc_data.get('commitment', 'processed')
        )
        if rpc_config.ceiling_rps <= 0:
            raise ValueError(
                "rpc.provider_rps must exceed rpc.safety_margin_rps"
            )

        jup_data = config.get('jupiter', {})
        jupiter_config = JupiterConfig(
            quote_url=jup_data.get('quote_url', JupiterConfig.quote_url),
            swap_url=jup_data.get('swap_url', JupiterConfig.swap_url),
            slippage_bps=int(jup_data.get('slippage_bps', 1000)),
            timeout_s=float(jup_data.get('timeout_s', 5.0))
        )

        sell_data = config.get('sell', {})
        sell_config = SellConfig(
            max_retries=int(sell_data.get('max_retries', 500)),
            stagger_ms=int(sell_data.get('stagger_ms', 0)),
            initial_delay_ms=int(sell_data.get('initial_delay_ms', 0)),
            priority_first=bool(sell_data.get('priority_first', True)),
            poll_interval_s=float(sell_data.get('poll_interval_s', 0.1)),
            poll_max_checks=int(sell_data.get('poll_max_checks', 100)),
            progress_log_every=int(sell_data.get('progress_log_every', 20))
        )
        if sell_config.max_retries < 1:
            raise ValueError("sell.max_retries must be at least 1")
        if sell_config.poll_max_checks < 1:
            raise ValueError("sell.poll_max_checks must be at least 1")

        backoff_data = config.get('backoff', {})
        backoff_config = BackoffConfig(
            base_delay_s=float(backoff_data.get('base_delay_s', 0.02)),
            rate_limited_factor=float(backoff_data.get('rate_limited_factor', 2.0)),
            rate_limited_max_s=float(backoff_data.get('rate_limited_max_s', 0.3)),
            network_delay_s=float(backoff_data.get('network_delay_s', 0.1))
        )

        fee_data = config.get('priority_fees', {})
        tier_lamports = dict(DEFAULT_TIER_LAMPORTS)
        for name, lamports in (fee_data.get('tiers') or {}).items():
            tier_lamports[PriorityFeeTier.parse(name)] = int(lamports)
        fee_config = PriorityFeeConfig(
            tier=PriorityFeeTier.parse(fee_data.get('tier', 'medium')),
            tier_lamports=tier_lamports,
            randomize=bool(fee_data.get('randomize', True))
        )

        log_data = config.get('logging', {})
        log_config = LogConfig(
            level=log_data.get('level', 'INFO'),
            format=log_data.get('format', 'console'),
            output_file=log_data.get('output_file')
        )

        metrics_data = config.get('metrics', {})
        metrics_config = MetricsConfig(
            enable_histogram=bool(metrics_data.get('enable_histogram', True))
        )

        return EngineConfig(
            rpc_config=rpc_config,
            jupiter_config=jupiter_config,
            sell_config=sell_config,
            backoff_config=backoff_config,
            fee_config=fee_config,
            log_config=log_config,
            metrics_config=metrics_config
        )
