"""
Engine configuration.

Settings come from a YAML file validated against ``CONFIG_SCHEMA``. The file
location is taken from ``TASKLEDGER_CONFIG``; the data directory can be
overridden with ``TASKLEDGER_DATA_DIR``. Everything has a default, so no file
is required.

Example ``taskledger.yaml``::

    commission_split: 0.5
    currency_symbol: "$"
    data_dir: data
    invoice:
      prefix: INV
      due_days: 30
      issuer:
        name: Acme Services Ltd.
        address: 1 Market Street
        tax_id: US-123456
"""

import logging
import os
from dataclasses import dataclass, field
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, Optional

import jsonschema
import yaml

from .errors import ConfigError

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "TASKLEDGER_CONFIG"
DATA_DIR_ENV_VAR = "TASKLEDGER_DATA_DIR"
DEFAULT_DATA_DIR = Path("data")

CONFIG_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "additionalProperties": False,
    "properties": {
        "commission_split": {"type": "number", "minimum": 0, "maximum": 1},
        "currency_symbol": {"type": "string", "maxLength": 4},
        "data_dir": {"type": "string", "minLength": 1},
        "invoice": {
            "type": "object",
            "additionalProperties": False,
            "properties": {
                "prefix": {"type": "string", "pattern": "^[A-Z0-9]{1,10}$"},
                "due_days": {"type": "integer", "minimum": 0},
                "issuer": {
                    "type": "object",
                    "additionalProperties": False,
                    "properties": {
                        "name": {"type": "string"},
                        "address": {"type": "string"},
                        "tax_id": {"type": "string"},
                    },
                },
            },
        },
    },
}


@dataclass
class IssuerInfo:
    """Company details printed on every invoice."""

    name: str = "Marketplace Platform"
    address: str = ""
    tax_id: str = ""


@dataclass
class EngineConfig:
    """Validated engine settings."""

    commission_split: Decimal = Decimal("0.5")  # Specialist share of a settled task
    currency_symbol: str = "$"
    data_dir: Optional[Path] = None  # None keeps everything in memory
    invoice_prefix: str = "INV"
    invoice_due_days: int = 30
    issuer: IssuerInfo = field(default_factory=IssuerInfo)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EngineConfig":
        """Validate raw settings and build a config."""
        try:
            jsonschema.validate(instance=data, schema=CONFIG_SCHEMA)
        except jsonschema.ValidationError as e:
            location = "/".join(str(p) for p in e.absolute_path) or "<root>"
            raise ConfigError(f"Invalid configuration at {location}: {e.message}") from e

        invoice = data.get("invoice", {})
        issuer = invoice.get("issuer", {})
        config = cls(
            currency_symbol=data.get("currency_symbol", "$"),
            invoice_prefix=invoice.get("prefix", "INV"),
            invoice_due_days=invoice.get("due_days", 30),
            issuer=IssuerInfo(
                name=issuer.get("name", IssuerInfo.name),
                address=issuer.get("address", ""),
                tax_id=issuer.get("tax_id", ""),
            ),
        )
        if "commission_split" in data:
            # str() first so 0.1 stays 0.1 instead of its binary expansion
            config.commission_split = Decimal(str(data["commission_split"]))
        if data.get("data_dir"):
            config.data_dir = Path(data["data_dir"])
        return config


def load_config(path: Optional[Path] = None) -> EngineConfig:
    """Load configuration from ``path``, the environment, or defaults."""
    if path is None and os.environ.get(CONFIG_ENV_VAR):
        path = Path(os.environ[CONFIG_ENV_VAR])

    data: Dict[str, Any] = {}
    if path is not None:
        path = Path(path)
        if not path.exists():
            raise ConfigError(f"Config file not found: {path}")
        try:
            with open(path) as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Could not parse {path}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigError(f"{path} must contain a mapping at the top level")
        logger.info("Loaded configuration from %s", path)

    config = EngineConfig.from_dict(data)

    if os.environ.get(DATA_DIR_ENV_VAR):
        config.data_dir = Path(os.environ[DATA_DIR_ENV_VAR])

    return config
