"""
Configuration management for shelfwise.

Handles loading and saving user configuration from:
- XDG config directory: ~/.config/shelfwise/config.json
- Fallback: ~/.shelfwise/config.json
"""

import json
import logging
import os
from pathlib import Path
from typing import Dict, Any, Optional
from dataclasses import dataclass, asdict, field

logger = logging.getLogger(__name__)

WEEK_STARTS = ('monday', 'sunday')


@dataclass
class RulesConfig:
    """Defaults for rule evaluation."""
    default_user: Optional[str] = None
    week_start: str = "monday"


@dataclass
class CLIConfig:
    """CLI default options."""
    verbose: bool = False
    page_size: int = 50


@dataclass
class LibraryConfig:
    """Library-related settings."""
    default_path: Optional[str] = None


@dataclass
class ShelfwiseConfig:
    """Main shelfwise configuration."""
    rules: RulesConfig = field(default_factory=RulesConfig)
    cli: CLIConfig = field(default_factory=CLIConfig)
    library: LibraryConfig = field(default_factory=LibraryConfig)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "rules": asdict(self.rules),
            "cli": asdict(self.cli),
            "library": asdict(self.library),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ShelfwiseConfig':
        """Create from dictionary, ignoring unknown keys."""
        def known(section_cls, section):
            names = section_cls.__dataclass_fields__
            return {k: v for k, v in (section or {}).items() if k in names}

        config = cls(
            rules=RulesConfig(**known(RulesConfig, data.get("rules"))),
            cli=CLIConfig(**known(CLIConfig, data.get("cli"))),
            library=LibraryConfig(**known(LibraryConfig, data.get("library"))),
        )
        if config.rules.week_start not in WEEK_STARTS:
            logger.warning(f"Unsupported week_start '{config.rules.week_start}', using monday")
            config.rules.week_start = "monday"
        return config


def get_config_path() -> Path:
    """
    Get configuration file path.

    Follows XDG Base Directory specification:
    1. $XDG_CONFIG_HOME/shelfwise/config.json (usually ~/.config/shelfwise/config.json)
    2. Fallback: ~/.shelfwise/config.json

    Returns:
        Path to config file
    """
    xdg_config_home = Path(os.environ.get("XDG_CONFIG_HOME") or Path.home() / ".config")
    if xdg_config_home.exists():
        config_dir = xdg_config_home / "shelfwise"
    else:
        config_dir = Path.home() / ".shelfwise"

    return config_dir / "config.json"


def load_config() -> ShelfwiseConfig:
    """
    Load configuration from file.

    Returns:
        ShelfwiseConfig instance with loaded values or defaults
    """
    config_path = get_config_path()

    if not config_path.exists():
        return ShelfwiseConfig()

    try:
        with open(config_path, 'r') as f:
            data = json.load(f)
        return ShelfwiseConfig.from_dict(data)
    except (json.JSONDecodeError, OSError, TypeError, AttributeError) as e:
        logger.warning(f"Failed to load config from {config_path}: {e}, using defaults")
        return ShelfwiseConfig()


def save_config(config: ShelfwiseConfig) -> Path:
    """
    Save configuration to file.

    Args:
        config: Configuration to save

    Returns:
        Path the configuration was written to
    """
    config_path = get_config_path()
    config_path.parent.mkdir(parents=True, exist_ok=True)

    with open(config_path, 'w') as f:
        json.dump(config.to_dict(), f, indent=2)

    logger.info(f"Configuration saved to {config_path}")
    return config_path


def update_config(
    # Rule settings
    rules_default_user: Optional[str] = None,
    rules_week_start: Optional[str] = None,
    # CLI settings
    cli_verbose: Optional[bool] = None,
    cli_page_size: Optional[int] = None,
    # Library settings
    library_default_path: Optional[str] = None,
) -> ShelfwiseConfig:
    """
    Update configuration.

    Only updates provided values, leaving others unchanged.

    Raises:
        ValueError: If week_start is not monday or sunday
    """
    config = load_config()

    if rules_default_user is not None:
        config.rules.default_user = rules_default_user
    if rules_week_start is not None:
        week_start = rules_week_start.lower()
        if week_start not in WEEK_STARTS:
            raise ValueError(f"week_start must be one of {', '.join(WEEK_STARTS)}")
        config.rules.week_start = week_start

    if cli_verbose is not None:
        config.cli.verbose = cli_verbose
    if cli_page_size is not None:
        config.cli.page_size = cli_page_size

    if library_default_path is not None:
        config.library.default_path = library_default_path

    save_config(config)
    return config
