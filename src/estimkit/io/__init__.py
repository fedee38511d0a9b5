"""Loading specifications and configuration from YAML or dicts."""

from estimkit.io.load import load_config, load_specs

__all__ = ["load_config", "load_specs"]
