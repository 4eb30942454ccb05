"""
Pipeline configuration for SafeRoute.

Owns every policy constant that affects how routes are fetched, sampled and
scored. Provider endpoints and field masks stay in the client modules.

Frozen dataclasses provide type checking and IDE support without
the indirection of YAML/JSON config files. Deployments override individual
values with SAFEROUTE_* environment variables via PipelineConfig.from_env().
"""

import logging
import os
from dataclasses import dataclass, fields
from typing import Mapping, Optional

logger = logging.getLogger(__name__)

ENV_PREFIX = "SAFEROUTE_"


@dataclass(frozen=True)
class PipelineConfig:
    cache_ttl_seconds: float = 300.0       # lookup cache freshness window
    lookup_timeout_seconds: float = 5.0    # autocomplete / place details / geocode
    scorer_concurrency: int = 3            # oracle calls in flight per window
    max_street_view_images: int = 10       # per route, destination included
    gemini_model: str = "gemini-1.5-flash"
    max_walk_bike_km: float = 30.0         # longer WALK/BICYCLE requests are rejected
    http_timeout_seconds: float = 15.0     # Routes API, Street View, weather

    def __post_init__(self):
        if self.scorer_concurrency < 1:
            raise ValueError(f"scorer_concurrency must be >= 1, got {self.scorer_concurrency}")
        if self.max_street_view_images < 2:
            raise ValueError(
                f"max_street_view_images must be >= 2, got {self.max_street_view_images}"
            )

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "PipelineConfig":
        """Build a config, overriding defaults with SAFEROUTE_<FIELD> variables.

        Unparseable values are ignored with a warning.
        """
        environ = os.environ if environ is None else environ
        overrides = {}
        for f in fields(cls):
            raw = environ.get(ENV_PREFIX + f.name.upper())
            if raw is None or raw == "":
                continue
            default = getattr(cls, f.name)
            try:
                overrides[f.name] = type(default)(raw)
            except ValueError:
                logger.warning("Ignoring invalid %s%s=%r", ENV_PREFIX, f.name.upper(), raw)
        return cls(**overrides)


DEFAULT_CONFIG = PipelineConfig()
