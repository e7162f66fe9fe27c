"""
Site adapters - one per county, each pairing an assessor site with a recorder site.
"""

import re
from typing import Dict, List, Tuple, Type

from ..errors import ConfigurationError
from .base import SiteAdapter, StageOutcome
from .durham_county_north_carolina import DurhamCountyNorthCarolina
from .duval_county_florida import DuvalCountyFlorida

ADAPTERS: Dict[Tuple[str, str], Type[SiteAdapter]] = {
    (cls.county.lower(), cls.state.upper()): cls for cls in (DurhamCountyNorthCarolina, DuvalCountyFlorida)
}


def _key(county: str, state: str) -> Tuple[str, str]:
    county = re.sub(r"\s+county$", "", (county or "").strip(), flags=re.IGNORECASE)
    return county.lower(), (state or "").strip().upper()


def get_adapter(county: str, state: str, **kwargs) -> SiteAdapter:
    """Instantiate and validate the adapter for a county, e.g. ``get_adapter("Durham County", "nc")``."""
    cls = ADAPTERS.get(_key(county, state))
    if cls is None:
        raise ConfigurationError(f"No adapter for {county}, {state}")
    return cls(**kwargs).validate()


def list_adapters() -> List[dict]:
    return [
        {
            "name": cls.name,
            "county": cls.county,
            "state": cls.state,
            "assessorUrl": cls.assessor_url,
            "recorderUrl": cls.recorder_url,
        }
        for cls in ADAPTERS.values()
    ]


__all__ = [
    "SiteAdapter",
    "StageOutcome",
    "DurhamCountyNorthCarolina",
    "DuvalCountyFlorida",
    "get_adapter",
    "list_adapters",
]
