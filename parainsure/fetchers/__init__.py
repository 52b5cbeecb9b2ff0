"""
Pluggable historical rainfall fetchers.

Each fetcher exposes::

    fetch_rainfall_total(lat, lon, start: date, end: date) -> float | None

returning the rainfall total in mm over the inclusive window, or ``None``
when the source has no usable data for it.  ``None`` means "invalid year",
never zero rainfall.

Settings carry a fetcher as ``{"name": "nasa_power", **constructor_kwargs}``;
``build_fetcher`` turns that block into an instance.
"""

from parainsure.fetchers.nasa_power import NasaPowerFetcher
from parainsure.fetchers.synthetic_rainfall import SyntheticRainfallFetcher

DEFAULT_FETCHER = "nasa_power"

RAINFALL_FETCHERS: dict[str, type] = {
    "nasa_power": NasaPowerFetcher,
    "synthetic_rainfall": SyntheticRainfallFetcher,
}


def get_fetcher(name: str, **kwargs):
    """Instantiate a rainfall fetcher by registry name."""
    try:
        cls = RAINFALL_FETCHERS[name]
    except KeyError:
        raise KeyError(
            f"Unknown fetcher '{name}'. Available: {sorted(RAINFALL_FETCHERS)}"
        ) from None
    return cls(**kwargs)


def build_fetcher(config: dict | None):
    """Instantiate the fetcher described by a settings block.

    The block is not modified.  Without a ``name`` the block configures ``DEFAULT_FETCHER``.
    """
    options = dict(config or {})
    return get_fetcher(options.pop("name", DEFAULT_FETCHER), **options)
