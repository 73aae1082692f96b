"""Routing category -> payment instrument, held as an immutable snapshot"""

import json
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, Mapping

from card_router.domain.exceptions import InvalidInstrumentConfig, UnconfiguredDefault
from card_router.domain.models import Instrument, RoutingCategory


class InstrumentMap:
    """Validated, read-only category -> instrument mapping"""

    def __init__(self, instruments: Mapping[RoutingCategory, Instrument]):
        if RoutingCategory.DEFAULT not in instruments:
            raise UnconfiguredDefault("Instrument mapping must include a 'default' entry")
        self._instruments = MappingProxyType(dict(instruments))

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> "InstrumentMap":
        """
        Build from configuration of the form
        {"dining": {"instrument_id": "chase_sapphire", "token": "pm_..."}, ...}.

        Raises:
            UnconfiguredDefault: if "default" is missing
            InvalidInstrumentConfig: on unknown categories or empty fields
        """
        instruments: Dict[RoutingCategory, Instrument] = {}
        for key, entry in raw.items():
            try:
                category = RoutingCategory(key)
            except ValueError as e:
                raise InvalidInstrumentConfig(f"Unknown routing category: {key!r}") from e

            if not isinstance(entry, Mapping):
                raise InvalidInstrumentConfig(f"Instrument for {key!r} must be an object")

            instrument_id = str(entry.get("instrument_id") or "").strip()
            token = str(entry.get("token") or "").strip()
            if not instrument_id or not token:
                raise InvalidInstrumentConfig(
                    f"Instrument for {key!r} needs a non-empty instrument_id and token"
                )
            instruments[category] = Instrument(instrument_id=instrument_id, opaque_token=token)

        return cls(instruments)

    @classmethod
    def from_file(cls, path: str) -> "InstrumentMap":
        try:
            raw = json.loads(Path(path).read_text())
        except (OSError, ValueError) as e:
            raise InvalidInstrumentConfig(f"Cannot read instruments file {path}: {e}") from e
        if not isinstance(raw, dict):
            raise InvalidInstrumentConfig("Instruments file must contain a JSON object")
        return cls.from_mapping(raw)

    def select(self, category: RoutingCategory) -> Instrument:
        """Total lookup: unconfigured categories use the default instrument"""
        return self._instruments.get(category) or self._instruments[RoutingCategory.DEFAULT]

    def as_dict(self) -> Dict[str, str]:
        """Category -> instrument id, for display (tokens omitted)"""
        return {category.value: inst.instrument_id for category, inst in self._instruments.items()}


class InstrumentSelector:
    """
    Holds the active InstrumentMap.

    Hot reload builds and validates a new map, then swaps the reference in a
    single assignment. Callers take one snapshot per decision so a reload
    mid-request cannot mix two configurations.
    """

    def __init__(self, instruments: InstrumentMap):
        self._current = instruments

    def snapshot(self) -> InstrumentMap:
        return self._current

    def select(self, category: RoutingCategory) -> Instrument:
        return self._current.select(category)

    def swap(self, instruments: InstrumentMap) -> None:
        self._current = instruments


def load_instrument_map(app_settings) -> InstrumentMap:
    """Build the instrument map from settings, preferring instruments_file when set"""
    if app_settings.instruments_file:
        return InstrumentMap.from_file(app_settings.instruments_file)
    return InstrumentMap.from_mapping(app_settings.instruments)
