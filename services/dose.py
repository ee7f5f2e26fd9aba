"""Conversion of raw sensor readings to uSv/h."""

from __future__ import annotations

from typing import Optional

from models.records import CPM, DOSE_RATE_UNITS
from rules.loader import SensitivityTable


class DoseNormalizer:
    """Divides CPM by the device's gamma sensitivity; dose rates pass through.

    A reading without a device id is assumed to come from a bGeigie with an
    LND 7317 tube. CPM from a device missing from the table yields 0.0.
    """

    def __init__(self, sensitivity: SensitivityTable) -> None:
        self.default_cpm_per_usvh = sensitivity.default_cpm_per_usvh
        self._by_device = sensitivity.as_mapping()

    def sensitivity_for(self, device_id: Optional[int]) -> Optional[float]:
        if device_id is None:
            return self.default_cpm_per_usvh
        return self._by_device.get(device_id)

    def normalize(self, unit: Optional[str], device_id: Optional[int], value: float) -> float:
        unit = (unit or "").lower()
        if unit in DOSE_RATE_UNITS:
            return value
        if unit == CPM:
            cpm_per_usvh = self.sensitivity_for(device_id)
            if cpm_per_usvh is not None:
                return value / cpm_per_usvh
        return 0.0
