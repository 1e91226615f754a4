from __future__ import annotations

from typing import Dict, Iterable, List, Mapping, Optional

from .config import settings


class DeviceMap:
    """Static wiring of ESP32 devices to the series-connected panels they measure.

    Loaded once from configuration and validated up front so the rest of the
    pipeline can assume every panel belongs to at most one device.
    """

    def __init__(self, device_to_panels: Dict[str, List[str]]):
        self._device_to_panels = device_to_panels
        self._panel_to_device = {
            panel_id: device_id
            for device_id, panel_ids in device_to_panels.items()
            for panel_id in panel_ids
        }

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, Iterable[str]]) -> "DeviceMap":
        device_to_panels: Dict[str, List[str]] = {}
        owner: Dict[str, str] = {}
        for device_id, panel_ids in mapping.items():
            if not isinstance(device_id, str) or not device_id.strip():
                raise ValueError("Device identifiers must be non-empty strings")
            panels = list(panel_ids)
            if not panels:
                raise ValueError(f"Device {device_id} has no panels assigned")
            if len(set(panels)) != len(panels):
                raise ValueError(f"Device {device_id} lists the same panel more than once")
            for panel_id in panels:
                if panel_id in owner:
                    raise ValueError(
                        f"Panel {panel_id} is assigned to both {owner[panel_id]} and {device_id}"
                    )
                owner[panel_id] = device_id
            device_to_panels[device_id] = panels
        return cls(device_to_panels)

    @property
    def device_ids(self) -> List[str]:
        return list(self._device_to_panels)

    @property
    def panel_ids(self) -> List[str]:
        return list(self._panel_to_device)

    def __contains__(self, device_id: object) -> bool:
        return device_id in self._device_to_panels

    def panels_for(self, device_id: str) -> List[str]:
        return list(self._device_to_panels.get(device_id, []))

    def device_for(self, panel_id: str) -> Optional[str]:
        return self._panel_to_device.get(panel_id)

    def panel_count(self, device_id: str) -> int:
        return len(self._device_to_panels.get(device_id, [])) or 1

    def as_dict(self) -> Dict[str, List[str]]:
        return {device_id: list(panels) for device_id, panels in self._device_to_panels.items()}


device_map = DeviceMap.from_mapping(settings.DEVICE_PANEL_MAP)


def get_device_map() -> DeviceMap:
    return device_map
