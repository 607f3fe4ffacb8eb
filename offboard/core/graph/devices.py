"""Registered device lookups."""
from __future__ import annotations
from typing import List

from .client import GraphClient
from .models import RegisteredDevice


class DeviceService:
    def __init__(self, client: GraphClient):
        self.client = client

    def list_registered_devices(self, subject_id: str) -> List[RegisteredDevice]:
        """Devices the user registered (BYOD / workplace join)."""
        items = self.client.collect_pages(
            f"/users/{subject_id}/registeredDevices",
            operation="list_registered_devices",
        )
        # Directory objects other than devices can appear in this collection
        return [
            RegisteredDevice.from_graph(item)
            for item in items
            if item.get("@odata.type", "#microsoft.graph.device") == "#microsoft.graph.device"
        ]
