from state import Zone


class ZoneDirectory:
    """Zones known to the backend, fetched once per page load and never mutated."""

    def __init__(self, zones=()):
        self._zones = tuple(zones)
        self._by_id = {z.id: z for z in self._zones}  # {1: Zone(1, 'Front Lawn'), 2: Zone(2, 'Back Lawn')}

    @classmethod
    def from_payload(cls, items) -> "ZoneDirectory":
        return cls(Zone(id=int(item["zone"]), name=str(item["name"])) for item in items)

    @property
    def zones(self) -> tuple:
        return self._zones

    def get(self, zone_id):
        return self._by_id.get(zone_id)

    def name_for(self, zone_id, default=None):
        zone = self._by_id.get(zone_id)
        return zone.name if zone else default

    def __contains__(self, zone_id):
        return zone_id in self._by_id

    def __iter__(self):
        return iter(self._zones)

    def __len__(self):
        return len(self._zones)
