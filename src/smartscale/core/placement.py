#!/usr/bin/env python3
"""
Placement balancer: spreads new workers across availability zones
"""

import logging
from typing import Dict, Iterable, List, Tuple

from smartscale.database.schemas import WorkerNode
from smartscale.exceptions import PlacementError

logger = logging.getLogger(__name__)


class PlacementBalancer:
    """Picks the least populated zone for the next worker"""

    @staticmethod
    def zone_counts(subnets_by_zone: Dict[str, List[str]], workers: Iterable[WorkerNode]) -> Dict[str, int]:
        """Workers per configured zone; workers outside those zones are ignored"""
        counts = {zone: 0 for zone in subnets_by_zone}
        for worker in workers:
            if worker.zone in counts:
                counts[worker.zone] += 1
        return counts

    def choose(self, subnets_by_zone: Dict[str, List[str]], workers: Iterable[WorkerNode]) -> Tuple[str, str]:
        """
        Return (zone, subnet_id) for a new worker

        Zones are sorted by worker count; the sort is stable so ties go to
        the zone enumerated first. The first subnet registered for the zone
        is used.
        """
        zones = [zone for zone, subnets in subnets_by_zone.items() if subnets]
        if not zones:
            raise PlacementError("No zones/subnets available for worker placement")

        counts = self.zone_counts(subnets_by_zone, workers)
        target_zone = sorted(zones, key=lambda zone: counts[zone])[0]
        target_subnet = subnets_by_zone[target_zone][0]

        logger.info(f"Placement: zone counts {counts}, choosing {target_zone}/{target_subnet}")
        return target_zone, target_subnet
