#Marks routing as a package.
#Re-exports the public geo/ETA API (distance, bounding_region, eta, estimate_rider_eta)
#so other modules import from routing without knowing internal file names.
#No business logic.

from .geo import MapRegion, bounding_region, distance, path_distance
from .eta_service import EtaEstimate, estimate_rider_eta, eta

__all__ = [
           "distance",
           "path_distance",
             "bounding_region",
             "MapRegion",
             "eta",
             "estimate_rider_eta",
             "EtaEstimate",
             ]
