import json

from pyproj import Proj
from shapely import LineString, Polygon, to_geojson

from autosteer.errors import ErrorType, GenerationError


class LocalPlane:
    """Flat easting/northing plane centred on a field origin.

    A transverse mercator projection centred on the origin keeps distances in
    metres accurate across a single field.
    """

    def __init__(self, origin_lat, origin_lon):
        self.origin_lat = origin_lat
        self.origin_lon = origin_lon
        self.proj_converter = Proj(
            f"+proj=tmerc +lat_0={origin_lat} +lon_0={origin_lon} +k=1 +x_0=0 +y_0=0 +ellps=WGS84 +datum=WGS84 +units=m +no_defs"
        )

    # centre the plane on the first vertex of a GeoJSON polygon
    @classmethod
    def from_geojson(cls, polygon):
        ring = exterior_ring(polygon)
        lon, lat = ring[0][0], ring[0][1]
        return cls(lat, lon)

    def to_local(self, lon, lat):
        return self.proj_converter(lon, lat)

    def to_geo(self, easting, northing):
        return self.proj_converter(easting, northing, inverse=True)

    # convert from lat/long to local x/y
    def get_local_coords(self, geopoints):
        coords = list()
        for point in geopoints:
            coords.append(self.to_local(point[0], point[1]))
        return coords

    # convert from local x/y to lat/long
    def get_geopoints(self, coords):
        geopoints = list()
        for coord in coords:
            geopoints.append(self.to_geo(coord[0], coord[1]))
        return geopoints

    def ring_from_geojson(self, polygon):
        ring = self.get_local_coords(exterior_ring(polygon))
        # rings wrap implicitly, drop the repeated closing point
        if len(ring) > 1 and ring[0] == ring[-1]:
            ring = ring[:-1]
        return ring

    def to_geojson_line(self, coords):
        return json.loads(to_geojson(LineString(self.get_geopoints(coords))))

    def to_geojson_polygon(self, coords):
        return json.loads(to_geojson(Polygon(self.get_geopoints(coords))))


def exterior_ring(polygon):
    if polygon is None or polygon.get("type") != "Polygon":
        raise GenerationError(
            ErrorType.BAD_INPUT_DATA, "Boundary must be a GeoJSON Polygon."
        )
    coordinates = polygon.get("coordinates")
    if coordinates is None or len(coordinates) == 0 or len(coordinates[0]) < 3:
        raise GenerationError(
            ErrorType.BAD_INPUT_DATA, "Boundary polygon has no usable exterior ring."
        )
    # holes inside the field are not part of the boundary
    return coordinates[0]


# assemble a list of individual geojson geometry objects into a dictionary of structure that can be directly converted to a geojson feature collection object
def make_feature_collection(geojsons):
    features = list()
    for geojson in geojsons:
        features.append({"type": "Feature", "geometry": geojson, "properties": dict()})
    return {"type": "FeatureCollection", "features": features}
