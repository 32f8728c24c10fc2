import logging
from datetime import datetime, timedelta
from collections import namedtuple

from pytz import timezone

__all__ = ["BusLine", "Direction", "Stop", "Prediction", "parsetime"]

TIMEZONE = timezone("America/Chicago")
STRPTIME = ("%Y%m%d %H:%M:%S", "%Y%m%d %H:%M")

def parsetime(timestring):
    """
    Parse an API timestamp (`YYYYMMDD HH:MM`, with seconds when the request
    asked for them) into a datetime localized to CTA time.

    >>> parsetime("20170512 14:25").strftime("%Y-%m-%d %H:%M %Z")
    '2017-05-12 14:25 CDT'
    """
    for fmt in STRPTIME:
        try:
            return TIMEZONE.localize(datetime.strptime(timestring, fmt))
        except ValueError:
            continue
    raise ValueError("Unrecognized Bustime timestamp: {!r}".format(timestring))


class BusLine(object):
    """
    Represents a certain bus route (e.g. 1 Bronzeville/Union Station).

    `directions` stays `None` until `initialize_directions` is called, which
    asks the API for the directions this route serves.
    """

    @classmethod
    def fromapi(_class, apiresponse):
        return _class(
            number = apiresponse['rt'],
            name = apiresponse['rtnm'],
            color = apiresponse.get('rtclr'),
            designator = apiresponse.get('rtdd')
        )

    def __init__(self, number, name, color=None, designator=None, directions=None):
        self.number = number
        self.name = name
        self.color = color
        self.designator = designator
        self.directions = directions

    def __str__(self):
        return "{} {}".format(self.number, self.name)

    def __repr__(self):
        classname = self.__class__.__name__
        return "{}({}, {})".format(classname, self.number, self.name)

    def __eq__(self, other):
        return isinstance(other, BusLine) and self.number == other.number

    def __hash__(self):
        return hash(str(self.number))

    def initialize_directions(self, api):
        """Fetch (or refetch) the directions served by this route."""
        self.directions = api.route_directions(self.number)
        logging.getLogger(__name__).debug("Route %s runs %s", self.number, self.directions)
        return self.directions

    def find_direction(self, name):
        """Return the direction named `name` (case insensitive), or None."""
        for direction in self.directions or []:
            if direction.name.lower() == str(name).lower():
                return direction


class Direction(object):
    """One direction (e.g. Northbound) traveled by a route, plus its stops."""

    @classmethod
    def fromapi(_class, apiresponse):
        # Older responses list directions as bare strings
        if isinstance(apiresponse, dict):
            return _class(apiresponse['dir'])
        return _class(apiresponse)

    def __init__(self, name, stops=None):
        self.name = name
        self.stops = stops

    def __str__(self):
        return "{}".format(self.name)

    def __repr__(self):
        classname = self.__class__.__name__
        return "{}({})".format(classname, self.name)

    def __eq__(self, other):
        return isinstance(other, Direction) and self.name == other.name

    def __hash__(self):
        return hash(self.name)

    def initialize_stops(self, api, rt):
        """
        Fetch the stops along route `rt` in this direction. If the request
        fails, whatever stops were already here are left untouched.
        """
        self.stops = api.stops(rt, self.name)
        logging.getLogger(__name__).debug("Found %s stops on route %s %s", len(self.stops), rt, self.name)
        return self.stops

    def find_stop(self, query):
        """
        Search the list of stops for the term passed to the function. Case
        insensitive, searches both the stop name and ID.
        """
        q = str(query).lower()
        return [stop for stop in self.stops or []
                if q in (stop.name or "").lower() or q in str(stop.id).lower()]


class Stop(object):
    """Represents a single stop with a location."""

    @classmethod
    def fromapi(_class, apiresponse):
        location = (float(apiresponse['lat']), float(apiresponse['lon']))
        # There might not be names occasionally
        name = apiresponse.get('stpnm')
        return _class(apiresponse['stpid'], name, location)

    def __init__(self, _id, name, location=None):
        self.id = str(_id)
        self.name = name
        self.location = location

    def __str__(self):
        name = self.name or "(Unnamed)"
        return "<Stop #{} {} at {}>".format(self.id, name, self.location)

    def __repr__(self):
        classname = self.__class__.__name__
        return "{}({}, {}, {})".format(classname, self.id, self.name, self.location)

    def __eq__(self, other):
        return isinstance(other, Stop) and self.id == other.id

    def __hash__(self):
        return hash(self.id)

    def predictions(self, api, rt, top):
        """Predicted bus ETAs at this stop for route(s) `rt`, at most `top` of them."""
        return api.predictions(self.id, rt, top)


class Prediction(object):
    """Represents an ETA or ETD prediction for a certain bus at a certain stop."""

    pstop = namedtuple("predicted_stop", ['id', 'name', 'feet_to'])

    @classmethod
    def fromapi(_class, apiresponse):
        stop = _class.pstop(apiresponse['stpid'], apiresponse.get('stpnm'), int(apiresponse.get('dstp') or 0))

        return _class(
            eta = parsetime(apiresponse['prdtm']),
            generated = parsetime(apiresponse['tmstmp']),
            is_arrival = apiresponse.get('typ') == 'A',
            delayed = bool(apiresponse.get('dly')),
            stop = stop,
            vid = apiresponse.get('vid'),
            route = apiresponse['rt'],
            designator = apiresponse.get('rtdd'),
            direction = apiresponse.get('rtdir'),
            destination = apiresponse.get('des'),
            countdown = apiresponse.get('prdctdn'),
            block = apiresponse.get('tablockid'),
            trip = apiresponse.get('tatripid'),
            zone = apiresponse.get('zone') or None
        )

    def __init__(self, eta, generated, is_arrival, delayed, stop, vid, route,
                 designator=None, direction=None, destination=None, countdown=None,
                 block=None, trip=None, zone=None):
        self.eta = eta
        self.generated = generated
        self.is_arrival = is_arrival
        self.delayed = delayed
        self.stop = stop
        self.vid = vid
        self.route = route
        self.designator = designator
        self.direction = direction
        self.destination = destination
        self.countdown = countdown
        self.block = block
        self.trip = trip
        self.zone = zone

    def __str__(self):
        phrase = "ETA" if self.is_arrival else "ETD"
        return "<Prediction> {}: {} Bus: {} Route: {} {} Stop: {}".format(
            phrase, self.eta, self.vid, self.route, self.direction, self.stop.name)

    def __repr__(self):
        return str(self)

    @property
    def dist_to_stop(self):
        return self.stop.feet_to

    @property
    def freshness(self):
        """How long ago the API generated this prediction."""
        now = datetime.now(TIMEZONE)
        change = divmod((now - self.generated).total_seconds(), 60)
        return timedelta(minutes=change[0], seconds=change[1])
