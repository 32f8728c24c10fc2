import logging
import os
from enum import Enum

import requests
from requests.utils import requote_uri

from .utils import queryjoin, redact
from .datatypes import BusLine, Direction, Stop, Prediction

__all__ = [
    "BustimeError", "MalformedRequestError", "TransportError", "InvalidResponseError",
    "UpstreamError", "APILimitExceeded", "Parameter", "Endpoint", "BustimeAPI"
]

class BustimeError(Exception): pass
class MalformedRequestError(BustimeError, ValueError): pass

class TransportError(BustimeError):
    """
    The request never got a usable HTTP response. The `requests` exception
    behind it is on `original`, unchained: its text carries the full URL.
    """

    def __init__(self, message, original=None):
        super(TransportError, self).__init__(message)
        self.original = original

class InvalidResponseError(BustimeError): pass

class UpstreamError(BustimeError):
    """The API answered with an error envelope instead of data."""

    def __init__(self, message, messages=None):
        super(UpstreamError, self).__init__(message)
        self.message = message
        self.messages = messages or [message]

class APILimitExceeded(UpstreamError): pass

class Parameter(Enum):
    """Query parameters the API understands, by their on-wire key."""

    ROUTE = "rt"
    DIRECTION = "dir"
    STOPID = "stpid"
    LIMIT = "top"

    @property
    def format(self):
        return "&{}=".format(self.value)

class Endpoint(Enum):
    """
    API endpoints as (path, resource key of the response, required
    parameters in the order they are built).
    """

    ROUTES = ("getroutes", "routes", ())
    DIRECTIONS = ("getdirections", "directions", (Parameter.ROUTE,))
    STOPS = ("getstops", "stops", (Parameter.ROUTE, Parameter.DIRECTION))
    PREDICTIONS = ("getpredictions", "prd", (Parameter.STOPID, Parameter.ROUTE, Parameter.LIMIT))

    def __init__(self, path, resource, required):
        self.path = path
        self.resource = resource
        self.required = required

class BustimeAPI(object):
    """
    A `requests` wrapper around the CTA's Bustime (BusTracker) API that
    builds request URLs, checks responses for the API's error envelope and
    turns the rest into `BusLine`, `Direction`, `Stop` and `Prediction`
    objects.

    Optional: `apikey` (defaults to the `BTRK` environment variable)
              `host` (defaults to `BUSTIME_HOST`, then ctabustracker.com)
              `timeout` (seconds per request, defaults to 10)
              `session` (a `requests.Session`, created if not given)

    Implements: `routes`, `route_directions`, `stops`, `predictions`

    >>> api = BustimeAPI("BOGUSAPIKEY")
    >>> [str(line) for line in api.routes()][:1]  # doctest: +SKIP
    ['1 Bronzeville/Union Station']

    Nothing about a request or its response is kept on the instance, so
    one API object can be reused for any number of calls, one at a time.
    The underlying session is not meant to be shared across threads.

    Official API documentation can be found at the CTA site:
    http://www.transitchicago.com/developers/bustracker.aspx
    """

    __api_version__ = 'v2'

    BASE = "http://{host}/bustime/api/v2/"
    DEFAULT_HOST = "ctabustracker.com"
    KEY_ENV = "BTRK"
    HOST_ENV = "BUSTIME_HOST"

    RESPONSE_TOKEN = "bustime-response"
    ERROR_TOKEN = "error"
    F_JSON = "&format=json"
    LIMIT_MESSAGE = "transaction limit"

    RECORDS = {
        Endpoint.ROUTES: BusLine,
        Endpoint.DIRECTIONS: Direction,
        Endpoint.STOPS: Stop,
        Endpoint.PREDICTIONS: Prediction
    }

    def __init__(self, apikey=None, host=None, timeout=10, session=None):
        apikey = apikey or os.environ.get(self.KEY_ENV)
        if not apikey:
            raise ValueError("No API key given and ${} is not set.".format(self.KEY_ENV))
        self._key = apikey
        self.host = host or os.environ.get(self.HOST_ENV) or self.DEFAULT_HOST
        self.timeout = timeout
        self.session = session or requests.Session()

    def __repr__(self):
        return "BustimeAPI(host={})".format(self.host)

    @property
    def base(self):
        return self.BASE.format(host=self.host)

    def endpoint(self, endpt, params=None, json=True):
        """
        Construct API endpoint URLs from an `Endpoint` (or its name) and
        `params`, either ordered (`Parameter`, value) pairs, a mapping of
        `Parameter` to value, or an already formatted string like
        "&rt=1&dir=Northbound". Parameters are kept in the order given.

        >>> api = BustimeAPI("BOGUSAPIKEY")
        >>> api.endpoint('ROUTES')
        'http://ctabustracker.com/bustime/api/v2/getroutes?key=BOGUSAPIKEY&format=json'
        >>> api.endpoint(Endpoint.STOPS, [(Parameter.ROUTE, "1"), (Parameter.DIRECTION, "Northbound")])
        'http://ctabustracker.com/bustime/api/v2/getstops?key=BOGUSAPIKEY&rt=1&dir=Northbound&format=json'
        """
        endpt = self._endpoint(endpt)

        if isinstance(params, str):
            querystring = params
        else:
            if params is None:
                pairs = []
            elif hasattr(params, "items"):
                pairs = list(params.items())
            else:
                pairs = list(params)

            for param, _ in pairs:
                if not isinstance(param, Parameter):
                    raise TypeError("Not a Bustime parameter: {!r}".format(param))

            supplied = [param for param, value in pairs if value is not None]
            missing = [param.value for param in endpt.required if param not in supplied]
            if missing:
                logging.getLogger(__name__).warning(
                    "%s request is missing required parameters: %s", endpt.path, ", ".join(missing))

            querystring = queryjoin(pairs)

        url = "{}{}?key={}{}{}".format(self.base, endpt.path, self._key, querystring,
                                       self.F_JSON if json else "")
        self.validate(url)
        return url

    def _endpoint(self, endpt):
        if isinstance(endpt, Endpoint):
            return endpt
        try:
            return Endpoint[str(endpt).upper()]
        except KeyError:
            raise ValueError("Unknown Bustime endpoint: {}".format(endpt)) from None

    def validate(self, url):
        """Raise `MalformedRequestError` unless `url` is a usable request URL."""
        if requote_uri(url) != url:
            raise MalformedRequestError("Request URL contains characters that must be escaped.")
        try:
            requests.Request('GET', url).prepare()
        except requests.exceptions.RequestException as e:
            # Don't chain: the original message repeats the URL, key included.
            raise MalformedRequestError(
                "Invalid request URL for host {!r} ({}).".format(self.host, type(e).__name__)) from None

    def response(self, url):
        """Grab an API response and return the parsed JSON document."""
        logging.getLogger(__name__).debug("GET %s", redact(url, self._key))

        try:
            resp = self.session.get(url, timeout=self.timeout)
            resp.raise_for_status()
        except requests.exceptions.RequestException as e:
            raise TransportError(
                "Bustime request failed: {}".format(redact(str(e), self._key)), original=e) from None

        try:
            document = resp.json()
        except ValueError:
            raise InvalidResponseError(
                "The Bustime API returned an invalid response: {!r}".format(resp.text[:200])) from None

        if not isinstance(document, dict):
            raise InvalidResponseError(
                "The Bustime API returned an invalid response: {!r}".format(document))
        return document

    def _errormessage(self, error):
        if isinstance(error, str):
            return error
        if isinstance(error, dict) and error.get('msg') is not None:
            return str(error['msg'])

    def errormessages(self, document):
        """
        Every message in the response's error envelope. The envelope only
        counts when its first entry carries a `msg`; otherwise this is [].
        A bare string or single object in place of the list is one entry.
        """
        body = document.get(self.RESPONSE_TOKEN)
        if not isinstance(body, dict) or not body.get(self.ERROR_TOKEN):
            return []

        errors = body[self.ERROR_TOKEN]
        if isinstance(errors, (dict, str)):
            errors = [errors]
        if not isinstance(errors, list) or self._errormessage(errors[0]) is None:
            return []
        messages = [self._errormessage(e) for e in errors]
        return [msg for msg in messages if msg is not None]

    def bustime_error(self, document):
        """The first error message in a response, or None if it has none."""
        messages = self.errormessages(document)
        return messages[0] if messages else None

    def errorhandle(self, messages):
        """Raise the appropriate exception for API error messages."""
        overlimit = any(self.LIMIT_MESSAGE in msg.lower() for msg in messages)
        if overlimit:
            raise APILimitExceeded(messages[0], messages)
        raise UpstreamError(messages[0], messages)

    def parseresponse(self, document, resource):
        """
        Pull the list of `resource` nodes out of a parsed API response.

        The error envelope is always checked first: a response carrying an
        error raises even if it also carries data. A response with neither
        gives an empty list.
        """
        messages = self.errormessages(document)
        if messages:
            self.errorhandle(messages)

        body = document.get(self.RESPONSE_TOKEN)
        if not isinstance(body, dict):
            return []

        nodes = body.get(resource)
        if nodes is None:
            return []
        elif isinstance(nodes, list):
            return nodes
        else:
            return [nodes]

    def _retrieve(self, url, endpt):
        document = self.response(url)
        nodes = self.parseresponse(document, endpt.resource)
        records = [self.RECORDS[endpt].fromapi(node) for node in nodes]
        logging.getLogger(__name__).debug("%s returned %s %s", endpt.path, len(records), endpt.resource)
        return records

    def fetch(self, endpt, params=None, json=True):
        """Build, send and decode one request."""
        endpt = self._endpoint(endpt)
        return self._retrieve(self.endpoint(endpt, params, json), endpt)

    def request(self, url, endpt):
        """Send an already built request URL and decode it as `endpt` records."""
        self.validate(url)
        return self._retrieve(url, self._endpoint(endpt))

    def routes(self):
        """
        Return a list of `BusLine`s for every route the API currently tracks.

        Response:
            `routes`: list of
                `rt`: route designator (e.g, 1, X9)
                `rtnm`: route name (e.g. Bronzeville/Union Station)
                `rtclr`: color of route used in map display (e.g. #336633)
                `rtdd`: route designator shown to riders
        """
        return self.fetch(Endpoint.ROUTES)

    def route_directions(self, rt):
        """
        Return a list of `Direction`s served by route `rt`
        (e.g. Northbound, Southbound). Their stops are not fetched.
        """
        return self.fetch(Endpoint.DIRECTIONS, [(Parameter.ROUTE, rt)])

    def stops(self, rt, direction):
        """
        Return a list of `Stop`s for route `rt` traveling `direction`.

        Response:
            `stops`: list of
                `stpid`: unique ID number for bus stop
                `stpnm`: stop name (e.g. "1509 S Michigan")
                `lat`, `lon`: location of stop
        """
        return self.fetch(Endpoint.STOPS, [(Parameter.ROUTE, rt), (Parameter.DIRECTION, direction)])

    def predictions(self, stpid, rt, top):
        """
        Retrieve up to `top` `Prediction`s for stop(s) `stpid` on route(s)
        `rt`. Both take a single id, a comma-separated list or an iterable.
        """
        params = [(Parameter.STOPID, stpid), (Parameter.ROUTE, rt), (Parameter.LIMIT, top)]
        return self.fetch(Endpoint.PREDICTIONS, params)
