import logging
import os
import traceback
import unittest
from collections import OrderedDict
from datetime import timedelta
from unittest.mock import Mock, patch

import requests

import ctabustime as p
from ctabustime import Endpoint, Parameter

ROUTES = {"bustime-response": {"routes": [
    {"rt": "1", "rtnm": "Bronzeville/Union Station", "rtclr": "#336633", "rtdd": "1"},
    {"rt": "X9", "rtnm": "Ashland Express", "rtclr": "#cc3300", "rtdd": "X9"}
]}}

DIRECTIONS = {"bustime-response": {"directions": [{"dir": "Northbound"}, {"dir": "Southbound"}]}}

STOPS = {"bustime-response": {"stops": [
    {"stpid": "1784", "stpnm": "1509 S Michigan", "lat": 41.861183, "lon": -87.623982},
    {"stpid": "1785", "stpnm": "Michigan & 14th Street", "lat": 41.864295, "lon": -87.624035}
]}}

PREDICTIONS = {"bustime-response": {"prd": [
    {"tmstmp": "20170512 14:20", "typ": "A", "stpnm": "Michigan & Balbo", "stpid": "1234",
     "vid": "8318", "dstp": 4263, "rt": "1", "rtdd": "1", "rtdir": "Northbound",
     "des": "Union Station", "prdtm": "20170512 14:25", "tablockid": "1 -702",
     "tatripid": "1010795", "dly": False, "prdctdn": "5", "zone": ""}
]}}

ERROR = {"bustime-response": {"error": [{"msg": "Invalid API access key supplied"}]}}
NOTHING = {"bustime-response": {}}

def mockresponse(document):
    resp = Mock()
    resp.json.return_value = document
    return resp

def mocksession(*documents):
    session = Mock()
    session.get.side_effect = [mockresponse(doc) for doc in documents]
    return session

class TestAPI(unittest.TestCase):
    def setUp(self):
        self.api = p.BustimeAPI("BOGUSAPIKEY")

    def useresponses(self, *documents):
        self.api = p.BustimeAPI("BOGUSAPIKEY", session=mocksession(*documents))
        return self.api

    def requested(self, call=0):
        return self.api.session.get.call_args_list[call][0][0]

class TestEndpoint(TestAPI):
    def test_routes(self):
        url = "http://ctabustracker.com/bustime/api/v2/getroutes?key=BOGUSAPIKEY&format=json"
        self.assertEqual(self.api.endpoint(Endpoint.ROUTES), url)

    def test_pdict(self):
        url = "http://ctabustracker.com/bustime/api/v2/getpredictions?key=BOGUSAPIKEY&stpid=1234&rt=1&top=5&format=json"
        params = [(Parameter.STOPID, "1234"), (Parameter.ROUTE, "1"), (Parameter.LIMIT, 5)]
        self.assertEqual(self.api.endpoint(Endpoint.PREDICTIONS, params), url)

    def test_url_shape(self):
        base = "http://ctabustracker.com/bustime/api/v2/"
        for endpt in Endpoint:
            params = [(param, "x{}".format(i)) for i, param in enumerate(endpt.required)]
            url = self.api.endpoint(endpt, params)
            self.assertTrue(url.startswith(base + endpt.path + "?key=BOGUSAPIKEY"))
            query = url.split("?key=BOGUSAPIKEY", 1)[1]
            expected = "".join("&{}=x{}".format(param.value, i) for i, param in enumerate(endpt.required))
            self.assertEqual(query, expected + "&format=json")

    def test_caller_order_kept(self):
        params = OrderedDict([(Parameter.DIRECTION, "Northbound"), (Parameter.ROUTE, "1")])
        url = self.api.endpoint(Endpoint.STOPS, params)
        self.assertTrue(url.endswith("?key=BOGUSAPIKEY&dir=Northbound&rt=1&format=json"))

    def test_preformatted_params(self):
        url = self.api.endpoint(Endpoint.STOPS, "&rt=1&dir=Northbound")
        self.assertTrue(url.endswith("getstops?key=BOGUSAPIKEY&rt=1&dir=Northbound&format=json"))

    def test_no_json_flag(self):
        url = self.api.endpoint(Endpoint.DIRECTIONS, [(Parameter.ROUTE, "1")], json=False)
        self.assertTrue(url.endswith("getdirections?key=BOGUSAPIKEY&rt=1"))

    def test_endpoint_by_name(self):
        self.assertEqual(self.api.endpoint('stops', [(Parameter.ROUTE, "1"), (Parameter.DIRECTION, "Northbound")]),
                         self.api.endpoint(Endpoint.STOPS, [(Parameter.ROUTE, "1"), (Parameter.DIRECTION, "Northbound")]))
        self.assertRaises(ValueError, self.api.endpoint, 'VEHICLES')

    def test_rejects_unknown_parameter(self):
        self.assertRaises(TypeError, self.api.endpoint, Endpoint.DIRECTIONS, [("rt", "1")])

    def test_values_quoted(self):
        url = self.api.endpoint(Endpoint.PREDICTIONS, [(Parameter.STOPID, ["1234", "5678"]),
                                                       (Parameter.ROUTE, "1"), (Parameter.LIMIT, 5)])
        self.assertIn("&stpid=1234,5678&", url)
        url = self.api.endpoint(Endpoint.STOPS, [(Parameter.ROUTE, "1"), (Parameter.DIRECTION, "North bound")])
        self.assertIn("&dir=North%20bound", url)

    def test_none_skipped(self):
        url = self.api.endpoint(Endpoint.PREDICTIONS, [(Parameter.STOPID, "1234"), (Parameter.ROUTE, None),
                                                       (Parameter.LIMIT, None)])
        self.assertTrue(url.endswith("?key=BOGUSAPIKEY&stpid=1234&format=json"))

    def test_missing_required_logged(self):
        with self.assertLogs('ctabustime.interface', 'WARNING') as logs:
            self.api.endpoint(Endpoint.STOPS, [(Parameter.ROUTE, "1")])
        self.assertIn("dir", logs.output[0])

    def test_malformed_key(self):
        api = p.BustimeAPI("BOGUS KEY")
        with self.assertRaises(p.MalformedRequestError) as cm:
            api.endpoint(Endpoint.ROUTES)
        self.assertNotIn("BOGUS KEY", str(cm.exception))

    def test_malformed_host(self):
        api = p.BustimeAPI("BOGUSAPIKEY", host="ctabustracker.com:notaport")
        with self.assertRaises(p.MalformedRequestError) as cm:
            api.endpoint(Endpoint.ROUTES)
        self.assertNotIn("BOGUSAPIKEY", str(cm.exception))
        self.assertIsNone(cm.exception.__cause__)

class TestConfig(unittest.TestCase):
    def test_key_from_environment(self):
        with patch.dict(os.environ, {"BTRK": "ENVKEY"}, clear=True):
            api = p.BustimeAPI()
        self.assertIn("?key=ENVKEY&", api.endpoint(Endpoint.ROUTES))

    def test_host_from_environment(self):
        with patch.dict(os.environ, {"BTRK": "ENVKEY", "BUSTIME_HOST": "localhost:8080"}, clear=True):
            api = p.BustimeAPI()
        self.assertTrue(api.endpoint(Endpoint.ROUTES).startswith("http://localhost:8080/bustime/api/v2/getroutes"))

    def test_missing_key(self):
        with patch.dict(os.environ, {}, clear=True):
            self.assertRaises(ValueError, p.BustimeAPI)

    def test_repr_hides_key(self):
        self.assertNotIn("BOGUSAPIKEY", repr(p.BustimeAPI("BOGUSAPIKEY")))

class TestRespParser(TestAPI):
    def test_correct_rt(self):
        self.assertEqual(self.api.parseresponse(ROUTES, "routes"), ROUTES["bustime-response"]["routes"])

    def test_errhandle(self):
        with self.assertRaises(p.UpstreamError) as cm:
            self.api.parseresponse(ERROR, "routes")
        self.assertEqual(cm.exception.message, "Invalid API access key supplied")
        self.assertEqual(str(cm.exception), "Invalid API access key supplied")

    def test_error_wins_over_data(self):
        both = {"bustime-response": {"error": [{"msg": "X"}], "routes": ROUTES["bustime-response"]["routes"]}}
        with self.assertRaises(p.UpstreamError) as cm:
            self.api.parseresponse(both, "routes")
        self.assertEqual(cm.exception.message, "X")

    def test_bustime_error(self):
        self.assertEqual(self.api.bustime_error(ERROR), "Invalid API access key supplied")
        self.assertIsNone(self.api.bustime_error(ROUTES))
        self.assertIsNone(self.api.bustime_error({}))

    def test_all_messages_kept(self):
        errors = {"bustime-response": {"error": [{"rt": "1", "msg": "No data found for parameter"},
                                                 {"rt": "X9", "msg": "No service scheduled"}]}}
        with self.assertRaises(p.UpstreamError) as cm:
            self.api.parseresponse(errors, "prd")
        self.assertEqual(cm.exception.message, "No data found for parameter")
        self.assertEqual(cm.exception.messages, ["No data found for parameter", "No service scheduled"])

    def test_overlimit(self):
        overlimit = {"bustime-response": {"error": [{"msg": "Transaction limit for current day has been exceeded."}]}}
        self.assertRaises(p.APILimitExceeded, self.api.parseresponse, overlimit, "routes")

    def test_nothing_is_empty(self):
        self.assertEqual(self.api.parseresponse(NOTHING, "routes"), [])
        self.assertEqual(self.api.parseresponse({}, "stops"), [])

    def test_single_node_wrapped(self):
        single = {"bustime-response": {"directions": {"dir": "Eastbound"}}}
        self.assertEqual(self.api.parseresponse(single, "directions"), [{"dir": "Eastbound"}])

    def test_error_without_msg_ignored(self):
        routes = ROUTES["bustime-response"]["routes"]
        nomsg = {"bustime-response": {"error": [{"rt": "99"}], "routes": routes}}
        self.assertIsNone(self.api.bustime_error(nomsg))
        self.assertEqual(self.api.parseresponse(nomsg, "routes"), routes)
        self.assertEqual(self.api.parseresponse({"bustime-response": {"error": [{"msg": None}]}}, "routes"), [])

    def test_error_only_first_entry_counts(self):
        later = {"bustime-response": {"error": [{"rt": "99"}, {"msg": "No data found for parameter"}]}}
        self.assertEqual(self.api.errormessages(later), [])
        mixed = {"bustime-response": {"error": [{"msg": "No data found for parameter"}, {"rt": "99"}]}}
        self.assertEqual(self.api.errormessages(mixed), ["No data found for parameter"])

    def test_string_error(self):
        bare = {"bustime-response": {"error": "Invalid API access key supplied"}}
        with self.assertRaises(p.UpstreamError) as cm:
            self.api.parseresponse(bare, "routes")
        self.assertEqual(cm.exception.message, "Invalid API access key supplied")
        self.assertEqual(cm.exception.messages, ["Invalid API access key supplied"])

class TestFetch(TestAPI):
    def test_routes(self):
        lines = self.useresponses(ROUTES).routes()
        self.assertEqual(len(lines), 2)
        self.assertEqual(lines[0].number, "1")
        self.assertEqual(lines[0].name, "Bronzeville/Union Station")
        self.assertEqual(lines[0].color, "#336633")
        self.assertEqual(lines[0].designator, "1")
        self.assertEqual(str(lines[1]), "X9 Ashland Express")
        self.assertIsNone(lines[0].directions)
        self.api.session.get.assert_called_once_with(
            "http://ctabustracker.com/bustime/api/v2/getroutes?key=BOGUSAPIKEY&format=json", timeout=10)

    def test_directions(self):
        directions = self.useresponses(DIRECTIONS).route_directions("1")
        self.assertEqual(directions[0].name, "Northbound")
        self.assertEqual(directions[1].name, "Southbound")
        self.assertIsNone(directions[0].stops)
        self.assertTrue(self.requested().endswith("getdirections?key=BOGUSAPIKEY&rt=1&format=json"))

    def test_stops(self):
        stops = self.useresponses(STOPS).stops("1", "Northbound")
        self.assertEqual(stops[0].name, "1509 S Michigan")
        self.assertEqual(stops[0].id, "1784")
        self.assertEqual(stops[0].location, (41.861183, -87.623982))
        self.assertTrue(self.requested().endswith("getstops?key=BOGUSAPIKEY&rt=1&dir=Northbound&format=json"))

    def test_predictions(self):
        predictions = self.useresponses(PREDICTIONS).predictions("1234", "1", 5)
        self.assertTrue(self.requested().endswith("getpredictions?key=BOGUSAPIKEY&stpid=1234&rt=1&top=5&format=json"))

        prd = predictions[0]
        self.assertEqual((prd.eta.hour, prd.eta.minute), (14, 25))
        self.assertEqual(str(prd.eta.tzinfo), "America/Chicago")
        self.assertEqual(prd.eta - prd.generated, timedelta(minutes=5))
        self.assertTrue(prd.is_arrival)
        self.assertFalse(prd.delayed)
        self.assertEqual(prd.dist_to_stop, 4263)
        self.assertEqual(prd.stop.id, "1234")
        self.assertEqual(prd.stop.name, "Michigan & Balbo")
        self.assertEqual(prd.vid, "8318")
        self.assertEqual(prd.direction, "Northbound")
        self.assertEqual(prd.destination, "Union Station")
        self.assertEqual(prd.countdown, "5")
        self.assertIsNone(prd.zone)

    def test_predictions_from_lists(self):
        self.useresponses(PREDICTIONS).predictions(["1234", "5678"], ["1", "X9"], 3)
        self.assertIn("&stpid=1234,5678&rt=1,X9&top=3&", self.requested())

    def test_every_fetch_raises_upstream_error(self):
        errorwithdata = {"bustime-response": {"error": [{"msg": "X"}], "routes": [], "directions": [],
                                              "stops": [], "prd": []}}
        api = self.useresponses(*[errorwithdata] * 4)
        calls = [api.routes, lambda: api.route_directions("1"), lambda: api.stops("1", "Northbound"),
                 lambda: api.predictions("1234", "1", 5)]
        for call in calls:
            with self.assertRaises(p.UpstreamError) as cm:
                call()
            self.assertEqual(cm.exception.message, "X")

    def test_nothing_is_empty(self):
        self.assertEqual(self.useresponses(NOTHING).stops("1", "Northbound"), [])

    def test_transport_error(self):
        session = Mock()
        cause = requests.exceptions.ConnectionError(
            "Max retries exceeded with url: /bustime/api/v2/getroutes?key=BOGUSAPIKEY&format=json")
        session.get.side_effect = cause
        api = p.BustimeAPI("BOGUSAPIKEY", session=session)
        with self.assertRaises(p.TransportError) as cm:
            api.routes()
        self.assertIs(cm.exception.original, cause)
        self.assertNotIn("BOGUSAPIKEY", str(cm.exception))
        logged = "".join(traceback.format_exception(type(cm.exception), cm.exception, cm.exception.__traceback__))
        self.assertNotIn("BOGUSAPIKEY", logged)

    def test_transport_error_logged_without_key(self):
        session = Mock()
        session.get.side_effect = requests.exceptions.ConnectionError(
            "Max retries exceeded with url: /bustime/api/v2/getroutes?key=BOGUSAPIKEY&format=json")
        api = p.BustimeAPI("BOGUSAPIKEY", session=session)
        with self.assertLogs("ctabustime.tests", "ERROR") as logs:
            try:
                api.routes()
            except p.TransportError:
                logging.getLogger("ctabustime.tests").exception("fetch failed")
        formatted = "\n".join(logging.Formatter().format(record) for record in logs.records)
        self.assertIn("TransportError", formatted)
        self.assertNotIn("BOGUSAPIKEY", formatted)

    def test_http_error(self):
        resp = mockresponse(ROUTES)
        resp.raise_for_status.side_effect = requests.exceptions.HTTPError("503 Server Error: Service Unavailable")
        session = Mock()
        session.get.return_value = resp
        api = p.BustimeAPI("BOGUSAPIKEY", session=session)
        self.assertRaises(p.TransportError, api.routes)

    def test_invalid_json(self):
        resp = Mock()
        resp.json.side_effect = ValueError("Expecting value")
        resp.text = "thisshouldbreak"
        session = Mock()
        session.get.return_value = resp
        api = p.BustimeAPI("BOGUSAPIKEY", session=session)
        self.assertRaises(p.InvalidResponseError, api.routes)

    def test_not_an_object(self):
        self.assertRaises(p.InvalidResponseError, self.useresponses(["routes"]).routes)

    def test_request_prebuilt_url(self):
        api = self.useresponses(DIRECTIONS)
        url = api.endpoint(Endpoint.DIRECTIONS, "&rt=1")
        directions = api.request(url, 'DIRECTIONS')
        self.assertEqual([d.name for d in directions], ["Northbound", "Southbound"])
        self.assertEqual(self.requested(), url)
        self.assertRaises(p.MalformedRequestError, api.request, url + "&dir=North bound", Endpoint.STOPS)

    def test_calls_leave_no_state(self):
        api = self.useresponses(DIRECTIONS, STOPS)
        before = dict(vars(api))
        directions = api.route_directions("1")
        stops = api.stops("1", "Northbound")
        self.assertEqual(vars(api), before)
        self.assertEqual(directions[0].name, "Northbound")
        self.assertEqual(stops[0].name, "1509 S Michigan")

    def test_key_not_logged(self):
        with self.assertLogs('ctabustime', 'DEBUG') as logs:
            self.useresponses(ROUTES).routes()
        self.assertTrue(logs.output)
        self.assertFalse(any("BOGUSAPIKEY" in line for line in logs.output))

class TestUtils(unittest.TestCase):
    def test_queryjoin(self):
        args = [("a", 1), ("b", 2), ("c", "foo")]
        self.assertEqual(p.utils.queryjoin(args), '&a=1&b=2&c=foo')
        self.assertEqual(p.utils.queryjoin([(Parameter.ROUTE, "1"), (Parameter.LIMIT, None)]), '&rt=1')

    def test_listlike(self):
        self.assertEqual(p.utils.listlike([]), True)
        self.assertEqual(p.utils.listlike(()), True)
        self.assertEqual(p.utils.listlike((i for i in [])), True)
        self.assertEqual(p.utils.listlike("hello"), False)

    def test_commajoin(self):
        self.assertEqual(p.utils.commajoin([1234, "5678"]), "1234,5678")
        self.assertEqual(p.utils.commajoin(5), "5")

    def test_redact(self):
        url = "http://ctabustracker.com/bustime/api/v2/getroutes?key=SECRET&format=json"
        self.assertEqual(p.utils.redact(url, "SECRET"),
                         "http://ctabustracker.com/bustime/api/v2/getroutes?key=<redacted>&format=json")

class TestObjects(TestAPI):
    def setUp(self):
        self.line = p.BusLine("1", "Bronzeville/Union Station", "#ffffff")
        self.line.directions = [p.Direction("Northbound")]

    def test_initialize_directions(self):
        self.line.directions = None
        self.line.initialize_directions(self.useresponses(DIRECTIONS))
        self.assertEqual(self.line.directions[0].name, "Northbound")
        self.assertEqual(self.line.directions[1].name, "Southbound")

    def test_initialize_directions_overwrites(self):
        self.line.initialize_directions(self.useresponses(DIRECTIONS))
        self.assertEqual(len(self.line.directions), 2)
        self.assertEqual(self.line.find_direction("southbound"), p.Direction("Southbound"))
        self.assertIsNone(self.line.find_direction("Eastbound"))

    def test_initialize_stops(self):
        direction = self.line.directions[0]
        direction.initialize_stops(self.useresponses(STOPS), self.line.number)
        self.assertEqual(self.line.directions[0].stops[0].name, "1509 S Michigan")
        self.assertTrue(self.requested().endswith("&rt=1&dir=Northbound&format=json"))

    def test_failed_stops_keep_data(self):
        direction = self.line.directions[0]
        direction.initialize_stops(self.useresponses(STOPS), "1")
        api = self.useresponses(ERROR)
        self.assertRaises(p.UpstreamError, direction.initialize_stops, api, "1")
        self.assertEqual(len(direction.stops), 2)
        self.assertEqual(self.line.directions[0].name, "Northbound")

    def test_find_stop(self):
        direction = self.line.directions[0]
        direction.initialize_stops(self.useresponses(STOPS), "1")
        self.assertEqual([s.id for s in direction.find_stop("michigan")], ["1784", "1785"])
        self.assertEqual([s.name for s in direction.find_stop(1785)], ["Michigan & 14th Street"])
        self.assertEqual(p.Direction("Southbound").find_stop("michigan"), [])

    def test_stop_predictions(self):
        stop = p.Stop("1234", "Michigan & Balbo")
        predictions = stop.predictions(self.useresponses(PREDICTIONS), "1", 5)
        self.assertEqual(predictions[0].stop.id, "1234")
        self.assertIn("&stpid=1234&rt=1&top=5&", self.requested())

    def test_direction_from_string(self):
        self.assertEqual(p.Direction.fromapi("Eastbound").name, "Eastbound")
        self.assertEqual(str(p.Direction.fromapi({"dir": "Westbound"})), "Westbound")

    def test_unnamed_stop(self):
        stop = p.Stop.fromapi({"stpid": 4123, "lat": "41.8", "lon": "-87.6"})
        self.assertEqual(str(stop), "<Stop #4123 (Unnamed) at (41.8, -87.6)>")

    def test_parsetime(self):
        withseconds = p.parsetime("20170512 14:25:30")
        self.assertEqual((withseconds.minute, withseconds.second), (25, 30))
        self.assertRaises(ValueError, p.parsetime, "May 12 2017")

if __name__ == '__main__':
    unittest.main()
