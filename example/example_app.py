from flask import *
import ctabustime

app = Flask(__name__)
app.debug = True

# Reads the key from $BTRK
api = ctabustime.BustimeAPI()

@app.errorhandler(ctabustime.BustimeError)
def bustime_error(error):
    return jsonify(error=str(error)), 502

@app.route('/')
def home():
    return redirect(url_for('route_list'))

@app.route('/routes')
def route_list():
    lines = api.routes()
    return jsonify(routes=[dict(rt=line.number, name=line.name, color=line.color) for line in lines])

@app.route('/routes/<rt>')
def route_stops(rt):
    line = ctabustime.BusLine(rt, name=None)
    directions = {}
    for direction in line.initialize_directions(api):
        stops = direction.initialize_stops(api, line.number)
        directions[direction.name] = [dict(id=stop.id, name=stop.name) for stop in stops]
    return jsonify(rt=rt, directions=directions)

@app.route('/stop/<stopid>/<rt>')
def arrival_info(stopid, rt):
    top = request.args.get('top', 5, type=int)
    arrivals = api.predictions(stopid, rt, top)
    return jsonify(arrivals=[dict(route=p.route, direction=p.direction, destination=p.destination,
                                  eta=p.eta.isoformat(), countdown=p.countdown, delayed=p.delayed)
                             for p in arrivals])

if __name__ == '__main__':
    app.run()
