"""Some utility functions and other stuff."""
from requests.utils import quote

def listlike(obj):
    """Is an object iterable like a list (and not a string)?"""

    return hasattr(obj, "__iter__") \
    and not isinstance(obj, (str, bytes)) \
    and not isinstance(obj, dict)

def commajoin(value):
    """Turn a list of ids into the comma-separated form the API expects.

    >>> commajoin([1234, "5678"])
    '1234,5678'
    >>> commajoin("1234")
    '1234'
    """
    if listlike(value):
        return ",".join(map(str, value))
    return str(value)

def queryjoin(params):
    """Turn ordered (key, value) pairs into a querystring fragment, each pair
    prefixed with `&`. Keys are anything with a `format` prefix (like a
    `Parameter`) or plain strings. `None` values are skipped.

    >>> queryjoin([("rt", "1"), ("dir", "Northbound")])
    '&rt=1&dir=Northbound'
    """
    args = []
    for k, v in params:
        if v is None:
            continue
        prefix = "&{}=".format(k) if isinstance(k, str) else k.format
        args.append("{}{}".format(prefix, quote(commajoin(v), safe=",")))
    return "".join(args)

def redact(url, key):
    """Blank out an API key in a URL so it can be logged."""
    if not key:
        return url
    return url.replace("key={}".format(key), "key=<redacted>")
