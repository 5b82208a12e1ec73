class FakeResponse:
    """Minimal aiohttp.ClientResponse stand-in usable as an async context manager."""
    def __init__(self, status=200, json_data=None, text="", json_exc=None):
        self.status = status
        self._json = json_data
        self._text = text
        self._json_exc = json_exc

    async def json(self, content_type="application/json"):
        if self._json_exc is not None:
            raise self._json_exc
        return self._json

    async def text(self):
        return self._text

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False


class FakeSession:
    """
    Scripted aiohttp.ClientSession: each get()/post() pops the next item.
    Items are FakeResponse objects or exceptions (raised from the call).
    """
    def __init__(self, responses=None):
        self.responses = list(responses or [])
        self.requests = []
        self.closed = False

    def _next(self, method, url, kwargs):
        self.requests.append((method, url, kwargs))
        r = self.responses.pop(0)
        if isinstance(r, BaseException):
            raise r
        return r

    def get(self, url, **kwargs):
        return self._next("GET", url, kwargs)

    def post(self, url, **kwargs):
        return self._next("POST", url, kwargs)

    async def close(self):
        self.closed = True
