import os

from fastapi.responses import PlainTextResponse
from fastapi.staticfiles import StaticFiles


class CachedStaticFiles(StaticFiles):
    """StaticFiles that stamps a fixed ``Cache-Control`` max-age on every file it serves.

    Missing files are a 404 from StaticFiles itself; nothing falls through
    to the page renderer. A directory that does not exist yet (no build in
    development) is a 404 as well rather than a configuration error.
    """

    def __init__(self, *args, max_age: int = 0, **kwargs):
        super().__init__(*args, **kwargs)
        self.max_age = max_age

    async def __call__(self, scope, receive, send):
        if self.directory is not None and not os.path.isdir(self.directory):
            response = PlainTextResponse("Not Found", status_code=404)
            await response(scope, receive, send)
            return
        await super().__call__(scope, receive, send)

    def file_response(self, *args, **kwargs):
        response = super().file_response(*args, **kwargs)
        response.headers["Cache-Control"] = f"public, max-age={self.max_age}"
        return response
