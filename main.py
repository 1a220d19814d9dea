import uvicorn

from ro_subtitles.settings import settings

if __name__ == "__main__":
    uvicorn.run("app:app", app_dir="src", host=settings.host, port=settings.port, proxy_headers=True)
