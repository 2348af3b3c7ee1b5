import httpx
from rich.console import Console

from hopper_server.settings import Settings

console = Console()
settings = Settings()

BASE_URL = settings.api_base_url.rstrip("/")


def get_client() -> httpx.Client:
    return httpx.Client(base_url=BASE_URL, timeout=30.0)


def status_style(status: str) -> str:
    return {"completed": "green", "failed": "red", "processing": "yellow"}.get(status, "blue")
