"""Switchboard CLI API client - mockable for testing."""
import json
import os
from pathlib import Path
from typing import Optional
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

DEFAULT_URL = "http://127.0.0.1:8780"
CONFIG_DIR = Path.home() / ".switchboard"
CONFIG_FILE = CONFIG_DIR / "config.json"


class APIError(Exception):
    """API error with status code and details."""
    def __init__(self, status_code: int, detail: str):
        self.status_code = status_code
        self.detail = detail
        super().__init__(f"Error {status_code}: {detail}")


class ConfigError(Exception):
    """Configuration error (missing token, etc)."""


class ServiceUnreachable(Exception):
    """The service could not be reached."""


def load_config() -> dict:
    if not CONFIG_FILE.exists():
        return {}
    with open(CONFIG_FILE) as f:
        try:
            return json.load(f)
        except json.JSONDecodeError as e:
            raise ConfigError(f"Config file {CONFIG_FILE} is not valid JSON: {e}")


def save_config(config: dict):
    CONFIG_DIR.mkdir(parents=True, exist_ok=True)
    with open(CONFIG_FILE, "w") as f:
        json.dump(config, f, indent=2)
    CONFIG_FILE.chmod(0o600)


def get_url() -> str:
    """Service URL from env or config."""
    return os.environ.get("SWITCHBOARD_URL") or load_config().get("url") or DEFAULT_URL


def get_token() -> str:
    """Bearer token from env or config.

    Raises:
        ConfigError: If no token is configured
    """
    token = os.environ.get("SWITCHBOARD_TOKEN") or load_config().get("token")
    if not token:
        raise ConfigError("SWITCHBOARD_TOKEN not found. Set with env var or 'switchboard config set token'")
    return token


def _error_detail(body: str, status: int) -> str:
    try:
        error = json.loads(body)
    except json.JSONDecodeError:
        return f"HTTP {status}"
    if isinstance(error.get("error"), dict):
        return error["error"].get("message", str(error))
    return str(error.get("detail", error))


def api_request(
    method: str,
    endpoint: str,
    data: Optional[dict] = None,
    timeout: int = 30,
    base_url: Optional[str] = None,
    token: Optional[str] = None,
    authenticated: bool = True,
) -> dict:
    """Make an API request to the service.

    Raises:
        APIError: On HTTP errors
        ServiceUnreachable: On network errors
        ConfigError: If no token is configured
    """
    url = f"{(base_url or get_url()).rstrip('/')}{endpoint}"

    headers = {"Content-Type": "application/json"}
    if authenticated:
        headers["Authorization"] = f"Bearer {token or get_token()}"
    body = json.dumps(data).encode() if data is not None else None
    req = Request(url, data=body, headers=headers, method=method)

    try:
        with urlopen(req, timeout=timeout) as resp:
            return json.loads(resp.read().decode())
    except HTTPError as e:
        raise APIError(e.code, _error_detail(e.read().decode(errors="replace"), e.code))
    except URLError as e:
        raise ServiceUnreachable(f"Connection error: {e.reason}")
