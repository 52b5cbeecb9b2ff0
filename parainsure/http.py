"""HTTP GET helper with bounded timeouts and optional backoff."""

import time

import requests


def get_json(url: str, params: dict | None = None, timeout: float = 30,
             max_retries: int = 0) -> dict:
    """GET request returning decoded JSON.

    Retries with exponential backoff on 429 / 5xx only when ``max_retries``
    is positive.  Callers that treat a failed fetch as missing data (the
    historical rainfall loop) keep the default of zero retries.
    """
    for attempt in range(max_retries + 1):
        try:
            r = requests.get(url, params=params, timeout=timeout)
            if r.status_code == 200:
                return r.json()
            if r.status_code in (429, 500, 502, 503, 504) and attempt < max_retries:
                time.sleep(2 ** (attempt + 1))
                continue
            r.raise_for_status()
        except requests.exceptions.RequestException:
            if attempt == max_retries:
                raise
            time.sleep(2 ** (attempt + 1))
    raise RuntimeError(f"Max retries exceeded for {url}")
