"""Private object storage (Supabase Storage REST API).

Objects are written without upsert and never get a public URL. Callers keep
the object path; reading it back goes through an authorized fetch.

Required env vars:
- SUPABASE_URL: Project URL (e.g., https://xyz.supabase.co)
- SUPABASE_SERVICE_ROLE_KEY: Service key with storage write access
"""

import os
from urllib.parse import quote

import requests

from corretta.observability.logging import get_logger
from corretta.observability.redaction import safe_log_context

logger = get_logger(__name__)

HTTP_TIMEOUT = int(os.environ.get("STORAGE_HTTP_TIMEOUT", "30"))


class StorageUploadError(Exception):
    """Raised when the storage API rejects an upload."""

    def __init__(self, status_code: int | None, message: str = "storage upload failed"):
        super().__init__(f"{message} (status={status_code})")
        self.status_code = status_code


def _get_config() -> dict[str, str]:
    base_url = os.environ.get("SUPABASE_URL", "")
    service_key = os.environ.get("SUPABASE_SERVICE_ROLE_KEY", "")
    if not base_url or not service_key:
        raise RuntimeError("Missing storage config: SUPABASE_URL, SUPABASE_SERVICE_ROLE_KEY")
    return {"base_url": base_url.rstrip("/"), "service_key": service_key}


def _is_duplicate(resp: requests.Response) -> bool:
    """The storage API reports an existing object as HTTP 409, or as 400 with
    `statusCode: "409"` in the body depending on the server version."""
    if resp.status_code == 409:
        return True
    if resp.status_code != 400:
        return False
    try:
        body = resp.json()
    except ValueError:
        return False
    return isinstance(body, dict) and str(body.get("statusCode")) == "409"


def upload_private_object(
    bucket: str,
    path: str,
    data: bytes,
    content_type: str,
) -> str:
    """Upload `data` to `bucket/path` without overwriting.

    Returns:
        The object path inside the bucket.

    Raises:
        RuntimeError: If storage config is missing.
        StorageUploadError: If the API answers non-2xx. An existing object
            at `path` is always reported as status_code 409.
        requests.RequestException: On network errors.
    """
    config = _get_config()
    url = f"{config['base_url']}/storage/v1/object/{quote(bucket)}/{quote(path)}"
    headers = {
        "Authorization": f"Bearer {config['service_key']}",
        "apikey": config["service_key"],
        "Content-Type": content_type,
        "x-upsert": "false",
    }

    resp = requests.post(url, data=data, headers=headers, timeout=HTTP_TIMEOUT)
    if _is_duplicate(resp):
        raise StorageUploadError(409, "storage object already exists")
    if not resp.ok:
        logger.warning(
            "storage upload rejected",
            extra={
                "extra_fields": safe_log_context(
                    bucket=bucket,
                    status_code=resp.status_code,
                    size=len(data),
                )
            },
        )
        raise StorageUploadError(resp.status_code)

    return path
