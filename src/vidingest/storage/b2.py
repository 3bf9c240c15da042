"""Backblaze B2 native API client."""

import asyncio
import hashlib
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional
from urllib.parse import quote

import httpx

from vidingest.core.exceptions import StorageClientError
from vidingest.storage.base import (
    FinalizedObject,
    LargeObjectStorageClient,
    ObjectStore,
    PartUploadTarget,
)

logger = logging.getLogger(__name__)

B2_API_VERSION = "v2"
REAUTH_CODES = {"expired_auth_token", "bad_auth_token"}


@dataclass(frozen=True)
class B2Authorization:
    """Result of b2_authorize_account."""

    account_id: str
    authorization_token: str
    api_url: str
    download_url: str


class B2Client(LargeObjectStorageClient):
    """Large-file operations against the B2 native API over httpx.

    The account authorization is cached and refreshed once when the backend
    reports an expired or bad token.
    """

    def __init__(
        self,
        account_id: str,
        application_key: str,
        api_url: str = "https://api.backblazeb2.com",
        public_url_template: str = "https://{bucket}.s3.eu-central-003.backblazeb2.com/{name}",
        timeout: float = 120,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.account_id = account_id
        self.application_key = application_key
        self.api_url = api_url.rstrip("/")
        self.public_url_template = public_url_template
        self.timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self._auth: Optional[B2Authorization] = None
        self._auth_lock = asyncio.Lock()

    def _get_client(self) -> httpx.AsyncClient:
        """Lazy-load and cache the HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout, transport=self._transport)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def authorize(self, force: bool = False) -> B2Authorization:
        """Authorize the account, reusing a cached token unless ``force``."""
        async with self._auth_lock:
            if self._auth is not None and not force:
                return self._auth

            if not self.account_id or not self.application_key:
                raise ValueError("B2_ACCOUNT_ID and B2_APPLICATION_KEY must be configured")

            response = await self._get_client().get(
                f"{self.api_url}/b2api/{B2_API_VERSION}/b2_authorize_account",
                auth=(self.account_id, self.application_key),
            )
            data = self._parse(response, "b2_authorize_account")
            self._auth = B2Authorization(
                account_id=data["accountId"],
                authorization_token=data["authorizationToken"],
                api_url=data["apiUrl"],
                download_url=data.get("downloadUrl", ""),
            )
            logger.info("B2 account authorized", extra={"b2_api_url": self._auth.api_url})
            return self._auth

    async def _call(self, api_name: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        auth = await self.authorize()
        for attempt in (1, 2):
            try:
                response = await self._get_client().post(
                    f"{auth.api_url}/b2api/{B2_API_VERSION}/{api_name}",
                    headers={"Authorization": auth.authorization_token},
                    json=payload,
                )
            except httpx.HTTPError as e:
                raise StorageClientError(f"{api_name} transport error: {e}") from e
            if response.status_code == 401 and attempt == 1 and self._error_code(response) in REAUTH_CODES:
                logger.info("B2 token rejected, re-authorizing", extra={"b2_api": api_name})
                auth = await self.authorize(force=True)
                continue
            return self._parse(response, api_name)
        raise StorageClientError(f"{api_name} failed after re-authorization")

    @staticmethod
    def _error_code(response: httpx.Response) -> Optional[str]:
        try:
            return response.json().get("code")
        except ValueError:
            return None

    @staticmethod
    def _parse(response: httpx.Response, api_name: str) -> Dict[str, Any]:
        if response.is_success:
            return response.json()

        code = None
        message = response.text
        try:
            body = response.json()
            code = body.get("code")
            message = body.get("message") or message
        except ValueError:
            pass
        logger.warning(
            "B2 API call failed",
            extra={"b2_api": api_name, "status_code": response.status_code, "b2_code": code},
        )
        raise StorageClientError(
            f"{api_name} failed ({response.status_code} {code}): {message}",
            status_code=response.status_code,
            code=code,
        )

    async def open_session(self, bucket_id: str, file_name: str, content_type: str) -> str:
        data = await self._call(
            "b2_start_large_file",
            {"bucketId": bucket_id, "fileName": file_name, "contentType": content_type},
        )
        return data["fileId"]

    async def get_part_upload_target(self, session_id: str) -> PartUploadTarget:
        data = await self._call("b2_get_upload_part_url", {"fileId": session_id})
        return PartUploadTarget(
            upload_url=data["uploadUrl"],
            authorization_token=data["authorizationToken"],
        )

    async def upload_part(
        self, target: PartUploadTarget, part_number: int, data: bytes, digest: str
    ) -> Dict[str, Any]:
        try:
            response = await self._get_client().post(
                target.upload_url,
                headers={
                    "Authorization": target.authorization_token,
                    "X-Bz-Part-Number": str(part_number),
                    "Content-Length": str(len(data)),
                    "X-Bz-Content-Sha1": digest,
                },
                content=data,
            )
        except httpx.HTTPError as e:
            raise StorageClientError(f"b2_upload_part transport error: {e}") from e
        return self._parse(response, "b2_upload_part")

    async def finalize(self, session_id: str, ordered_digests: list[str]) -> FinalizedObject:
        data = await self._call(
            "b2_finish_large_file",
            {"fileId": session_id, "partSha1Array": list(ordered_digests)},
        )
        return FinalizedObject(
            object_name=data["fileName"],
            size=int(data.get("contentLength") or 0),
            file_id=data.get("fileId"),
        )

    async def cancel_session(self, session_id: str) -> None:
        await self._call("b2_cancel_large_file", {"fileId": session_id})

    async def upload_file(self, bucket_id: str, object_name: str, data: bytes, content_type: str) -> Dict[str, Any]:
        """Single-shot upload of a small object."""
        target = await self._call("b2_get_upload_url", {"bucketId": bucket_id})
        try:
            response = await self._get_client().post(
                target["uploadUrl"],
                headers={
                    "Authorization": target["authorizationToken"],
                    "X-Bz-File-Name": quote(object_name),
                    "Content-Type": content_type,
                    "Content-Length": str(len(data)),
                    "X-Bz-Content-Sha1": hashlib.sha1(data).hexdigest(),
                },
                content=data,
            )
        except httpx.HTTPError as e:
            raise StorageClientError(f"b2_upload_file transport error: {e}") from e
        return self._parse(response, "b2_upload_file")

    def public_url(self, bucket_name: str, object_name: str) -> str:
        return self.public_url_template.format(bucket=bucket_name, name=object_name)

    def get_backend_name(self) -> str:
        return "b2"


class B2ObjectStore(ObjectStore):
    """Thumbnail bucket on B2."""

    def __init__(self, client: B2Client, bucket_id: str, bucket_name: str):
        self.client = client
        self.bucket_id = bucket_id
        self.bucket_name = bucket_name

    async def put_file(self, local_path: Path, object_name: str, content_type: str) -> str:
        local_path = Path(local_path)
        if not local_path.exists():
            raise FileNotFoundError(f"File not found at: {local_path}")

        data = local_path.read_bytes()
        await self.client.upload_file(self.bucket_id, object_name, data, content_type)
        logger.info(
            "Object uploaded to B2",
            extra={"bucket": self.bucket_name, "object_name": object_name, "size_bytes": len(data)},
        )
        return self.client.public_url(self.bucket_name, object_name)

    def get_backend_name(self) -> str:
        return "b2"
