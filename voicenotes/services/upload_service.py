"""Client for the voice-notes upload API."""

import json
import asyncio
import logging
import aiohttp
from pathlib import Path
from typing import Optional, Dict, Any

from ..config import VoiceNotesConfig
from ..errors import SubmitError
from ..models.session import CaptureResult

logger = logging.getLogger(__name__)


class UploadService:
    """Uploads a captured voice note as multipart/form-data."""

    def __init__(self, base_url: str, access_token: Optional[str] = None, timeout_seconds: float = 30.0):
        """Initialize upload service.

        Args:
            base_url: API root, e.g. https://notes.example.com
            access_token: Bearer token sent with every request
            timeout_seconds: Total time allowed for one upload
        """
        self.base_url = base_url.rstrip("/")
        self.access_token = access_token
        self.timeout_seconds = timeout_seconds
        self.upload_url = f"{self.base_url}/api/voice-notes"

        logger.info(f"UploadService initialized for {self.upload_url}")

    @classmethod
    def from_config(cls, config: VoiceNotesConfig) -> Optional["UploadService"]:
        """Build from config, or None if no upload URL is configured."""
        base_url = config.get('upload.base_url')
        if not base_url:
            return None
        return cls(
            base_url=base_url,
            access_token=config.get('upload.access_token') or None,
            timeout_seconds=config.get('upload.timeout_seconds', 30.0),
        )

    def _headers(self) -> Dict[str, str]:
        if self.access_token:
            return {"Authorization": f"Bearer {self.access_token}"}
        return {}

    async def upload(self, result: CaptureResult) -> Dict[str, Any]:
        """Upload one capture result.

        Returns:
            Parsed JSON response of the created voice note

        Raises:
            SubmitError: On client errors or a non-2xx response; the reason is the
                         server's response text
        """
        form = aiohttp.FormData()
        form.add_field("meta", json.dumps(result.to_upload_meta()), content_type="application/json")

        audio_file = None
        if result.audio_file_path:
            try:
                audio_file = open(result.audio_file_path, "rb")
            except OSError as e:
                raise SubmitError(f"Could not read recording: {e}") from e
            form.add_field("file", audio_file,
                           filename=Path(result.audio_file_path).name,
                           content_type="audio/wav")

        timeout = aiohttp.ClientTimeout(total=self.timeout_seconds)
        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.post(self.upload_url, data=form, headers=self._headers()) as response:
                    if response.status < 200 or response.status >= 300:
                        error_text = await response.text()
                        logger.error(f"Upload rejected: {response.status} - {error_text}")
                        raise SubmitError(error_text or f"Upload failed with status {response.status}")
                    body = await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            logger.error(f"Upload failed: {e}")
            raise SubmitError(str(e) or type(e).__name__) from e
        finally:
            if audio_file is not None:
                audio_file.close()

        logger.info(f"Uploaded voice note '{result.title}': id={body.get('id') if isinstance(body, dict) else None}")
        return body if isinstance(body, dict) else {"response": body}

    def submit(self, result: CaptureResult) -> Dict[str, Any]:
        """Synchronous entry point used by the capture session."""
        return asyncio.run(self.upload(result))
