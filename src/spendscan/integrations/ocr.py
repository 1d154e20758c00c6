"""Stage 1 backend using Google Cloud Vision text detection."""

import asyncio
import threading

from google.api_core import exceptions as google_exceptions
from google.cloud import vision

from spendscan.models import ReceiptImage


class VisionTranscriber:
    """
    Transcriber backed by Google Cloud Vision's text detection.

    Cheaper than the multimodal transcriber but blind to layout hints, so it is
    best suited to simple itemized receipts. Blocking client calls are pushed to
    the default executor so the pipeline's event loop is never blocked.
    """

    def __init__(self, client: vision.ImageAnnotatorClient | None = None) -> None:
        """
        Initialize the transcriber.

        Args:
            client: Optional pre-configured ImageAnnotatorClient.
                   If None, a default client will be created lazily on first use.
        """
        self._client = client
        self._client_initialized = client is not None
        self._client_lock = threading.Lock()

    @property
    def client(self) -> vision.ImageAnnotatorClient:
        """Lazily initialize and return the Vision API client.

        Uses double-check locking so concurrent scans share one client.
        """
        if not self._client_initialized:
            with self._client_lock:
                if not self._client_initialized:
                    self._client = vision.ImageAnnotatorClient()
                    self._client_initialized = True
        return self._client  # type: ignore[return-value]

    def extract_text(self, image: ReceiptImage) -> str:
        """
        Extract text from an image payload.

        Returns:
            Extracted text as a string. Returns empty string if no text is found.

        Raises:
            google.api_core.exceptions.GoogleAPIError: If the API call fails.
        """
        # vision.Image content expects bytes,
        # but type hints sometimes incorrectly expect a dict
        request_image = vision.Image(content=image.data)  # type: ignore

        # text_detection is a dynamic method added at runtime
        response = self.client.text_detection(image=request_image)  # type: ignore

        if response.error.message:
            raise google_exceptions.from_grpc_status(
                response.error.code, f"Vision API error: {response.error.message}"
            )

        if response.text_annotations:
            # The first annotation contains the entire detected text
            return response.text_annotations[0].description

        return ""

    async def transcribe(self, image: ReceiptImage) -> str:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self.extract_text, image)
