import functools
import inspect
import io
import os

import pytest
from google.api_core.exceptions import PermissionDenied
from PIL import Image, ImageDraw

from spendscan.models import ReceiptImage

RECEIPT_LINES = [
    "FRESH GROCER",
    "123 Main Street",
    "",
    "Milk 1L          3.20",
    "Eggs 12pk        4.99",
    "Bread            2.80",
    "",
    "TOTAL           10.99",
]


def skip_if_missing_env_vars(required_vars):
    """
    Decorator to skip tests if required environment variables are not set.

    Works for both plain and async test functions.

    Args:
        required_vars (list): List of environment variable names to check.
    """

    def check():
        missing = [var for var in required_vars if not os.getenv(var)]
        if missing:
            pytest.skip(
                f"Missing required environment variables: {', '.join(missing)}. "
                "Ensure they are set in your environment or .env file."
            )

    def decorator(func):
        if inspect.iscoroutinefunction(func):

            @functools.wraps(func)
            async def async_wrapper(*args, **kwargs):
                check()
                return await func(*args, **kwargs)

            return async_wrapper

        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            check()
            return func(*args, **kwargs)

        return wrapper

    return decorator


def skip_on_billing_error(func):
    """
    Decorator to skip tests if Google Cloud billing is not enabled.

    Useful for Google Cloud Vision API and other GCP services that require billing.
    """

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except PermissionDenied as e:
            if "billing" in str(e).lower():
                pytest.skip(
                    "Google Cloud Vision API requires billing to be enabled. "
                    "Enable billing on your project or skip integration tests."
                )
            raise

    return wrapper


def make_receipt_image(lines=RECEIPT_LINES) -> ReceiptImage:
    """Render a plain black-on-white receipt that OCR and vision models can read."""
    scale = 3
    width, line_height = 220, 14
    image = Image.new("RGB", (width, line_height * (len(lines) + 2)), "white")
    draw = ImageDraw.Draw(image)
    for i, line in enumerate(lines, start=1):
        draw.text((10, i * line_height), line, fill="black")
    image = image.resize((image.width * scale, image.height * scale))

    buf = io.BytesIO()
    image.save(buf, format="PNG")
    return ReceiptImage(data=buf.getvalue(), mime_type="image/png")
