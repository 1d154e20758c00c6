import base64
import binascii
import re


class DataURIError(ValueError):
    """Raised when a data URI cannot be parsed into an inline image payload."""


# data:<mimetype>[;param=value]*;base64,<payload>
DATA_URI_PATTERN = re.compile(
    r"^data:(?P<mime>[\w.+-]+/[\w.+-]+)(?P<params>(?:;[\w.+-]+=[^;,]*)*)"
    r"(?P<base64>;base64)?,(?P<payload>.*)$",
    re.DOTALL,
)


def parse_data_uri(uri: str) -> tuple[str, bytes]:
    """
    Parses a base64 data URI into its MIME type and decoded bytes.
    Only base64-encoded payloads are accepted, since receipt images are binary.
    """
    if not uri or not uri.strip():
        raise DataURIError("Input string cannot be empty or whitespace")

    uri = uri.strip()
    if not uri.startswith("data:"):
        raise DataURIError("Unsupported URI scheme")

    match = DATA_URI_PATTERN.match(uri)
    if not match:
        raise DataURIError("Could not find MIME type in data URI")

    if not match.group("base64"):
        raise DataURIError("Data URI payload must be base64 encoded")

    try:
        data = base64.b64decode(match.group("payload"), validate=True)
    except (binascii.Error, ValueError) as e:
        raise DataURIError("Data URI payload is not valid base64") from e

    return match.group("mime").lower(), data


def build_data_uri(mime_type: str, data: bytes) -> str:
    encoded = base64.b64encode(data).decode("ascii")
    return f"data:{mime_type};base64,{encoded}"
