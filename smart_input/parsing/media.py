"""
Media format detection for voice and receipt input.

We trust the bytes, not the declared content type: browsers routinely
label WebM/Opus recordings as something else, and phones send HEIC
files named .jpg.

Audio is identified by container magic bytes. Images are identified with
PIL, which also gives us a cheap quality check before we pay for a
vision call.
"""

from io import BytesIO

from PIL import Image, UnidentifiedImageError

from smart_input.parsing.errors import UnsupportedAudioFormat, UnsupportedImageFormat


# Formats the speech model accepts as-is
SUPPORTED_AUDIO_MIME_TYPES = (
    "audio/wav",
    "audio/mp3",
    "audio/aiff",
    "audio/aac",
    "audio/ogg",
    "audio/flac",
)

SUPPORTED_IMAGE_FORMATS = {
    "JPEG": "image/jpeg",
    "PNG": "image/png",
    "WEBP": "image/webp",
    "GIF": "image/gif",
}


def detect_audio_mime(audio: bytes) -> str:
    """
    Identify an audio container from its leading bytes.

    Raises:
        UnsupportedAudioFormat: Empty or unrecognized bytes
    """
    if not audio or len(audio) < 12:
        raise UnsupportedAudioFormat("Audio is empty or too short")

    head = audio[:12]

    if head[:4] == b"RIFF" and head[8:12] == b"WAVE":
        return "audio/wav"
    if head[:4] == b"FORM" and head[8:12] in (b"AIFF", b"AIFC"):
        return "audio/aiff"
    if head[:4] == b"OggS":
        return "audio/ogg"
    if head[:4] == b"fLaC":
        return "audio/flac"
    if head[:4] == b"\x1aE\xdf\xa3":
        return "audio/webm"
    if head[4:8] == b"ftyp":
        return "audio/mp4"
    if head[:3] == b"ID3":
        return "audio/mp3"
    if head[0] == 0xFF:
        # ADTS (AAC) has layer bits 00, MPEG audio frames don't
        if head[1] & 0xF6 == 0xF0:
            return "audio/aac"
        if head[1] & 0xE0 == 0xE0 and head[1] & 0x06:
            return "audio/mp3"

    raise UnsupportedAudioFormat("Unrecognized audio format")


def audio_mime_fallbacks(mime_type: str) -> list[str]:
    """
    MIME types to try, in order, when sending audio to the speech model.

    Supported formats are sent as themselves. WebM/Opus recordings are
    tried as Ogg first (same codec family), MP4 audio as AAC.
    """
    mime = (mime_type or "").lower()

    for supported in SUPPORTED_AUDIO_MIME_TYPES:
        if supported.split("/", 1)[1] in mime:
            return [supported]

    if "webm" in mime or "opus" in mime:
        return ["audio/ogg", "audio/webm", "audio/mp3"]

    if "mp4" in mime or "m4a" in mime:
        return ["audio/aac", "audio/mp4", "audio/mp3"]

    return [mime or "audio/ogg", "audio/ogg", "audio/mp3"]


def detect_image_mime(image: bytes) -> str:
    """
    Identify a receipt image with PIL.

    Raises:
        UnsupportedImageFormat: Not an image, or a format we don't accept
    """
    if not image:
        raise UnsupportedImageFormat("Image is empty")

    try:
        with Image.open(BytesIO(image)) as img:
            image_format = img.format
            img.verify()
    except (UnidentifiedImageError, OSError, SyntaxError) as e:
        raise UnsupportedImageFormat(f"Could not read image: {e}")

    mime_type = SUPPORTED_IMAGE_FORMATS.get(image_format or "")
    if mime_type is None:
        raise UnsupportedImageFormat(
            f"Unsupported image format: {image_format}",
            mime_type=Image.MIME.get(image_format or ""),
        )
    return mime_type


def assess_image_quality(image: bytes) -> list[str]:
    """
    Cheap heuristics for photos that will probably read badly.

    Returns human-readable issues; an empty list means nothing stood out.
    """
    issues = []

    with Image.open(BytesIO(image)) as img:
        width, height = img.size
        gray = img.convert("L")

    if min(width, height) < 300:
        issues.append("Image resolution is low, text may be hard to read")

    histogram = gray.histogram()
    total_pixels = sum(histogram) or 1

    if sum(histogram[:50]) / total_pixels > 0.7:
        issues.append("Image is very dark")
    if sum(histogram[200:]) / total_pixels > 0.7:
        issues.append("Image is overexposed")

    return issues
