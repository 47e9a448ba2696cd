import io
import logging
import os
import secrets
import time
from typing import Dict, Iterable, List

from fastapi import HTTPException, UploadFile
from PIL import Image, ImageOps, UnidentifiedImageError
from starlette.concurrency import run_in_threadpool

import config

logger = logging.getLogger(__name__)

MB = 1024 * 1024

PROPERTY_IMAGE_TYPES = {"image/jpeg", "image/jpg", "image/png", "image/webp"}
MAX_PROPERTY_IMAGES = 10
MAX_PROPERTY_IMAGE_SIZE = 10 * MB
MAX_AVATAR_SIZE = 5 * MB
MAX_DOCUMENT_SIZE = 5 * MB

FULL_SIZE = (1200, 800)
THUMB_SIZE = (400, 300)
AVATAR_SIZE = (400, 400)


def _unique_name(prefix: str, suffix: str) -> str:
    return f"{prefix}-{int(time.time() * 1000)}-{secrets.randbelow(10 ** 9)}{suffix}"


def _upload_path(*parts: str) -> str:
    path = os.path.join(config.UPLOAD_DIR, *parts)
    os.makedirs(path, exist_ok=True)
    return path


async def read_upload(upload: UploadFile, allowed: Iterable[str], max_size: int, type_error: str) -> bytes:
    content_type = (upload.content_type or "").lower()
    if not any(content_type == a or (a.endswith("/") and content_type.startswith(a)) for a in allowed):
        raise HTTPException(status_code=400, detail=type_error)
    data = await upload.read()
    if len(data) > max_size:
        raise HTTPException(status_code=400, detail=f"File too large (max {max_size // MB}MB)")
    return data


def _open_image(data: bytes) -> Image.Image:
    try:
        img = Image.open(io.BytesIO(data))
        img.load()
    except (UnidentifiedImageError, OSError):
        raise HTTPException(status_code=400, detail="Failed to process image")
    img = ImageOps.exif_transpose(img)
    if img.mode not in ("RGB", "RGBA"):
        img = img.convert("RGBA" if "A" in img.getbands() else "RGB")
    return img


def process_property_image(data: bytes, filename: str) -> Dict[str, str]:
    """Write a full size WebP (fit inside 1200x800, never enlarged) and a 400x300 cropped thumbnail."""
    out_dir = _upload_path("properties")
    img = _open_image(data)

    full = img.copy()
    full.thumbnail(FULL_SIZE)
    full.save(os.path.join(out_dir, filename), "WEBP", quality=85)

    thumb_name = f"thumb_{filename}"
    thumb = ImageOps.fit(img, THUMB_SIZE, centering=(0.5, 0.5))
    thumb.save(os.path.join(out_dir, thumb_name), "WEBP", quality=80)

    return {"url": f"/uploads/properties/{filename}", "thumbnail": f"/uploads/properties/{thumb_name}"}


async def save_property_images(files: List[UploadFile]) -> List[Dict[str, str]]:
    if len(files) > MAX_PROPERTY_IMAGES:
        raise HTTPException(status_code=400, detail=f"You can upload at most {MAX_PROPERTY_IMAGES} images")
    saved = []
    for index, upload in enumerate(files):
        data = await read_upload(upload, PROPERTY_IMAGE_TYPES, MAX_PROPERTY_IMAGE_SIZE,
                                 "Only image files (JPEG, PNG, JPG, WebP) are allowed")
        name = _unique_name("property", f"-{index}.webp")
        saved.append(await run_in_threadpool(process_property_image, data, name))
    logger.info("Processed %d property images", len(saved))
    return saved


def process_avatar(data: bytes, filename: str) -> str:
    img = ImageOps.fit(_open_image(data), AVATAR_SIZE, centering=(0.5, 0.5))
    img.save(os.path.join(_upload_path("avatars"), filename), "WEBP", quality=85)
    return f"/uploads/avatars/{filename}"


def write_document(data: bytes, filename: str) -> str:
    with open(os.path.join(_upload_path("applications"), filename), "wb") as f:
        f.write(data)
    return f"uploads/applications/{filename}"


# Pillow and disk work run in the threadpool, off the event loop

async def save_avatar(upload: UploadFile) -> str:
    data = await read_upload(upload, ("image/",), MAX_AVATAR_SIZE, "Please upload only image files.")
    return await run_in_threadpool(process_avatar, data, _unique_name("avatar", ".webp"))


async def save_document(upload: UploadFile) -> str:
    data = await read_upload(upload, ("image/", "application/pdf"), MAX_DOCUMENT_SIZE,
                             "Only images and PDFs allowed")
    original = os.path.basename(upload.filename or "document").replace(" ", "_")
    return await run_in_threadpool(write_document, data, f"{int(time.time() * 1000)}-{original}")
