"""
Image gallery backing the event/collection/stamp pickers.

Supabase Storage keeps the files in the `poke-stamp-images` bucket. With
Supabase switched off they live under UPLOAD_FOLDER and `/media/<path>`
serves them.
"""

from __future__ import annotations

import io
import os
import time
from dataclasses import dataclass
from typing import List, Optional, Tuple

from flask import current_app, url_for
from PIL import Image, UnidentifiedImageError
from werkzeug.utils import secure_filename

from olivos.backend import error_message, get_supabase_client, image_bucket, log_backend_warning
from olivos.errors import BackendError, ConflictError, ValidationError

IMAGE_FOLDERS = ("events", "collections", "stamps", "gallery")
UPLOAD_FOLDER_NAME = "gallery"
LIST_LIMIT = 200
MAX_IMAGE_SIZE_BYTES = 300 * 1024

# Pillow format -> content type stored alongside the object.
ALLOWED_IMAGE_FORMATS = {
    "JPEG": "image/jpeg",
    "PNG": "image/png",
    "WEBP": "image/webp",
}

LISTING_WARNING = "Some gallery images could not be loaded."


@dataclass(frozen=True)
class ImageOption:
    path: str
    url: str
    label: str
    folder: str


def list_images() -> Tuple[List[ImageOption], List[str]]:
    """Every image in the four gallery folders plus any listing warnings."""
    client = get_supabase_client()
    images: List[ImageOption] = []
    warnings: List[str] = []
    for folder in IMAGE_FOLDERS:
        try:
            if client:
                images.extend(_list_folder_supabase(client, folder))
            else:
                images.extend(_list_folder_local(folder))
        except Exception as exc:
            log_backend_warning(f"listing the {folder} images", exc)
            if LISTING_WARNING not in warnings:
                warnings.append(LISTING_WARNING)
    return images, warnings


def _list_folder_supabase(client, folder: str) -> List[ImageOption]:
    storage = client.storage.from_(image_bucket())
    entries = storage.list(folder, {"limit": LIST_LIMIT, "sortBy": {"column": "name", "order": "asc"}})
    options = []
    for entry in entries or []:
        name = entry.get("name") if isinstance(entry, dict) else getattr(entry, "name", None)
        if not _is_listable(name):
            continue
        path = f"{folder}/{name}"
        options.append(ImageOption(path=path, url=_public_url(storage.get_public_url(path)), label=name, folder=folder))
    return options


def _public_url(value) -> str:
    # supabase-py returns a plain string; older builds wrapped it in a dict.
    if isinstance(value, dict):
        return value.get("publicUrl") or value.get("publicURL") or ""
    return str(value or "")


def _list_folder_local(folder: str) -> List[ImageOption]:
    directory = os.path.join(_upload_root(), folder)
    if not os.path.isdir(directory):
        return []
    names = sorted(
        name
        for name in os.listdir(directory)
        if _is_listable(name) and os.path.isfile(os.path.join(directory, name))
    )
    return [
        ImageOption(
            path=f"{folder}/{name}",
            url=url_for("media_file", path=f"{folder}/{name}"),
            label=name,
            folder=folder,
        )
        for name in names[:LIST_LIMIT]
    ]


def _is_listable(name: Optional[str]) -> bool:
    # Storage returns folder placeholders alongside real objects.
    return bool(name) and not name.endswith("/") and not name.startswith(".")


def validate_image(file_storage) -> Tuple[bytes, str]:
    """Return (bytes, content type) or raise ValidationError; no network involved."""
    if not file_storage or not getattr(file_storage, "filename", ""):
        raise ValidationError("Choose an image to upload.")

    file_storage.stream.seek(0)
    data = file_storage.read()
    if not data:
        raise ValidationError("Choose an image to upload.")
    if len(data) > MAX_IMAGE_SIZE_BYTES:
        raise ValidationError("The image is larger than 300KB. Compress it before uploading.")

    try:
        with Image.open(io.BytesIO(data)) as image:
            image_format = (image.format or "").upper()
            image.verify()
    except (UnidentifiedImageError, OSError, SyntaxError) as exc:
        raise ValidationError("Format not allowed. Use JPG, PNG or WEBP.") from exc

    content_type = ALLOWED_IMAGE_FORMATS.get(image_format)
    if not content_type:
        raise ValidationError("Format not allowed. Use JPG, PNG or WEBP.")
    return data, content_type


def gallery_object_path(filename: str, now_ms: Optional[int] = None) -> str:
    stamp = now_ms if now_ms is not None else int(time.time() * 1000)
    safe_name = secure_filename(filename or "") or "image"
    return f"{UPLOAD_FOLDER_NAME}/{stamp}-{safe_name}"


def upload_image(file_storage) -> ImageOption:
    data, content_type = validate_image(file_storage)
    path = gallery_object_path(file_storage.filename)
    label = path.split("/", 1)[1]

    client = get_supabase_client()
    if client:
        storage = client.storage.from_(image_bucket())
        try:
            storage.upload(path, data, {"content-type": content_type, "upsert": "false"})
        except Exception as exc:
            log_backend_warning("uploading a gallery image", exc)
            raise BackendError(error_message(exc)) from exc
        current_app.logger.info("Uploaded gallery image %s", path)
        return ImageOption(path=path, url=_public_url(storage.get_public_url(path)), label=label, folder=UPLOAD_FOLDER_NAME)

    target = _local_path(path)
    os.makedirs(os.path.dirname(target), exist_ok=True)
    try:
        with open(target, "xb") as handle:
            handle.write(data)
    except FileExistsError as exc:
        raise ConflictError("An image with that name already exists.") from exc
    current_app.logger.info("Stored gallery image %s", path)
    return ImageOption(path=path, url=url_for("media_file", path=path), label=label, folder=UPLOAD_FOLDER_NAME)


def delete_image(path: str) -> None:
    path = _checked_path(path)
    client = get_supabase_client()
    if client:
        try:
            client.storage.from_(image_bucket()).remove([path])
        except Exception as exc:
            log_backend_warning("deleting a gallery image", exc)
            raise BackendError(error_message(exc)) from exc
    else:
        target = _local_path(path)
        if not os.path.isfile(target):
            raise ValidationError("That image no longer exists.", status_code=404)
        os.remove(target)
    current_app.logger.info("Deleted gallery image %s", path)


def _checked_path(path: Optional[str]) -> str:
    cleaned = (path or "").strip().lstrip("/")
    folder, _, name = cleaned.partition("/")
    if folder not in IMAGE_FOLDERS or not name or "/" in name or name in {".", ".."}:
        raise ValidationError("Unknown image path.")
    return cleaned


def _upload_root() -> str:
    return current_app.config["UPLOAD_FOLDER"]


def _local_path(path: str) -> str:
    return os.path.join(_upload_root(), *_checked_path(path).split("/"))
