"""Install source container detection and extraction strategies.

Accepted containers:

* ``.iso``            loop mount, copy the tree
* ``.img``            copy as ``system.img``, then best-effort loop mount + copy
* ``.tar`` / ``.tgz`` / ``.tar.gz`` / ``.tar.xz``   archive extraction
* ``.zip``            archive extraction

Anything else is sniffed with ``file -b`` and treated as a raw image when
the output says nothing useful.
"""

from __future__ import annotations

import shutil
import tarfile
import tempfile
import zipfile
from contextlib import contextmanager
from enum import Enum
from pathlib import Path
from typing import Callable, Iterator

from loguru import logger

from armboot.core.command import run_cmd
from armboot.errors import ExternalToolFailure, SourceUnavailable

SYSTEM_IMAGE = "system.img"


class ImageType(str, Enum):
    ISO = "iso"
    IMG = "img"
    TAR = "tar"
    ZIP = "zip"


_SUFFIX_TYPES: tuple[tuple[str, ImageType], ...] = (
    (".tar.gz", ImageType.TAR),
    (".tar.xz", ImageType.TAR),
    (".tar.bz2", ImageType.TAR),
    (".tgz", ImageType.TAR),
    (".tar", ImageType.TAR),
    (".zip", ImageType.ZIP),
    (".iso", ImageType.ISO),
    (".img", ImageType.IMG),
)


def detect_image_type(source: Path) -> ImageType:
    """Container type by extension, else by ``file`` output, else raw image."""
    lowered = source.name.lower()
    for suffix, image_type in _SUFFIX_TYPES:
        if lowered.endswith(suffix):
            return image_type
    return sniff_image_type(source)


def sniff_image_type(source: Path) -> ImageType:
    try:
        result = run_cmd(["file", "-b", str(source)], operation="detect", target=source.name)
    except ExternalToolFailure as e:
        logger.warning("Content sniffing failed for {}, assuming raw image: {}", source, e)
        return ImageType.IMG

    kind = result.stdout.lower()
    if "iso 9660" in kind:
        return ImageType.ISO
    if "zip archive" in kind:
        return ImageType.ZIP
    if "tar archive" in kind or "gzip compressed" in kind or "xz compressed" in kind:
        return ImageType.TAR
    return ImageType.IMG


# ----------------------------------------------------------------------
# Loop mounts
# ----------------------------------------------------------------------

@contextmanager
def mounted(image: Path, *, read_only: bool = True) -> Iterator[Path]:
    """Loop-mount *image* on a temporary directory for the ``with`` body.

    The image is unmounted and the mount point removed on every exit path.
    Cleanup failures are logged, never raised, so they cannot mask the
    body's own error.
    """
    mount_point = Path(tempfile.mkdtemp(prefix="armboot_mnt_"))
    argv = ["mount", "-o", "loop,ro" if read_only else "loop", str(image), str(mount_point)]
    try:
        run_cmd(argv, operation="mount", target=image.name)
    except ExternalToolFailure:
        _remove_mount_point(mount_point)
        raise
    try:
        yield mount_point
    finally:
        try:
            run_cmd(["umount", str(mount_point)], operation="umount", target=image.name)
        except ExternalToolFailure as e:
            logger.warning("Failed to unmount {}: {}", mount_point, e)
        _remove_mount_point(mount_point)


def _remove_mount_point(mount_point: Path) -> None:
    try:
        mount_point.rmdir()
    except OSError as e:
        logger.warning("Failed to remove mount point {}: {}", mount_point, e)


def _copy_tree(src: Path, dest: Path) -> None:
    shutil.copytree(src, dest, symlinks=True, dirs_exist_ok=True)


# ----------------------------------------------------------------------
# Strategies
# ----------------------------------------------------------------------

def extract_iso(source: Path, dest: Path) -> None:
    with mounted(source) as mnt:
        _copy_tree(mnt, dest)
    logger.info("ISO contents copied to {}", dest)


def extract_img(source: Path, dest: Path) -> None:
    """Keep the raw image; expose its files too when it can be mounted."""
    shutil.copy2(source, dest / SYSTEM_IMAGE)
    try:
        with mounted(source) as mnt:
            _copy_tree(mnt, dest)
    except (ExternalToolFailure, OSError) as e:
        logger.info("Raw image {} not mountable, kept as {} only: {}", source.name, SYSTEM_IMAGE, e)
        return
    logger.info("Image contents copied to {}", dest)


def extract_tar(source: Path, dest: Path) -> None:
    try:
        with tarfile.open(source, "r:*") as tf:
            tf.extractall(dest, filter="tar")
    except tarfile.TarError as e:
        raise SourceUnavailable(f"corrupt archive: {e}", operation="install", target=source.name) from e
    logger.info("Tar archive extracted to {}", dest)


def extract_zip(source: Path, dest: Path) -> None:
    try:
        with zipfile.ZipFile(source, "r") as zf:
            zf.extractall(dest)
    except zipfile.BadZipFile as e:
        raise SourceUnavailable(f"corrupt archive: {e}", operation="install", target=source.name) from e
    logger.info("Zip archive extracted to {}", dest)


EXTRACTORS: dict[ImageType, Callable[[Path, Path], None]] = {
    ImageType.ISO: extract_iso,
    ImageType.IMG: extract_img,
    ImageType.TAR: extract_tar,
    ImageType.ZIP: extract_zip,
}


def extract(source: Path, dest: Path) -> ImageType:
    """Unpack *source* into the existing directory *dest*."""
    image_type = detect_image_type(source)
    logger.info("Extracting {} ({}) into {}", source.name, image_type.value, dest)
    EXTRACTORS[image_type](source, dest)
    return image_type


def container_suffix(filename: str) -> str:
    """Extension to keep on a fetched copy so detection still works."""
    lowered = filename.lower()
    for suffix, _image_type in _SUFFIX_TYPES:
        if lowered.endswith(suffix):
            return suffix
    return Path(filename).suffix
