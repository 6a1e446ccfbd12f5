"""Local model cache backed by the Hugging Face Hub.

Models live under ``<cache_dir>/models/<owner>--<name>/<filename>``.
Downloads go through ``huggingface_hub.hf_hub_download`` straight into the
model directory so the cache layout stays flat and easy to inspect.
"""

from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass
from pathlib import Path

from huggingface_hub import HfApi, hf_hub_download
from huggingface_hub.errors import HfHubHTTPError

from lamarun.exceptions import ModelNotFound

logger = logging.getLogger("lamarun")

MODEL_SUFFIX = ".gguf"


def is_hf_model_id(text: str) -> bool:
    """Whether *text* looks like ``owner/name`` rather than a file path."""
    if "/" not in text or "\\" in text:
        return False
    if text.startswith(("/", ".")) or text.endswith(MODEL_SUFFIX):
        return False
    if Path(text).exists():
        return False
    return text.count("/") == 1


def _safe_id(model_id: str) -> str:
    return model_id.replace("/", "--")


@dataclass(frozen=True, slots=True)
class CachedModel:
    """One model directory in the cache."""

    model_id: str
    path: Path
    files: tuple[str, ...]
    size_bytes: int


class ModelCache:
    """Downloads and tracks GGUF models on local disk.

    Args:
        cache_dir: Root cache directory. Created on first write.
        api: Hub client; a default ``HfApi()`` is built when omitted.
    """

    def __init__(self, cache_dir: Path | str, api: HfApi | None = None) -> None:
        self._root = Path(cache_dir)
        self._api = api if api is not None else HfApi()

    @property
    def root(self) -> Path:
        return self._root

    @property
    def models_dir(self) -> Path:
        return self._root / "models"

    def model_dir(self, model_id: str) -> Path:
        return self.models_dir / _safe_id(model_id)

    def model_path(self, model_id: str, filename: str) -> Path:
        return self.model_dir(model_id) / filename

    def exists(self, model_id: str, filename: str) -> bool:
        return self.model_path(model_id, filename).is_file()

    def cached_files(self, model_id: str) -> list[str]:
        """GGUF files already downloaded for *model_id*, sorted by name."""
        directory = self.model_dir(model_id)
        if not directory.is_dir():
            return []
        return sorted(p.name for p in directory.iterdir() if p.suffix == MODEL_SUFFIX)

    def list_remote_files(self, model_id: str) -> list[str]:
        """GGUF files published in the Hub repository *model_id*.

        Raises:
            ModelNotFound: If the repository cannot be listed.
        """
        try:
            files = self._api.list_repo_files(model_id)
        except (HfHubHTTPError, OSError) as exc:
            raise ModelNotFound(f"Could not list files of '{model_id}': {exc}") from exc
        return [name for name in files if name.endswith(MODEL_SUFFIX)]

    def download(self, model_id: str, filename: str, force: bool = False) -> Path:
        """Fetch *filename* from *model_id* into the cache.

        An existing file is reused unless *force* is set.

        Raises:
            ModelNotFound: If the repository or file does not exist or the
                download fails.
        """
        target = self.model_path(model_id, filename)
        if target.is_file() and not force:
            logger.info("Model already cached: %s", target)
            return target

        target.parent.mkdir(parents=True, exist_ok=True)
        logger.info("Downloading %s (file: %s)", model_id, filename)
        try:
            downloaded = hf_hub_download(
                repo_id=model_id,
                filename=filename,
                local_dir=target.parent,
                force_download=force,
            )
        except (HfHubHTTPError, OSError) as exc:
            raise ModelNotFound(
                f"Failed to download '{filename}' from '{model_id}': {exc}"
            ) from exc

        logger.info("Model downloaded: %s", downloaded)
        return Path(downloaded)

    def remove(self, model_id: str) -> bool:
        """Delete every cached file of *model_id*. Returns False if nothing was cached."""
        directory = self.model_dir(model_id)
        if not directory.exists():
            return False
        shutil.rmtree(directory)
        logger.info("Removed %s", directory)
        return True

    def list_models(self) -> list[CachedModel]:
        """Every model directory in the cache, sorted by id."""
        if not self.models_dir.is_dir():
            return []
        models = []
        for directory in sorted(self.models_dir.iterdir()):
            if not directory.is_dir():
                continue
            files = sorted(p for p in directory.rglob("*") if p.is_file())
            models.append(
                CachedModel(
                    model_id=directory.name.replace("--", "/", 1),
                    path=directory,
                    files=tuple(p.name for p in files if p.suffix == MODEL_SUFFIX),
                    size_bytes=sum(p.stat().st_size for p in files),
                )
            )
        return models

    def disk_usage(self) -> tuple[dict[str, int], int]:
        """Bytes per model id, and the total."""
        per_model = {model.model_id: model.size_bytes for model in self.list_models()}
        return per_model, sum(per_model.values())


def resolve_model(
    model: str,
    cache: ModelCache,
    filename: str | None = None,
    download: bool = False,
    force: bool = False,
) -> Path:
    """Map a model argument to a local GGUF file.

    Args:
        model: Local path or Hub id (``owner/name``).
        cache: Model cache.
        filename: File inside the Hub repository. When omitted, the first
            cached (or, when downloading, the first published) GGUF file.
        download: Fetch from the Hub when not cached.
        force: Re-download even if cached.

    Raises:
        ModelNotFound: If the model cannot be located or fetched.
    """
    if not download and not is_hf_model_id(model):
        path = Path(model)
        if not path.is_file():
            raise ModelNotFound(
                f"Model file not found: {model}. "
                "If this is a Hugging Face model id, pass --download."
            )
        return path

    if filename is None:
        cached = cache.cached_files(model)
        if cached and not force:
            filename = cached[0]
        elif download:
            remote = cache.list_remote_files(model)
            if not remote:
                raise ModelNotFound(f"No {MODEL_SUFFIX} files found in '{model}'")
            if len(remote) > 1:
                logger.warning(
                    "Multiple files in %s, using %s (pass --hf-filename to choose)",
                    model,
                    remote[0],
                )
            filename = remote[0]
        else:
            raise ModelNotFound(
                f"Model '{model}' not found locally. Pass --download to fetch it."
            )

    if cache.exists(model, filename) and not force:
        return cache.model_path(model, filename)
    if not download:
        raise ModelNotFound(
            f"Model '{model}' ({filename}) not found locally. Pass --download to fetch it."
        )
    return cache.download(model, filename, force=force)
