from __future__ import annotations

import contextlib
import logging
import os
import tempfile
from collections.abc import Sequence
from pathlib import Path

from jinja2 import Environment, StrictUndefined, TemplateError

from lbsync.src.inventory import Endpoint

LOGGER = logging.getLogger(__name__)

CONFIG_FILE_MODE = 0o644


class RenderError(RuntimeError):
    """Raised when the template cannot be loaded, compiled, or evaluated."""


class WriteError(RuntimeError):
    """Raised when the rendered configuration cannot be persisted."""


def _environment() -> Environment:
    # Output is proxy configuration, not HTML.
    return Environment(  # noqa: S701
        undefined=StrictUndefined,
        keep_trailing_newline=True,
        autoescape=False,
    )


def load_template(path: str) -> str:
    try:
        return Path(path).read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        raise RenderError(f"Failed to load template file {path}: {exc}") from exc


def render_config(template_source: str, endpoints: Sequence[Endpoint]) -> bytes:
    """Render *template_source* with ``services`` bound to *endpoints*.

    ``services`` is the only name in the template context. Compilation and
    evaluation failures both raise :class:`RenderError`; partial output is
    never returned.
    """
    try:
        template = _environment().from_string(template_source)
        rendered = template.render(services=list(endpoints))
    except TemplateError as exc:
        raise RenderError(f"Failed to render template: {exc}") from exc
    except Exception as exc:
        # Filters and macros can raise arbitrary Python errors during evaluation.
        raise RenderError(f"Failed to evaluate template: {exc!r}") from exc
    return rendered.encode("utf-8")


def write_config(path: str, data: bytes) -> None:
    """Atomically replace *path* with *data*.

    The bytes go to a temporary file in the same directory which is then
    renamed over the target, so readers only ever see the old or the new
    file. On failure the target is left untouched.
    """
    target = Path(path)
    tmp_name: str | None = None
    try:
        fd, tmp_name = tempfile.mkstemp(
            dir=target.parent, prefix=f".{target.name}.", suffix=".tmp"
        )
        with os.fdopen(fd, "wb") as handle:
            handle.write(data)
            handle.flush()
            os.fsync(handle.fileno())
        os.chmod(tmp_name, CONFIG_FILE_MODE)
        os.replace(tmp_name, target)
        tmp_name = None
    except OSError as exc:
        raise WriteError(f"Failed to write config file {path}: {exc}") from exc
    finally:
        if tmp_name is not None:
            with contextlib.suppress(FileNotFoundError):
                os.unlink(tmp_name)
    LOGGER.info("Wrote config file %s (%d bytes)", path, len(data))
