"""
Run directory and artifact files for one probe invocation.

Each invocation gets its own directory (``<runs_dir>/<timestamp>-<run_id>``
unless the caller names one) holding the captured page, screenshot, PDF,
cookies and the terminal ``result.json`` record.
"""

import json
import uuid
from datetime import datetime
from pathlib import Path

from pydantic import BaseModel

from src.probe.models import CookieData
from src.utils.config import StorageConfig, get_settings
from src.utils.logging import get_logger

logger = get_logger(__name__)


def new_run_id() -> str:
    return uuid.uuid4().hex[:12]


def load_cookies(path: str | Path) -> list[CookieData]:
    """Load a cookie file written by :meth:`ArtifactStore.write_cookies`.

    Playwright's own ``context.cookies()`` JSON is accepted as well.

    Args:
        path: Cookie JSON file.

    Returns:
        List of CookieData.
    """
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    if isinstance(data, dict):
        data = data.get("cookies", [])
    return [CookieData.from_playwright_cookie(item) for item in data]


class ArtifactStore:
    """Writes artifacts of one run into its run directory.

    Args:
        run_id: Run identifier. Generated if None.
        run_dir: Explicit run directory. Defaults to a timestamped
            directory under ``storage.runs_dir``.
        screenshot_path: Explicit screenshot destination.
        pdf_path: Explicit PDF destination.
        config: Storage configuration.
    """

    def __init__(
        self,
        run_id: str | None = None,
        run_dir: str | Path | None = None,
        screenshot_path: str | Path | None = None,
        pdf_path: str | Path | None = None,
        config: StorageConfig | None = None,
    ) -> None:
        self._config = config or get_settings().storage
        self.run_id = run_id or new_run_id()

        if run_dir is None:
            timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
            run_dir = Path(self._config.runs_dir) / f"{timestamp}-{self.run_id}"
        self.run_dir = Path(run_dir).expanduser().resolve()

        self._screenshot_path = Path(screenshot_path).expanduser() if screenshot_path else None
        self._pdf_path = Path(pdf_path).expanduser() if pdf_path else None

    def ensure(self) -> Path:
        """Create the run directory if needed."""
        self.run_dir.mkdir(parents=True, exist_ok=True)
        return self.run_dir

    def _write(self, path: Path, data: bytes) -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
        resolved = path.resolve()
        logger.debug("Artifact written", path=str(resolved), size=len(data))
        return resolved

    def write_html(self, html: str) -> Path:
        self.ensure()
        return self._write(self.run_dir / self._config.html_filename, html.encode("utf-8"))

    def write_screenshot(self, data: bytes) -> Path:
        self.ensure()
        path = self._screenshot_path or self.run_dir / self._config.screenshot_filename
        return self._write(path, data)

    def write_pdf(self, data: bytes) -> Path:
        self.ensure()
        path = self._pdf_path or self.run_dir / self._config.pdf_filename
        return self._write(path, data)

    def write_cookies(self, cookies: list[CookieData]) -> Path:
        self.ensure()
        payload = json.dumps([c.to_dict() for c in cookies], indent=2, ensure_ascii=False)
        return self._write(self.run_dir / self._config.cookies_filename, payload.encode("utf-8"))

    def write_record(self, record: BaseModel) -> Path:
        """Write the terminal result record as ``result.json``."""
        self.ensure()
        payload = record.model_dump_json(indent=2)
        path = self._write(self.run_dir / self._config.result_filename, payload.encode("utf-8"))
        logger.info("Result written", path=str(path))
        return path
