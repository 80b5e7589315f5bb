"""Write numbered Alembic revision files from CreateTable operations.

Revisions are four-digit sequence numbers (``0001``, ``0002``...) taken
from the file names in ``versions/``; each new file points at the
highest existing one, so the history stays linear.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import Path

from lumina.migrations.types import MigrationOp

REVISION_FILE = re.compile(r"^(\d{4})_.*\.py$")


def latest_revision(versions_dir: Path) -> str | None:
    if not versions_dir.exists():
        return None
    numbers = [m.group(1) for m in map(REVISION_FILE.match, (f.name for f in versions_dir.iterdir())) if m]
    return max(numbers, default=None)


@dataclass
class MigrationScript:
    revision: str
    down_revision: str | None
    message: str
    ops: list[MigrationOp] = field(default_factory=list)

    @property
    def filename(self) -> str:
        slug = re.sub(r"[^a-z0-9]+", "_", self.message.lower()).strip("_")[:50]
        return f"{self.revision}_{slug}.py"

    def _body(self, lines: list[str]) -> str:
        return "\n".join(lines) if lines else "    pass"

    def render(self) -> str:
        upgrade = [line for op in self.ops for line in op.render_upgrade()]
        # Drop in reverse so referencing tables go before the tables they reference
        downgrade = [line for op in reversed(self.ops) for line in op.render_downgrade()]
        down = "None" if self.down_revision is None else f'"{self.down_revision}"'
        return (
            f'"""{self.message}"""\n'
            "\n"
            f'revision = "{self.revision}"\n'
            f"down_revision = {down}\n"
            "\n"
            "from alembic import op\n"
            "import sqlalchemy as sa\n"
            "\n"
            "\n"
            "def upgrade():\n"
            f"{self._body(upgrade)}\n"
            "\n"
            "\n"
            "def downgrade():\n"
            f"{self._body(downgrade)}\n"
        )


def generate_migration(
    ops: list[MigrationOp],
    message: str,
    output_dir: Path,
    revision: str | None = None,
    down_revision: str | None = None,
) -> Path:
    """Write ``{output_dir}/versions/{revision}_{slug}.py``.

    Args:
        ops: Operations in upgrade order
        message: Description; becomes the module docstring and file slug
        output_dir: The project's migrations directory
        revision: Explicit revision id (default: next sequence number)
        down_revision: Explicit parent (default: the current latest revision)

    Returns:
        Path of the written file
    """
    versions_dir = output_dir / "versions"
    versions_dir.mkdir(parents=True, exist_ok=True)

    if revision is None:
        latest = latest_revision(versions_dir)
        revision = f"{int(latest) + 1:04d}" if latest else "0001"
        if down_revision is None:
            down_revision = latest

    script = MigrationScript(revision, down_revision, message, list(ops))
    path = versions_dir / script.filename
    path.write_text(script.render())
    return path
