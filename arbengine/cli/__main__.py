"""Entry point for ``python -m arbengine.cli`` and the ``arbengine`` script."""

from __future__ import annotations

from .core import app


def main() -> None:
    app(prog_name="arbengine")


if __name__ == "__main__":  # pragma: no cover
    main()
