"""Entry point de desarrollo sin instalar el paquete.

    python main.py transfers list --mode live
    python main.py shell

`src/` no está en sys.path sin `pip install -e .`; este script lo agrega y
delega en `cli.main.run`, igual que el script `fintoc`.
"""

from __future__ import annotations

import sys
from pathlib import Path

if sys.platform == "win32":
    # Rich panels and Spanish MFA messages need utf-8 on cp1252 consoles.
    sys.stdout.reconfigure(encoding="utf-8")
    sys.stderr.reconfigure(encoding="utf-8")


def main() -> None:
    src = Path(__file__).resolve().parent / "src"
    if str(src) not in sys.path:
        sys.path.insert(0, str(src))

    from cli.main import run  # noqa: PLC0415

    run()


if __name__ == "__main__":
    main()
