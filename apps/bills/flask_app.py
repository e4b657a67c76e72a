"""Development server for the utility bill manager.

Run ``python apps/bills/flask_app.py``; ``FLASK_DEBUG`` turns on the
reloader and debugger.
"""

from __future__ import annotations

import os

from bill_manager_web import create_app
from bill_manager_web.config import TRUE_VALUES


def resolve_debug_flag(env_var: str = "FLASK_DEBUG") -> bool:
    """Return ``True`` only when ``env_var`` holds a recognised true value."""

    return os.getenv(env_var, "").strip().lower() in TRUE_VALUES


app = create_app()
app.config["DEBUG"] = resolve_debug_flag()


if __name__ == "__main__":
    app.run(debug=app.debug, host="127.0.0.1", port=5000)
