"""Run the rotator as a standalone kopf operator."""

from __future__ import annotations

import kopf

from . import main as _operator  # noqa: F401
from .config import secret_namespace_from_env


def main() -> None:
    # Namespaced watches (the secret) stay in the secret's namespace; kopf
    # watches cluster-scoped consumers cluster-wide regardless.
    kopf.run(standalone=True, namespaces=[secret_namespace_from_env()])


if __name__ == "__main__":
    main()
