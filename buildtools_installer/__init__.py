"""Build Tools installer (manifest-driven, unattended).

Core design goals:
- Dependencies installed before dependents, each package at most once
- Payloads verified before any install side effect
- Architecture- and language-aware package selection
- Fail fast: no retries, no partial installs
- Centralized logging
"""

__all__ = []
