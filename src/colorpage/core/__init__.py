"""Core domain modules for Coloring Page Studio.

Modules
-------
config
    Pydantic Settings configuration loaded from ``COLORPAGE_*`` variables.
exceptions
    Error taxonomy shared by the core and the HTTP layer.
prompt_builder
    Coloring-page prompt templates keyed by form facets.
ledger
    Redis-backed credit balances and processed payment events.
storage
    Hosted object store or inline (local) image persistence.
image_client
    Thin async wrapper around the image-generation vendor SDK.
packages
    Static credit package catalog.
history_store
    File-backed generation history.
"""

from colorpage.core.config import ColorPageConfig, config
from colorpage.core.exceptions import ColorPageError

__all__ = [
    "ColorPageConfig",
    "ColorPageError",
    "config",
]
