"""Core card lifecycle engine.

This module provides the components that keep a prompt card record and its
two images consistent:

- **CardService**: create/update/delete/favorite/list use cases
- **AttachmentReconciler**: per-slot keep/replace/remove planning and ordered uploads
- **CardRepository**: SQLite persistence for card records
- **AttachmentStore**: storage contract, with a local file system implementation
- **PromptLibConfig**: configuration management using Pydantic Settings
- **config**: global configuration instance (loads from environment variables)

Architecture Overview
---------------------
1. **Configuration Layer** (config.py):
   - Environment-based configuration using Pydantic Settings
   - All settings prefixed with PROMPTLIB_ in .env files

2. **Storage Layer** (attachment_store.py, card_repository.py):
   - Images are written under fresh, never-reused object names
   - Card records are written in single SQL statements

3. **Lifecycle Layer** (reconciler.py, lifecycle.py, cleanup.py):
   - Uploads happen before the record write
   - Superseded images are deleted after it, in the background

4. **Support Utilities**:
   - validation.py: field, upload, and slot intent checks
   - query.py: filter parameter normalisation
   - export.py: JSON and CSV projections

Usage Example
-------------
    from promptlib.core import CardService, LocalAttachmentStore, config

    store = LocalAttachmentStore(config.attachments_dir, config.url_signing_secret)
    service = CardService.from_config(config, store)
    cards = service.list_cards()
"""

from promptlib.core.attachment_store import AttachmentStore, LocalAttachmentStore
from promptlib.core.card_repository import CardRepository
from promptlib.core.config import PromptLibConfig, config
from promptlib.core.lifecycle import CardService
from promptlib.core.reconciler import AttachmentReconciler

__all__ = [
    "AttachmentReconciler",
    "AttachmentStore",
    "CardRepository",
    "CardService",
    "LocalAttachmentStore",
    "PromptLibConfig",
    "config",
]
