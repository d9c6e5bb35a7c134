"""
Managers: logging plus the membership, family directory, item and sync components.

Import components from their modules (`family_sync.managers.sync_coordinator`...); the
package itself stays import-free so the store layer can depend on `logging_manager`.
"""
