"""Change detection over the entities an option tree depends on."""

from hachart.engine.store import StateStore
from hachart.shared.constants import MISSING_FINGERPRINT


def entity_fingerprint(store: StateStore, entity_id: str) -> str:
    """``"state|last_updated"``, or ``"missing"`` for an absent entity."""
    st = store.lookup(entity_id)
    if st is None:
        return MISSING_FINGERPRINT
    return f"{st.state}|{st.last_updated}"


def should_update_for_change(
    store: StateStore | None,
    watched_entities: set[str],
    last_fingerprints: dict[str, str],
) -> bool:
    """True iff some watched entity's fingerprint differs from the last snapshot."""
    if not watched_entities or store is None:
        return False
    return any(
        last_fingerprints.get(entity_id) != entity_fingerprint(store, entity_id)
        for entity_id in watched_entities
    )


def snapshot_fingerprints(
    store: StateStore | None,
    watched_entities: set[str],
    last_fingerprints: dict[str, str],
) -> None:
    """Replace ``last_fingerprints`` with the current fingerprints of ``watched_entities``.

    Only called after a successful apply, so a failed resolution is retried
    on the next notification.
    """
    if store is None:
        return
    fresh = {entity_id: entity_fingerprint(store, entity_id) for entity_id in watched_entities}
    last_fingerprints.clear()
    last_fingerprints.update(fresh)
