"""
Canvas state store — the mutable, persisted side of the driver tree canvas.

A ``CanvasStore`` owns one ``CanvasState`` scoped by a storage key:

    positions    — drag overrides of the computed layout, keyed by node id
    connections  — user-drawn edges
    selection    — selected node ids and selected user-edge ids

Every operation is synchronous and all-or-nothing: a new ``CanvasState`` is
built first and only then swapped in and saved.  Saving happens after each
mutation, which is why callers commit drag positions once per gesture rather
than once per pointer move.

Selection is ephemeral: it is exported, but never restored from storage.

Stale entries (positions or connections naming ids that are no longer in
the metric set) are dropped by ``reconcile``, which the canvas calls with
the current ids whenever its data changes.  Dropping them is routine, not an
error.
"""

from __future__ import annotations

import json
import logging
import time
import uuid
from typing import Callable, Iterable, Mapping, Optional

from pydantic import ValidationError

from .models import CanvasState, Connection, Position
from .storage import CanvasStorage, MemoryStorage


logger = logging.getLogger(__name__)

DEFAULT_STORAGE_KEY = "driver-tree-canvas"


class CanvasStore:
    """Position overrides, user connections and selection for one canvas.

    Args:
        storage_key: Which persisted canvas to load and save.
        storage:     Backend to persist through.  Defaults to an in-memory
                     backend private to this store.
        node_ids:    The current metric ids, if already known.  Stale
                     entries in the loaded state are dropped against them.
    """

    def __init__(
        self,
        storage_key: str = DEFAULT_STORAGE_KEY,
        storage: Optional[CanvasStorage] = None,
        node_ids: Optional[Iterable[str]] = None,
    ):
        self.storage_key = storage_key
        self.storage: CanvasStorage = storage if storage is not None else MemoryStorage()
        self._known_ids: Optional[set[str]] = set(node_ids) if node_ids is not None else None
        self._state = self._load()
        if self._known_ids is not None:
            self._state = self._drop_stale(self._state, self._known_ids)

    # --- Persistence ---

    def _load(self) -> CanvasState:
        raw = self.storage.get_item(self.storage_key)
        if not raw:
            return CanvasState.empty()
        try:
            state = CanvasState.model_validate(json.loads(raw))
        except (ValueError, ValidationError) as e:
            logger.warning(f"Ignoring unreadable canvas state for '{self.storage_key}': {e}")
            return CanvasState.empty()
        return state.model_copy(update={"selected_node_ids": [], "selected_edge_ids": []})

    def _commit(self, state: CanvasState) -> None:
        self._state = state
        self.storage.set_item(self.storage_key, state.to_json())

    @property
    def state(self) -> CanvasState:
        """A copy of the current state; mutate through the store methods."""
        return self._state.model_copy(deep=True)

    @property
    def positions(self) -> dict[str, Position]:
        return dict(self._state.positions)

    @property
    def connections(self) -> list[Connection]:
        return list(self._state.connections)

    @property
    def selected_node_ids(self) -> list[str]:
        return list(self._state.selected_node_ids)

    @property
    def selected_edge_ids(self) -> list[str]:
        return list(self._state.selected_edge_ids)

    def has_selection(self) -> bool:
        return bool(self._state.selected_node_ids or self._state.selected_edge_ids)

    # --- Stale reference handling ---

    @staticmethod
    def _drop_stale(state: CanvasState, node_ids: set[str]) -> CanvasState:
        positions = {k: v for k, v in state.positions.items() if k in node_ids}
        connections = [
            c for c in state.connections
            if c.source_id in node_ids and c.target_id in node_ids
        ]
        connection_ids = {c.id for c in connections}
        dropped = (len(state.positions) - len(positions)) + (len(state.connections) - len(connections))
        if dropped:
            logger.info(f"Dropped {dropped} stale canvas entries")
        return state.model_copy(update={
            "positions": positions,
            "connections": connections,
            "selected_node_ids": [i for i in state.selected_node_ids if i in node_ids],
            "selected_edge_ids": [i for i in state.selected_edge_ids if i in connection_ids],
        })

    def reconcile(self, node_ids: Iterable[str]) -> None:
        """Drop every entry that references an id outside ``node_ids``."""
        self._known_ids = set(node_ids)
        cleaned = self._drop_stale(self._state, self._known_ids)
        if cleaned != self._state:
            self._commit(cleaned)

    # --- Positions ---

    def get_position(self, node_id: str) -> Optional[Position]:
        """The saved override for ``node_id``, or None to use the layout."""
        return self._state.positions.get(node_id)

    def update_node_position(self, node_id: str, x: float, y: float) -> None:
        positions = dict(self._state.positions)
        positions[node_id] = Position(x=x, y=y)
        self._commit(self._state.model_copy(update={"positions": positions}))

    def update_positions(self, positions: Mapping[str, Position]) -> None:
        """Commit on-screen positions as overrides, once per drag gesture.

        Overrides for ids not in ``positions`` are kept.
        """
        merged = dict(self._state.positions)
        merged.update(positions)
        self._commit(self._state.model_copy(update={"positions": merged}))

    # --- Connections ---

    def find_connection(self, source_id: str, target_id: str) -> Optional[Connection]:
        for conn in self._state.connections:
            if conn.source_id == source_id and conn.target_id == target_id:
                return conn
        return None

    def is_connected(self, a: str, b: str) -> bool:
        """True when a connection links ``a`` and ``b`` in either direction."""
        return self.find_connection(a, b) is not None or self.find_connection(b, a) is not None

    def add_connection(
        self,
        source_id: str,
        target_id: str,
        label: Optional[str] = None,
    ) -> Optional[Connection]:
        """Append a new connection.

        Self-loops and exact duplicates are no-ops and return None.
        """
        if source_id == target_id:
            return None
        if self.find_connection(source_id, target_id):
            return None

        connection = Connection(
            id=f"connection-{source_id}-{target_id}-{uuid.uuid4().hex[:8]}",
            source_id=source_id,
            target_id=target_id,
            label=label,
            created_at=time.time(),
        )
        self._commit(self._state.model_copy(
            update={"connections": [*self._state.connections, connection]}
        ))
        return connection

    def remove_connection(self, connection_id: str) -> None:
        self.remove_connections([connection_id])

    def remove_connections(self, connection_ids: Iterable[str]) -> None:
        """Remove connections by id.  Unknown ids are ignored."""
        doomed = set(connection_ids)
        if not doomed:
            return
        self._commit(self._state.model_copy(update={
            "connections": [c for c in self._state.connections if c.id not in doomed],
            "selected_edge_ids": [i for i in self._state.selected_edge_ids if i not in doomed],
        }))

    def connections_touching(self, node_id: str) -> list[Connection]:
        return [c for c in self._state.connections if c.touches(node_id)]

    # --- Selection ---

    def select_node(self, node_id: str, additive: bool = False) -> None:
        """Select one node.

        Additive selection toggles ``node_id`` in the node selection;
        otherwise the node becomes the only selected element.
        """
        if additive:
            selected = list(self._state.selected_node_ids)
            if node_id in selected:
                selected.remove(node_id)
            else:
                selected.append(node_id)
            update = {"selected_node_ids": selected}
        else:
            update = {"selected_node_ids": [node_id], "selected_edge_ids": []}
        self._commit(self._state.model_copy(update=update))

    def set_selected_nodes(self, node_ids: Iterable[str]) -> None:
        """Replace the node selection."""
        unique = list(dict.fromkeys(node_ids))
        self._commit(self._state.model_copy(update={"selected_node_ids": unique}))

    def select_edge(self, edge_id: str, additive: bool = False) -> None:
        """Select a user connection.

        Additive mode unions ``edge_id`` into the edge selection (node
        selection is kept); otherwise the edge becomes the only selected
        element.  Ids that are not user connections are ignored.
        """
        if not any(c.id == edge_id for c in self._state.connections):
            return
        if additive:
            selected = list(self._state.selected_edge_ids)
            if edge_id not in selected:
                selected.append(edge_id)
            update = {"selected_edge_ids": selected}
        else:
            update = {"selected_node_ids": [], "selected_edge_ids": [edge_id]}
        self._commit(self._state.model_copy(update=update))

    def clear_selection(self) -> None:
        self._commit(self._state.model_copy(
            update={"selected_node_ids": [], "selected_edge_ids": []}
        ))

    # --- Deletion ---

    def delete_nodes(self, node_ids: Iterable[str]) -> None:
        """Drop positions, selection and every connection touching ``node_ids``."""
        doomed = set(node_ids)
        if not doomed:
            return
        connections = [
            c for c in self._state.connections
            if c.source_id not in doomed and c.target_id not in doomed
        ]
        remaining = {c.id for c in connections}
        self._commit(self._state.model_copy(update={
            "positions": {k: v for k, v in self._state.positions.items() if k not in doomed},
            "connections": connections,
            "selected_node_ids": [i for i in self._state.selected_node_ids if i not in doomed],
            "selected_edge_ids": [i for i in self._state.selected_edge_ids if i in remaining],
        }))

    def delete_selected_nodes(
        self,
        on_external_delete: Optional[Callable[[str], None]] = None,
    ) -> list[str]:
        """Delete every selected node, cascading to its connections.

        ``on_external_delete`` is called once per deleted id so the metric
        list owned elsewhere stays in sync.  Returns the deleted ids.
        """
        doomed = list(self._state.selected_node_ids)
        if not doomed:
            return []
        self.delete_nodes(doomed)
        if on_external_delete:
            for node_id in doomed:
                on_external_delete(node_id)
        return doomed

    def delete_selected_edges(self) -> list[str]:
        """Delete the selected connections.  Returns the deleted ids."""
        doomed = list(self._state.selected_edge_ids)
        if not doomed:
            return []
        self.remove_connections(doomed)
        return doomed

    # --- Import / Export ---

    def export_state(self) -> str:
        return self._state.to_json()

    def import_state(self, payload: str) -> bool:
        """Replace the whole state with a serialized one.

        Returns False, leaving the current state untouched, when ``payload``
        is not JSON or lacks any of positions / connections / selectedNodeIds
        / selectedEdgeIds in the right shape, or repeats a connection id.
        Self-loop connections and selected edge ids without a matching
        connection are dropped from an accepted payload.
        """
        try:
            data = json.loads(payload)
            if not isinstance(data, dict):
                raise ValueError("canvas state must be a JSON object")
            imported = CanvasState.model_validate(data)
        except (TypeError, ValueError, ValidationError) as e:
            logger.warning(f"Rejected canvas state import for '{self.storage_key}': {e}")
            return False

        if self._known_ids is not None:
            imported = self._drop_stale(imported, self._known_ids)
        self._commit(imported)
        return True

    def reset_state(self) -> None:
        self._commit(CanvasState.empty())
