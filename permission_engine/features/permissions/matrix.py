"""
Role permission matrix editor.

Rows are catalog resources, columns are the standard actions followed by
any custom actions in the catalog. A cell is available only when the
catalog has a permission for that exact (resource, action); unavailable
cells are never selected and never touched by bulk toggles.

A PermissionMatrix value is one revision of the editor. Every transition
returns a new revision and leaves the original unchanged; the caller owns
which revision is current.

Usage:
    matrix = PermissionMatrix.from_catalog(await store.list_permissions(db))
    matrix = matrix.toggle_row("document").toggle_cell("document", "delete", False)
    result = matrix.validate()
    if result.is_valid:
        await store.update_role(db, role_id, permission_ids=matrix.permission_ids())
"""
import enum
from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Any, Dict, FrozenSet, Iterable, List, Mapping, Optional, Tuple

from permission_engine.core.exceptions import ValidationError
from permission_engine.features.permissions.actions import STANDARD_ACTIONS, normalize_action


GLOBAL_ERROR = "Please select at least one permission for this role"

# Role form presets (name -> level)
ACCESS_LEVEL_PRESETS: Mapping[str, int] = MappingProxyType({
    "User": 50,
    "Manager": 70,
    "Admin": 90,
    "Super Admin": 100,
})


class ColumnState(str, enum.Enum):
    CHECKED = "checked"
    UNCHECKED = "unchecked"
    INDETERMINATE = "indeterminate"


class EditorMode(str, enum.Enum):
    CREATE = "create"
    EDIT = "edit"


@dataclass(frozen=True)
class MatrixValidation:
    errors: Mapping[str, str] = field(default_factory=dict)
    global_error: Optional[str] = None

    @property
    def is_valid(self) -> bool:
        return not self.errors and self.global_error is None


Cell = Tuple[str, str]


def resource_error(resource: str) -> str:
    return f"Please select at least one action for {resource}"


@dataclass(frozen=True)
class PermissionMatrix:
    # resource -> action -> catalog permission id
    availability: Mapping[str, Mapping[str, int]]
    selected: FrozenSet[Cell] = frozenset()
    # resources edited during this session
    touched: FrozenSet[str] = frozenset()

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def from_catalog(cls, permissions: Iterable[Any], selected: Iterable[Any] = ()) -> "PermissionMatrix":
        """
        Build a matrix over the catalog.

        Args:
            permissions: catalog entries with ``id``, ``resource``, ``action``
            selected: initially checked cells, as permissions with
                ``resource``/``action`` or as (resource, action) tuples;
                cells not available in the catalog are dropped
        """
        availability: Dict[str, Dict[str, int]] = {}
        for permission in permissions:
            action = normalize_action(permission.action)
            availability.setdefault(permission.resource, {}).setdefault(action, permission.id)

        frozen = MappingProxyType({
            resource: MappingProxyType(dict(actions)) for resource, actions in availability.items()
        })
        matrix = cls(availability=frozen)

        cells = set()
        for item in selected:
            if isinstance(item, tuple):
                resource, action = item
            else:
                resource, action = item.resource, item.action
            cell = (resource, normalize_action(action))
            if matrix.is_available(*cell):
                cells.add(cell)
        return replace(matrix, selected=frozenset(cells))

    def with_payload(self, payload: Iterable[Mapping[str, Any]]) -> "PermissionMatrix":
        """
        Load a persistence payload (as produced by ``to_persistence_payload``)
        as this matrix's selection.

        Raises:
            ValidationError: a cell is not in the catalog or its id does not match
        """
        cells = set()
        touched = set()
        unknown: List[str] = []
        for entry in payload:
            resource = entry["resource"]
            touched.add(resource)
            for item in entry.get("actions", []):
                action = normalize_action(item["action"])
                permission_id = self.permission_id(resource, action)
                if permission_id is None or ("id" in item and item["id"] != permission_id):
                    unknown.append(f"{resource}:{action}")
                    continue
                cells.add((resource, action))
        if unknown:
            message = f"Unknown permissions: {', '.join(unknown)}"
            raise ValidationError(message, fields={"permissions": message})
        return replace(self, selected=frozenset(cells), touched=frozenset(touched))

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def resources(self) -> Tuple[str, ...]:
        return tuple(sorted(self.availability))

    @property
    def columns(self) -> Tuple[str, ...]:
        custom = sorted({
            action
            for actions in self.availability.values()
            for action in actions
            if action not in STANDARD_ACTIONS
        })
        return STANDARD_ACTIONS + tuple(custom)

    def is_available(self, resource: str, action: str) -> bool:
        return action in self.availability.get(resource, {})

    def is_checked(self, resource: str, action: str) -> bool:
        return (resource, action) in self.selected

    def permission_id(self, resource: str, action: str) -> Optional[int]:
        return self.availability.get(resource, {}).get(action)

    def available_actions(self, resource: str) -> Tuple[str, ...]:
        """Actions available for ``resource``, in column order."""
        return tuple(a for a in self.columns if self.is_available(resource, a))

    def selected_actions(self, resource: str) -> Tuple[str, ...]:
        return tuple(a for a in self.available_actions(resource) if self.is_checked(resource, a))

    def _resources_with(self, action: str) -> Tuple[str, ...]:
        return tuple(r for r in self.resources if self.is_available(r, action))

    def column_state(self, action: str) -> ColumnState:
        """Tri-state of a column header over the resources offering ``action``."""
        action = normalize_action(action)
        cells = [(r, action) for r in self._resources_with(action)]
        checked = sum(1 for cell in cells if cell in self.selected)
        if cells and checked == len(cells):
            return ColumnState.CHECKED
        if checked:
            return ColumnState.INDETERMINATE
        return ColumnState.UNCHECKED

    def row_state(self, resource: str) -> ColumnState:
        available = self.available_actions(resource)
        checked = len(self.selected_actions(resource))
        if available and checked == len(available):
            return ColumnState.CHECKED
        if checked:
            return ColumnState.INDETERMINATE
        return ColumnState.UNCHECKED

    def selected_count(self) -> int:
        return len(self.selected)

    def available_count(self) -> int:
        return sum(len(actions) for actions in self.availability.values())

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def toggle_cell(self, resource: str, action: str, checked: bool) -> "PermissionMatrix":
        action = normalize_action(action)
        if not self.is_available(resource, action):
            return self
        cell = (resource, action)
        selected = self.selected | {cell} if checked else self.selected - {cell}
        return replace(self, selected=selected, touched=self.touched | {resource})

    def toggle_row(self, resource: str) -> "PermissionMatrix":
        """Clear the row if every available cell is checked, otherwise check them all."""
        cells = {(resource, a) for a in self.available_actions(resource)}
        if not cells:
            return self
        if cells <= self.selected:
            selected = self.selected - cells
        else:
            selected = self.selected | cells
        return replace(self, selected=selected, touched=self.touched | {resource})

    def toggle_column(self, action: str) -> "PermissionMatrix":
        """Clear the column if every available cell is checked, otherwise check them all."""
        action = normalize_action(action)
        resources = self._resources_with(action)
        if not resources:
            return self
        cells = {(r, action) for r in resources}
        if cells <= self.selected:
            selected = self.selected - cells
        else:
            selected = self.selected | cells
        return replace(self, selected=selected, touched=self.touched | set(resources))

    def grant_all(self) -> "PermissionMatrix":
        cells = frozenset(
            (resource, action)
            for resource, actions in self.availability.items()
            for action in actions
        )
        return replace(self, selected=cells, touched=frozenset(self.availability))

    def clear_all(self) -> "PermissionMatrix":
        return replace(self, selected=frozenset(), touched=frozenset(self.availability))

    def reset(self) -> "PermissionMatrix":
        """Back to an untouched, empty selection."""
        return replace(self, selected=frozenset(), touched=frozenset())

    def change_access_level(self, preset: str, mode: EditorMode) -> Tuple[int, "PermissionMatrix"]:
        """
        Apply a role form access-level preset.

        In create mode the whole selection is discarded; in edit mode it is kept.

        Returns:
            (preset level, matrix revision)
        """
        if preset not in ACCESS_LEVEL_PRESETS:
            message = f"Unknown access level '{preset}'"
            raise ValidationError(message, fields={"access_level": message})
        level = ACCESS_LEVEL_PRESETS[preset]
        if mode is EditorMode.CREATE:
            return level, self.reset()
        return level, self

    # ------------------------------------------------------------------
    # Validation and output
    # ------------------------------------------------------------------

    def validate(self) -> MatrixValidation:
        """
        Per-resource errors for edited rows left with nothing selected, or a
        single global error when nothing at all is selected.
        """
        if not self.selected:
            return MatrixValidation(errors={}, global_error=GLOBAL_ERROR)
        errors = {
            resource: resource_error(resource)
            for resource in sorted(self.touched)
            if self.available_actions(resource) and not self.selected_actions(resource)
        }
        return MatrixValidation(errors=errors)

    def to_persistence_payload(self) -> List[Dict[str, Any]]:
        """``[{resource, actions: [{id, action}]}]`` for resources with a selection."""
        payload = []
        for resource in self.resources:
            actions = [
                {"id": self.availability[resource][action], "action": action}
                for action in self.selected_actions(resource)
            ]
            if actions:
                payload.append({"resource": resource, "actions": actions})
        return payload

    def permission_ids(self) -> List[int]:
        return [item["id"] for entry in self.to_persistence_payload() for item in entry["actions"]]
