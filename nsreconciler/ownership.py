"""Owner-reference bookkeeping for derived objects.

A derived object stores its owners as a flat list of OwnerReference entries
rather than owners pointing at their dependents. Any owner can update its own
entry independently of the others, in any order.

OwnershipTracker works on a copy of that list and reports whether anything
changed, so callers can skip writes that would be no-ops.
"""

from __future__ import annotations

from dataclasses import replace

from nsreconciler.errors import OwnershipError
from nsreconciler.models.rbac import OwnerReference


class OwnershipTracker:
    """Decides which owner entries of a single object remain valid.

    Args:
        refs: The object's current owner list. It is copied, never mutated.
    """

    def __init__(self, refs: list[OwnerReference] | None = None) -> None:
        self._refs: list[OwnerReference] = list(refs or [])
        self.changed = False

    @property
    def refs(self) -> list[OwnerReference]:
        return list(self._refs)

    def valid_owners(self) -> list[OwnerReference]:
        return [ref for ref in self._refs if ref.valid]

    def is_orphaned(self) -> bool:
        """True when no valid owner remains and the external collector may delete the object."""
        return not self.valid_owners()

    def entry_for(self, owner_id: str) -> OwnerReference | None:
        for ref in self._refs:
            if ref.owner_id == owner_id:
                return ref
        return None

    def claim(self, owner: OwnerReference) -> None:
        """Add *owner* as a valid entry, or refresh its existing entry.

        Refreshing restores validity and updates the owner's name, kind and
        controller flag. Entries of other owners are left untouched.
        """
        wanted = replace(owner, valid=True)
        for i, ref in enumerate(self._refs):
            if ref.owner_id == owner.owner_id:
                if ref != wanted:
                    self._refs[i] = wanted
                    self.changed = True
                return
        self._refs.append(wanted)
        self.changed = True

    def claim_controller(self, owner: OwnerReference) -> None:
        """Claim a singly-owned object; *owner* becomes its only controller.

        Raises:
            OwnershipError: another owner already controls the object.
        """
        for ref in self._refs:
            if ref.controller and ref.owner_id != owner.owner_id:
                raise OwnershipError(
                    f"object is already controlled by {ref.kind} '{ref.owner_name}' ({ref.owner_id})"
                )
        self.claim(replace(owner, controller=True))

    def release(self, owner_id: str) -> bool:
        """Flip *owner_id*'s entry to invalid.

        Returns True if an entry was invalidated by this call. Missing or
        already-invalid entries are left as they are.
        """
        for i, ref in enumerate(self._refs):
            if ref.owner_id == owner_id and ref.valid:
                self._refs[i] = replace(ref, valid=False)
                self.changed = True
                return True
        return False
