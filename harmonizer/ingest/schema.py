"""Declarative description of the merger HDF5 layouts.

A layout is a tree of three node kinds:

- :class:`GroupSpec` -- an HDF5 group, with attributes and member nodes
- :class:`DatasetSpec` -- an HDF5 dataset, with shape/dtype constraints
- :class:`AttributeSpec` -- a scalar attribute on a group or dataset

:func:`check` walks an open h5py object against a spec and returns every
problem found, so a run can be rejected at open time with one complete
report instead of failing halfway through the copy.

Two merger generations exist:

``modern`` (merger >= 0.2)::

    events            min_event, max_event, version
    |-- event_N
    |   |-- get_traces (dset, 2-D)     id, timestamp, timestamp_other
    |   |-- frib_physics               event, timestamp
    |       |-- 977 (dset), 1903 (dset), ...
    scalers           min_event, max_event          (optional)
    |-- event_N (dset, 1-D, >= 11 values)

``legacy`` (merger 0.1)::

    meta/meta (dset)                  [min_event, _, max_event, ...]
    get/evtN_data, get/evtN_header    header = [id, timestamp, timestamp_other]
    frib/evt/evtN_1903, evtN_977, evtN_header   header = [event, timestamp]
    frib/scaler/scalerN_data          (optional group)
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Literal, Optional, Tuple, Union

import h5py
import numpy as np

from harmonizer.models.events import SCALER_CHANNELS

Kind = Literal["integer", "number", "string", "any"]


@dataclass(frozen=True)
class AttributeSpec:
    name: str
    kind: Kind = "integer"
    required: bool = True


@dataclass(frozen=True)
class DatasetSpec:
    """
    ndim: required number of dimensions (None = any).
    min_length: minimum size of the first axis (None = any).
    requires: sibling member names that must exist whenever this dataset exists.
    """
    name: str
    kind: Kind = "number"
    ndim: Optional[int] = None
    min_length: Optional[int] = None
    attrs: Tuple[AttributeSpec, ...] = ()
    required: bool = True
    requires: Tuple[str, ...] = ()


@dataclass(frozen=True)
class GroupSpec:
    """
    members: explicitly named children.
    each_dataset: spec applied to every dataset child not listed in members.
    """
    name: str
    attrs: Tuple[AttributeSpec, ...] = ()
    members: Tuple["Node", ...] = ()
    required: bool = True
    each_dataset: Optional[DatasetSpec] = None


Node = Union[GroupSpec, DatasetSpec]


def _kind_matches(dtype: np.dtype, kind: Kind) -> bool:
    if kind == "any":
        return True
    if kind == "integer":
        return np.issubdtype(dtype, np.integer)
    if kind == "number":
        return np.issubdtype(dtype, np.number)
    if kind == "string":
        return dtype.kind in ("S", "U", "O")
    return False


def _check_attr(obj: Union[h5py.Group, h5py.Dataset], spec: AttributeSpec, where: str) -> List[str]:
    if spec.name not in obj.attrs:
        return [f"{where}: missing attribute '{spec.name}'"] if spec.required else []
    value = obj.attrs[spec.name]
    if isinstance(value, h5py.Empty):
        return [f"{where}: attribute '{spec.name}' has no value"]
    if spec.kind == "string" and isinstance(value, (str, bytes)):
        return []
    arr = np.asarray(value)
    if arr.size != 1:
        return [f"{where}: attribute '{spec.name}' must be scalar, got shape {arr.shape}"]
    if not _kind_matches(arr.dtype, spec.kind):
        return [f"{where}: attribute '{spec.name}' must be {spec.kind}, got {arr.dtype}"]
    return []


def _check_dataset(obj: h5py.Dataset, spec: DatasetSpec, where: str) -> List[str]:
    problems: List[str] = []
    if spec.ndim is not None and obj.ndim != spec.ndim:
        problems.append(f"{where}: expected {spec.ndim}-D dataset, got shape {obj.shape}")
    if not _kind_matches(obj.dtype, spec.kind):
        problems.append(f"{where}: expected {spec.kind} data, got {obj.dtype}")
    if spec.min_length is not None:
        n = obj.shape[0] if obj.ndim >= 1 else 0
        if n < spec.min_length:
            problems.append(f"{where}: expected at least {spec.min_length} values, got {n}")
    return problems


def check(obj: object, spec: Node, where: str) -> List[str]:
    """Return every problem of ``obj`` against ``spec`` (empty list when valid)."""
    if isinstance(spec, DatasetSpec):
        if not isinstance(obj, h5py.Dataset):
            return [f"{where}: expected a dataset"]
        problems = _check_dataset(obj, spec, where)
    else:
        if not isinstance(obj, h5py.Group):
            return [f"{where}: expected a group"]
        problems = []

    for a in spec.attrs:
        problems.extend(_check_attr(obj, a, where))

    if isinstance(spec, GroupSpec):
        listed = set()
        for member in spec.members:
            listed.add(member.name)
            child = obj.get(member.name)
            child_where = f"{where.rstrip('/')}/{member.name}"
            if child is None:
                if member.required:
                    problems.append(f"{child_where}: missing")
                continue
            problems.extend(check(child, member, child_where))
            if isinstance(member, DatasetSpec):
                for sibling in member.requires:
                    if sibling not in obj:
                        problems.append(f"{where.rstrip('/')}/{sibling}: missing (required by {member.name})")
        if spec.each_dataset is not None:
            for name, child in obj.items():
                if name in listed or not isinstance(child, h5py.Dataset):
                    continue
                problems.extend(check(child, spec.each_dataset, f"{where.rstrip('/')}/{name}"))
    return problems


# ----------------------------------------------------------------------
# Modern layout
# ----------------------------------------------------------------------

INDEX_ATTRS = (AttributeSpec("min_event"), AttributeSpec("max_event"))

MODERN_ROOT = GroupSpec(
    name="/",
    members=(
        GroupSpec("events", attrs=INDEX_ATTRS + (AttributeSpec("version", kind="string", required=False),)),
        GroupSpec("scalers", attrs=INDEX_ATTRS, required=False),
    ),
)

GET_TRACES = DatasetSpec(
    "get_traces",
    kind="number",
    ndim=2,
    attrs=(AttributeSpec("id"), AttributeSpec("timestamp"), AttributeSpec("timestamp_other")),
    required=False,
)

FRIB_PHYSICS = GroupSpec(
    "frib_physics",
    attrs=(AttributeSpec("event"), AttributeSpec("timestamp")),
    required=False,
    each_dataset=DatasetSpec("*", kind="number"),
)


def modern_event(n: int) -> GroupSpec:
    return GroupSpec(f"event_{n}", members=(GET_TRACES, FRIB_PHYSICS))


def modern_scaler(n: int) -> DatasetSpec:
    return DatasetSpec(f"event_{n}", kind="number", ndim=1, min_length=len(SCALER_CHANNELS))


# ----------------------------------------------------------------------
# Legacy layout
# ----------------------------------------------------------------------

LEGACY_ROOT = GroupSpec(
    name="/",
    members=(
        GroupSpec("meta", members=(DatasetSpec("meta", kind="number", ndim=1, min_length=3),)),
        GroupSpec("get"),
        GroupSpec("frib", members=(GroupSpec("evt"), GroupSpec("scaler", required=False))),
    ),
)


def legacy_get(n: int) -> GroupSpec:
    return GroupSpec(
        "get",
        members=(
            DatasetSpec(f"evt{n}_data", ndim=2, required=False, requires=(f"evt{n}_header",)),
            DatasetSpec(f"evt{n}_header", ndim=1, min_length=3, required=False),
        ),
    )


def legacy_frib(n: int) -> GroupSpec:
    return GroupSpec(
        "evt",
        members=(
            DatasetSpec(f"evt{n}_1903", ndim=2, required=False, requires=(f"evt{n}_977", f"evt{n}_header")),
            DatasetSpec(f"evt{n}_977", ndim=1, required=False),
            DatasetSpec(f"evt{n}_header", ndim=1, min_length=2, required=False),
        ),
    )


def legacy_scaler(n: int) -> DatasetSpec:
    return DatasetSpec(f"scaler{n}_data", kind="number", ndim=1, min_length=len(SCALER_CHANNELS))
