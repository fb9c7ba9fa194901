from __future__ import annotations

from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple

import yaml


@dataclass(frozen=True)
class ProtocolStrategy:
    """
    Message templates and protocol flags of one operating mode.

    Templates use ``{PLACEHOLDER}`` fields: MY_CALL, MY_NAME, MY_STATE for the
    trainee; CALL, NAME, STATE, NR, CWOPS for the calling station; ARBITRARY
    for a value supplied at sign-off time.
    """

    name: str
    cq: str
    your_exchange_tpl: str
    their_exchange_tpl: str
    your_signoff_tpl: str
    their_signoff_tpl: Optional[str] = None
    show_tu_step: bool = True
    requires_info_field: bool = False
    requires_info_field2: bool = False
    extra_info_field_key: Optional[str] = None
    extra_info_field_key2: Optional[str] = None
    # display-only
    info_field_placeholder: str = ""
    info_field2_placeholder: str = ""
    results_header: str = ""

    @property
    def has_their_signoff(self) -> bool:
        return self.their_signoff_tpl is not None

    def cq_message(self, you: Any, station: Any = None, arbitrary: Optional[str] = None) -> str:
        return _render(self.cq, you, station, arbitrary)

    def your_exchange(self, you: Any, station: Any, arbitrary: Optional[str] = None) -> str:
        return _render(self.your_exchange_tpl, you, station, arbitrary)

    def their_exchange(self, you: Any, station: Any, arbitrary: Optional[str] = None) -> str:
        return _render(self.their_exchange_tpl, you, station, arbitrary)

    def your_signoff(self, you: Any, station: Any, arbitrary: Optional[str] = None) -> str:
        return _render(self.your_signoff_tpl, you, station, arbitrary)

    def their_signoff(self, you: Any, station: Any, arbitrary: Optional[str] = None) -> str:
        if self.their_signoff_tpl is None:
            raise AttributeError(f"Mode {self.name!r} has no station sign-off.")
        return _render(self.their_signoff_tpl, you, station, arbitrary)


def default_protocols() -> Dict[str, ProtocolStrategy]:
    return {
        "single": ProtocolStrategy(
            name="single",
            cq="CQ CQ DE {MY_CALL} K",
            your_exchange_tpl="5NN",
            their_exchange_tpl="R 5NN TU",
            your_signoff_tpl="73 EE",
            their_signoff_tpl="EE",
            show_tu_step=False,
        ),
        "contest": ProtocolStrategy(
            name="contest",
            cq="CQ TEST {MY_CALL}",
            your_exchange_tpl="5NN",
            their_exchange_tpl="5NN {NR}",
            your_signoff_tpl="TU {MY_CALL}",
            requires_info_field=True,
            extra_info_field_key="serial_number",
            info_field_placeholder="Serial",
            results_header="Serial",
        ),
        "cwt": ProtocolStrategy(
            name="cwt",
            cq="CQ CWT {MY_CALL}",
            your_exchange_tpl="{MY_NAME} {MY_STATE}",
            their_exchange_tpl="{NAME} {CWOPS}",
            your_signoff_tpl="TU {MY_CALL}",
            requires_info_field=True,
            requires_info_field2=True,
            extra_info_field_key="name",
            extra_info_field_key2="cwops_number",
            info_field_placeholder="Name",
            info_field2_placeholder="Number",
            results_header="Name / Number",
        ),
        "sst": ProtocolStrategy(
            name="sst",
            cq="CQ SST {MY_CALL}",
            your_exchange_tpl="{MY_NAME} {MY_STATE}",
            their_exchange_tpl="{NAME} {STATE}",
            your_signoff_tpl="TU {ARBITRARY} 73 {MY_CALL}",
            their_signoff_tpl="TU {MY_NAME} 73",
            requires_info_field=True,
            requires_info_field2=True,
            extra_info_field_key="name",
            extra_info_field_key2="state",
            info_field_placeholder="Name",
            info_field2_placeholder="State",
            results_header="Name / State",
        ),
        "pota": ProtocolStrategy(
            name="pota",
            cq="CQ POTA DE {MY_CALL} K",
            your_exchange_tpl="UR 5NN {MY_STATE} {MY_STATE} BK",
            their_exchange_tpl="BK TU 5NN {STATE} {STATE} BK",
            your_signoff_tpl="BK TU {ARBITRARY} 73 EE",
            their_signoff_tpl="EE",
            requires_info_field=True,
            extra_info_field_key="state",
            info_field_placeholder="State",
            results_header="State",
        ),
    }


MODE_NAMES: Tuple[str, ...] = tuple(default_protocols())

_TEMPLATE_FIELDS = {
    "cq": "cq",
    "your_exchange": "your_exchange_tpl",
    "their_exchange": "their_exchange_tpl",
    "your_signoff": "your_signoff_tpl",
    "their_signoff": "their_signoff_tpl",
}


def load_protocols(path: Optional[str | Path]) -> Tuple[Dict[str, ProtocolStrategy], Optional[str]]:
    """Built-in modes with message templates overridden from a YAML file, plus a warning if any."""
    defaults = default_protocols()
    path_str = str(path or "").strip()
    if not path_str:
        return defaults, None

    p = Path(path_str)
    if not p.exists():
        return defaults, f"Mode file not found: {p}. Using built-in defaults."

    try:
        raw = yaml.safe_load(p.read_text(encoding="utf-8")) or {}
    except (OSError, yaml.YAMLError) as exc:
        return defaults, f"Mode file could not be read: {p} ({exc}). Using built-in defaults."

    if not isinstance(raw, Mapping):
        return defaults, f"Mode file has invalid format: {p}. Using built-in defaults."

    node = raw.get("modes", raw)
    if not isinstance(node, Mapping):
        return defaults, f"Mode file has invalid root: {p}. Using built-in defaults."

    merged = dict(defaults)
    rejected: List[str] = []
    for raw_key, updates in node.items():
        key = str(raw_key).strip().lower()
        if key not in merged or not isinstance(updates, Mapping):
            continue
        merged[key], bad = _merge_templates(merged[key], updates)
        rejected.extend(f"{key}.{name}" for name in bad)
    if rejected:
        return merged, f"Mode file has invalid templates in {p}: {', '.join(rejected)}. Using built-in text for those."
    return merged, None


def _merge_templates(strategy: ProtocolStrategy, updates: Mapping[str, Any]) -> Tuple[ProtocolStrategy, List[str]]:
    changes: Dict[str, Any] = {}
    bad: List[str] = []
    for raw_key, raw_value in updates.items():
        attr = _TEMPLATE_FIELDS.get(str(raw_key).strip().lower())
        if attr is None or not isinstance(raw_value, str):
            continue
        value = raw_value.strip()
        if not value:
            continue
        try:
            _render(value, None, None, "X")
        except (ValueError, IndexError, KeyError, AttributeError):
            bad.append(str(raw_key).strip().lower())
            continue
        changes[attr] = value
    return (replace(strategy, **changes) if changes else strategy), bad


class _Blank(dict):
    def __missing__(self, key: str) -> str:
        return ""


def _render(template: str, you: Any, station: Any, arbitrary: Optional[str]) -> str:
    values = {
        "MY_CALL": getattr(you, "callsign", ""),
        "MY_NAME": getattr(you, "name", ""),
        "MY_STATE": getattr(you, "state", ""),
        "CALL": getattr(station, "callsign", ""),
        "NAME": getattr(station, "name", ""),
        "STATE": getattr(station, "state", ""),
        "NR": getattr(station, "serial_number", ""),
        "CWOPS": getattr(station, "cwops_number", ""),
        "ARBITRARY": arbitrary or "",
    }
    text = template.format_map(_Blank({k: "" if v is None else v for k, v in values.items()}))
    return " ".join(text.upper().split())
