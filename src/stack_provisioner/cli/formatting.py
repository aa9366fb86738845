"""Plan and apply output rendering (Terraform-style)."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, NamedTuple

import typer

from stack_provisioner.engine.types import Action, ReplaceMode

if TYPE_CHECKING:
    from collections.abc import Callable

    from stack_provisioner.engine.builder import ResourceGraph
    from stack_provisioner.engine.types import Plan, ResourceChange


class _ActionStyle(NamedTuple):
    color: str
    symbol: str
    progress_verb: str
    done_verb: str


_ACTION_STYLES: dict[str, _ActionStyle] = {
    "create": _ActionStyle("green", "+", "Creating", "Creation complete"),
    "update": _ActionStyle("yellow", "~", "Updating", "Update complete"),
    "replace": _ActionStyle("magenta", "-/+", "Replacing", "Replacement complete"),
    "delete": _ActionStyle("red", "-", "Destroying", "Destroy complete"),
    "no-op": _ActionStyle("bright_black", " ", "", ""),
}

_ORPHAN_STYLE = _ActionStyle("cyan", "!", "Forgetting", "Removed from state")

_ACTION_DESC: dict[str, str] = {
    "create": "will be created",
    "update": "will be updated in-place",
    "replace": "must be replaced",
    "delete": "will be destroyed",
    "no-op": "is up-to-date",
}

_REPLACE_SYMBOLS: dict[ReplaceMode, str] = {
    ReplaceMode.DELETE_BEFORE_CREATE: "-/+",
    ReplaceMode.CREATE_BEFORE_DESTROY: "+/-",
}


def styler(color: bool) -> Callable[..., str]:
    """Return ``typer.style`` when *color* is True, otherwise a passthrough."""
    if color:
        return typer.style
    return lambda text, **_kw: text


def action_style(change: ResourceChange) -> _ActionStyle:
    """Style for *change*, taking orphaning and the replace mode into account."""
    if change.orphaned:
        return _ORPHAN_STYLE
    style = _ACTION_STYLES[change.action.value]
    if change.action == Action.REPLACE and change.replace_mode in _REPLACE_SYMBOLS:
        return style._replace(symbol=_REPLACE_SYMBOLS[change.replace_mode])
    return style


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def is_actionable(change: ResourceChange) -> bool:
    return change.action != Action.NOOP or change.orphaned


def has_actionable_changes(plan: Plan) -> bool:
    """Return True if the plan does anything at all, including orphaning."""
    return any(is_actionable(c) for c in plan.changes)


def _align_values(items: dict[str, str]) -> list[tuple[str, str]]:
    """Right-pad keys so ``=`` signs align."""
    if not items:
        return []
    max_key = max(len(k) for k in items)
    return [(k.ljust(max_key), v) for k, v in items.items()]


def _format_value(value: Any) -> str:
    """Format a value for display in a plan diff block."""
    if isinstance(value, str):
        return f'"{value}"'
    if value is None:
        return "null"
    return str(value)


# ---------------------------------------------------------------------------
# Plan rendering
# ---------------------------------------------------------------------------


def _describe(change: ResourceChange) -> str:
    if change.orphaned:
        return "will be removed from state and left in place"
    desc = _ACTION_DESC[change.action.value]
    if change.replace_mode is ReplaceMode.RETAIN_OLD:
        desc += " (old instance retained)"
    elif change.replace_mode is ReplaceMode.CREATE_BEFORE_DESTROY:
        desc += " (create before destroy)"
    return desc


def _change_attrs(change: ResourceChange) -> dict[str, str]:
    """Extract displayable ``key -> formatted value`` pairs from a change."""
    if change.action == Action.CREATE and change.planned:
        return {k: _format_value(v) for k, v in change.planned.items()}
    if change.action in (Action.UPDATE, Action.REPLACE) and change.diff:
        return {
            k: f"{_format_value(d['from'])} -> {_format_value(d['to'])}"
            for k, d in change.diff.items()
        }
    return {}


def format_change(change: ResourceChange, *, color: bool = True) -> str:
    """Render a single ResourceChange as a Terraform-style block."""
    style = styler(color)
    action_style_ = action_style(change)
    sc = {"fg": action_style_.color}
    symbol = action_style_.symbol

    lines = [
        style(f"  # {change.address} {_describe(change)}", bold=True, **sc),
    ]
    if change.reason:
        lines.append(style(f"  # ({change.reason})", **sc))
    lines.extend(
        [
            style(f'  {symbol} resource "{change.resource_type}" "{change.resource_id}" {{', **sc),
            *[
                style(f"      {symbol} {k} = {v}", **sc)
                for k, v in _align_values(_change_attrs(change))
            ],
            style("    }", **sc),
        ]
    )
    return "\n".join(lines)


def format_changes(changes: list[ResourceChange], *, color: bool = True) -> str:
    """Render a list of changes as Terraform-style diff blocks."""
    blocks = [format_change(c, color=color) for c in changes if is_actionable(c)]
    if not blocks:
        return "No changes. Resources are up-to-date."
    return "\n\n".join(blocks)


def format_waves(plan: Plan, *, color: bool = True) -> str:
    """Render the execution order: one line per operation, grouped by wave."""
    style = styler(color)
    if not plan.waves:
        return ""
    ops = {op.key: op for op in plan.operations}
    lines = [style("Execution order:", bold=True)]
    for index, wave in enumerate(plan.waves, start=1):
        lines.append(f"  Wave {index}:")
        for key in wave:
            op = ops[key]
            lines.append(f"    {op.kind.value:<7} {op.address}")
    return "\n".join(lines)


def format_plan(plan: Plan, *, color: bool = True) -> str:
    """Render the full plan output: diff blocks followed by the wave order."""
    out = format_changes(plan.changes, color=color)
    waves = format_waves(plan, color=color)
    if waves and has_actionable_changes(plan):
        out = f"{out}\n\n{waves}"
    return out


def format_graph(graph: ResourceGraph, *, color: bool = True) -> str:
    """Render the unit order and the resource waves of a dependency graph."""
    style = styler(color)
    lines = [style("Units:", bold=True)]
    for index, unit_id in enumerate(graph.unit_graph.topological_order(), start=1):
        deps = graph.unit_dependencies.get(unit_id, [])
        after = f" (after {', '.join(deps)})" if deps else ""
        lines.append(f"  {index}. {unit_id}{after}")
    lines.append("")
    lines.append(style("Resource waves:", bold=True))
    for index, wave in enumerate(graph.graph.waves(), start=1):
        lines.append(f"  Wave {index}:")
        for address in wave:
            deps = graph.dependencies.get(address, [])
            after = f" <- {', '.join(deps)}" if deps else ""
            lines.append(f"    {address}{after}")
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# Summaries
# ---------------------------------------------------------------------------

_SUMMARY_KEYS = ("create", "update", "replace", "delete")
_PLAN_VERBS = ("to add", "to change", "to replace", "to destroy")
_APPLY_VERBS = ("added", "changed", "replaced", "destroyed")
_SUMMARY_COLORS = ("green", "yellow", "magenta", "red")


def _format_summary(summary: dict[str, int], verbs: tuple[str, ...], *, color: bool) -> str:
    """Build the ``N verb, N verb, ...`` part of a summary line."""
    style = styler(color)
    counts = tuple(summary.get(k, 0) for k in _SUMMARY_KEYS)
    parts = [
        style(f"{n} {verb}", fg=fg) if n and color else f"{n} {verb}"
        for n, verb, fg in zip(counts, verbs, _SUMMARY_COLORS, strict=True)
    ]
    return ", ".join(parts)


def changes_summary(changes: list[ResourceChange]) -> dict[str, int]:
    """Count changes by action type. Orphaned entries are counted separately."""
    summary: dict[str, int] = {k: 0 for k in (*_SUMMARY_KEYS, "orphan")}
    for c in changes:
        if c.orphaned:
            summary["orphan"] += 1
        elif c.action != Action.NOOP:
            summary[c.action.value] += 1
    return summary


def format_plan_summary(summary: dict[str, int], *, color: bool = True) -> str:
    """Render ``Plan: 2 to add, 1 to change, 0 to replace, 0 to destroy.``"""
    line = f"Plan: {_format_summary(summary, _PLAN_VERBS, color=color)}."
    orphans = summary.get("orphan", 0)
    if orphans:
        line += f" {orphans} retained resource{'s' if orphans != 1 else ''} will be left in place."
    return line


def format_apply_summary(summary: dict[str, int], *, color: bool = True) -> str:
    """Render ``Apply complete! Resources: 2 added, 0 changed, 0 replaced, 0 destroyed.``"""
    style = styler(color)
    header = style("Apply complete!", fg="green", bold=True)
    return f"{header} Resources: {_format_summary(summary, _APPLY_VERBS, color=color)}."
