"""Diff and result output rendering (Terraform-style)."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import typer

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping, Sequence

    from gce_provisioner.core.state import StateFile
    from gce_provisioner.engine.errors import EngineError
    from gce_provisioner.engine.types import AttributeChange, Diff, ReconcileResult


def styler(color: bool) -> Callable[..., str]:
    """Return ``typer.style`` when *color* is True, otherwise a passthrough."""
    if color:
        return typer.style
    return lambda text, **_kw: text


def has_changes(diffs: Sequence[Diff]) -> bool:
    return any(not d.is_empty for d in diffs)


def _format_value(value: Any) -> str:
    """Format a value for display in a diff block."""
    if isinstance(value, str):
        return f'"{value}"'
    if value is None:
        return "null"
    return str(value)


def _change_line(change: AttributeChange, width: int) -> str:
    return (
        f"{change.attribute.ljust(width)} = "
        f"{_format_value(change.old)} -> {_format_value(change.new)}"
    )


def format_diff(diff: Diff, *, color: bool = True) -> str:
    """Render a single diff as a Terraform-style block."""
    style = styler(color)
    if diff.is_empty:
        return style(f"  # {diff.display_name} is up-to-date", fg="bright_black")

    width = max(len(c.attribute) for c in diff.changes)
    lines = [
        style(f"  # {diff.display_name} will be updated in-place", bold=True, fg="yellow"),
        style(f'  ~ resource "{diff.kind}" "{diff.resource_id}" {{', fg="yellow"),
    ]
    for change in diff.changes:
        fg = "cyan" if change.transition else "yellow"
        lines.append(style(f"      ~ {_change_line(change, width)}", fg=fg))
    lines.append(style("    }", fg="yellow"))
    return "\n".join(lines)


def format_diffs(diffs: Sequence[Diff], *, color: bool = True) -> str:
    """Render every non-empty diff."""
    blocks = [format_diff(d, color=color) for d in diffs if not d.is_empty]
    if not blocks:
        return "No changes. Instances are up-to-date."
    return "\n\n".join(blocks)


def format_plan_summary(diffs: Sequence[Diff], *, color: bool = True) -> str:
    """Render ``Plan: 2 to change (3 attribute updates, 1 state transition).``"""
    style = styler(color)
    changed = [d for d in diffs if not d.is_empty]
    attrs = sum(d.summary()["attributes"] for d in changed)
    transitions = sum(d.summary()["transitions"] for d in changed)
    head = f"{len(changed)} to change"
    if changed:
        head = style(head, fg="yellow")
    return (
        f"Plan: {head} ({attrs} attribute update{'s' if attrs != 1 else ''}, "
        f"{transitions} state transition{'s' if transitions != 1 else ''})."
    )


def format_apply_summary(
    outcomes: Mapping[str, ReconcileResult | EngineError], *, color: bool = True
) -> str:
    """Render ``Apply complete! Instances: 1 changed, 2 unchanged, 0 failed.``"""
    from gce_provisioner.engine.errors import EngineError

    style = styler(color)
    failed = sum(1 for o in outcomes.values() if isinstance(o, EngineError))
    changed = sum(
        1 for o in outcomes.values() if not isinstance(o, EngineError) and not o.diff.is_empty
    )
    unchanged = len(outcomes) - failed - changed
    if failed:
        header = style("Apply finished with errors.", fg="red", bold=True)
    else:
        header = style("Apply complete!", fg="green", bold=True)
    return f"{header} Instances: {changed} changed, {unchanged} unchanged, {failed} failed."


def format_state(state_file: StateFile, *, color: bool = True) -> str:
    """Render the persisted state, one block per resource."""
    style = styler(color)
    if not state_file.resources:
        return "No recorded state."
    blocks = []
    for resource_id, st in sorted(state_file.resources.items()):
        applied = st.last_applied_at.isoformat() if st.last_applied_at else "never"
        lines = [
            style(f"# {st.kind}.{resource_id}", bold=True),
            f"  status          = {_format_value(st.status or None)}",
            f"  last_applied_at = {applied}",
        ]
        lines.extend(
            f"  {k.ljust(15)} = {_format_value(v)}" for k, v in sorted(st.attributes.items())
        )
        blocks.append("\n".join(lines))
    return "\n\n".join(blocks)
